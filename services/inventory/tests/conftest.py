"""
Shared test fixtures for the inventory service.

Provides: in-memory SQLite database, TestClient with get_db overridden,
JWT headers per role and small factories for seeding data through the API.
"""
import os

# Must be set before the service modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["WEBHOOK_URLS"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from inventory_api import auth, models
from inventory_api.database import get_db
from inventory_api.main import app

ROLE_USERS = {
    auth.VIEWER: ("u-viewer", "viewer"),
    auth.CLERK: ("u-clerk", "clerk"),
    auth.MANAGER: ("u-manager", "manager"),
    auth.ADMIN: ("u-admin", "admin"),
}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    models.Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    """Session for seeding and inspecting data directly."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_headers(role: str) -> dict:
    user_id, username = ROLE_USERS[role]
    token = auth.create_access_token(user_id=user_id, roles=[role], username=username)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return make_headers(auth.ADMIN)


@pytest.fixture
def manager_headers():
    return make_headers(auth.MANAGER)


@pytest.fixture
def clerk_headers():
    return make_headers(auth.CLERK)


@pytest.fixture
def viewer_headers():
    return make_headers(auth.VIEWER)


@pytest.fixture
def create_location(client, admin_headers):
    def _create(code="WH-01", name="Main Warehouse", location_type="Warehouse", **fields):
        payload = {"code": code, "name": name, "location_type": location_type, **fields}
        response = client.post("/api/v1/locations", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.json()
        return response.json()
    return _create


@pytest.fixture
def create_supplier(client, admin_headers):
    def _create(code="SUP-01", company_name="Acme Parts", **fields):
        payload = {"code": code, "company_name": company_name, **fields}
        response = client.post("/api/v1/suppliers", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.json()
        return response.json()
    return _create


@pytest.fixture
def create_item(client, admin_headers):
    def _create(location_id, part_number="PN-1001", **fields):
        payload = {
            "part_number": part_number,
            "description": f"Part {part_number}",
            "location_id": location_id,
            **fields,
        }
        response = client.post("/api/v1/inventory/items", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.json()
        return response.json()
    return _create


@pytest.fixture
def warehouse(create_location):
    return create_location()


@pytest.fixture
def stocked_item(create_item, warehouse):
    return create_item(warehouse["id"], current_stock=100, minimum_stock=10, standard_cost="2.50")
