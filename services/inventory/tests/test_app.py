from fastapi import FastAPI
from fastapi.testclient import TestClient

from inventory_api import cache
from inventory_api.exceptions import ConcurrencyError, RateLimitError, register_exception_handlers


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_health(client):
    assert client.get("/health").json() == {"status": "Healthy"}


def test_ready(client):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "Ready"}


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-Id": "req-123"})
    assert response.headers["X-Request-Id"] == "req-123"


def test_request_id_is_generated(client):
    assert client.get("/healthz").headers["X-Request-Id"]


def test_problem_details_shape(client, admin_headers):
    response = client.get("/api/v1/locations/nowhere", headers={**admin_headers, "X-Request-Id": "trace-9"})
    assert response.status_code == 404
    body = response.json()
    assert body["status"] == 404
    assert body["title"] == "Not Found"
    assert body["instance"] == "GET /api/v1/locations/nowhere"
    assert body["traceId"] == "trace-9"
    assert body["errorCode"] == "RESOURCE_NOT_FOUND"


def test_unknown_route(client):
    response = client.get("/api/v1/nothing-here")
    assert response.status_code == 404
    assert response.json()["errorCode"] == "HTTP_404"


def test_barcode_validation_endpoint(client, viewer_headers):
    response = client.post(
        "/api/v1/barcodes/validate", json={"barcode": "4006381333931"}, headers=viewer_headers
    )
    assert response.status_code == 200
    assert response.json() == {"is_valid": True, "format": "EAN_13", "error": None}

    bad = client.post(
        "/api/v1/barcodes/validate",
        json={"barcode": "4006381333932", "format": "EAN_13"},
        headers=viewer_headers,
    ).json()
    assert bad == {"is_valid": False, "format": "EAN_13", "error": "Invalid EAN_13 check digit"}

    blurry = client.post(
        "/api/v1/barcodes/validate", json={"barcode": "ABC123", "confidence": 10}, headers=viewer_headers
    ).json()
    assert blurry["is_valid"] is False
    assert blurry["error"] == "Low confidence scan - please try again"


def test_barcode_suggestion_endpoint(client, viewer_headers):
    response = client.get(
        "/api/v1/barcodes/suggest", params={"part_number": "ab-12_x"}, headers=viewer_headers
    )
    assert response.json() == {"part_number": "ab-12_x", "format": "CODE_128", "barcode": "AB12X"}

    unsupported = client.get(
        "/api/v1/barcodes/suggest", params={"part_number": "PN-1", "format": "UPC_E"}, headers=viewer_headers
    )
    assert unsupported.status_code == 400


def _app_raising(error):
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    def boom():
        raise error

    return app


def test_rate_limit_sets_retry_after():
    response = TestClient(_app_raising(RateLimitError(retry_after=30))).get("/boom")
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.json()["errorCode"] == "RATE_LIMIT_EXCEEDED"


def test_concurrency_error():
    response = TestClient(_app_raising(ConcurrencyError("Location", "L1"))).get("/boom")
    assert response.status_code == 409
    assert response.json()["detail"] == "Location with ID 'L1' was modified by another user"


def test_unexpected_error_is_hidden():
    client = TestClient(_app_raising(RuntimeError("secret")), raise_server_exceptions=False)
    response = client.get("/boom")
    assert response.status_code == 500
    assert response.json()["detail"] == "An unexpected error occurred"


def test_cache_is_bypassed_when_disabled():
    assert cache.get_cache("items:anything") is None
    assert cache.set_cache("items:anything", {"a": 1}) is False
    assert cache.delete_cache("items:anything") is False
