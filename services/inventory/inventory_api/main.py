"""
    Inventory Service API

    This module implements a FastAPI-based microservice for barcode-driven
    inventory tracking. It provides endpoints for items, locations, suppliers
    and stock transactions, with PostgreSQL database persistence.

    The service exposes:
    - REST endpoints under /api/v1 for each resource
    - Health endpoints: /healthz and /health (liveness) and /ready (database check)

    Authentication uses JWT bearer tokens issued by /api/v1/auth/login.
"""
import logging
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .config import CORS_ORIGINS, configure_logging
from .database import engine, get_db
from .exceptions import register_exception_handlers
from .middleware import RequestLoggingMiddleware
from .routers import auth, barcodes, items, locations, suppliers, transactions

configure_logging()
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="inventory-service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag", "X-Request-Id"],
)
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)

app.include_router(auth.router)
app.include_router(items.router)
app.include_router(locations.router)
app.include_router(suppliers.router)
app.include_router(transactions.router)
app.include_router(barcodes.router)


@app.get("/healthz", response_model=dict)
def healthz():
    """
    Health check endpoint for the inventory service.

    This endpoint is typically used by orchestrators (like Kubernetes) or load balancers
    to determine if the service is running.

    Returns:
        dict: {"status": "healthy"}
    """
    return {"status": "healthy"}


@app.get("/health", response_model=dict)
def health():
    return {"status": "Healthy"}


@app.get("/ready")
def ready(db: Session = Depends(get_db)):
    """
    Readiness check: the service is ready once the database answers.

    Returns:
        {"status": "Ready"}, or 503 with {"status": "NotReady"} if the database is unreachable
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "NotReady"})
    return {"status": "Ready"}
