"""
Error types and FastAPI exception handlers for the Inventory service.

Business code raises InventoryError subclasses; the handlers registered here
turn them (and framework/database errors) into RFC 7807 problem responses.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

PROBLEM_CONTENT_TYPE = "application/problem+json"


class InventoryError(Exception):
    """
    Base class for errors that map to a specific HTTP response.

    Attributes:
        message: Human readable description
        error_code: Stable machine readable code (e.g. "RESOURCE_NOT_FOUND")
        status_code: HTTP status to return
        details: Extra structured context (optional)
    """
    status_code = 400
    error_code = "BUSINESS_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


class ValidationError(InventoryError):
    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, errors: Dict[str, List[str]], message: str = "One or more validation errors occurred"):
        super().__init__(message, details={"errors": errors})
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]}, message=message)


class NotFoundError(InventoryError):
    status_code = 404
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            f"{resource} with ID '{resource_id}' not found",
            details={"resource_type": resource, "resource_id": str(resource_id)},
        )


class UnauthorizedError(InventoryError):
    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication is required"):
        super().__init__(message)


class ForbiddenError(InventoryError):
    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class ConflictError(InventoryError):
    status_code = 409
    error_code = "CONFLICT"


class BusinessRuleError(InventoryError):
    """Raised when a request is well formed but breaks an inventory rule."""
    status_code = 400
    error_code = "BUSINESS_RULE_VIOLATION"

    def __init__(self, message: str, rule_name: Optional[str] = None):
        super().__init__(message, details={"rule_name": rule_name} if rule_name else None)
        self.rule_name = rule_name


class ExternalServiceError(InventoryError):
    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str):
        super().__init__(f"Error communicating with {service}: {message}", details={"service": service})


class ConcurrencyError(InventoryError):
    status_code = 409
    error_code = "CONCURRENCY_CONFLICT"

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            f"{resource} with ID '{resource_id}' was modified by another user",
            details={"resource_type": resource, "resource_id": str(resource_id)},
        )


class PreconditionFailedError(InventoryError):
    status_code = 412
    error_code = "PRECONDITION_FAILED"

    def __init__(self, message: str = "The resource has been modified. Reload and retry."):
        super().__init__(message)


class RateLimitError(InventoryError):
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int = 60, message: str = "Rate limit exceeded"):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    412: "Precondition Failed",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def problem_response(
    request: Request,
    status_code: int,
    detail: str,
    error_code: str,
    extra: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Build an application/problem+json response.

    Args:
        request: Incoming request (used for instance and trace id)
        status_code: HTTP status
        detail: Human readable detail
        error_code: Machine readable error code
        extra: Additional members merged into the body
        headers: Additional response headers

    Returns:
        JSONResponse with the problem document
    """
    trace_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    body = {
        "type": f"https://httpstatuses.io/{status_code}",
        "title": TITLES.get(status_code, "Error"),
        "status": status_code,
        "detail": detail,
        "instance": f"{request.method} {request.url.path}",
        "errorCode": error_code,
        "traceId": trace_id,
    }
    if extra:
        body.update(extra)

    response_headers = {
        "X-Request-Id": trace_id,
        "X-Timestamp": datetime.utcnow().isoformat() + "Z",
    }
    if headers:
        response_headers.update(headers)

    if status_code >= 500:
        logger.error(f"{error_code} on {request.method} {request.url.path}: {detail}")
    else:
        logger.warning(f"{error_code} on {request.method} {request.url.path}: {detail}")

    return JSONResponse(
        status_code=status_code,
        content=body,
        headers=response_headers,
        media_type=PROBLEM_CONTENT_TYPE,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the problem-details handlers on the application."""

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError):
        extra = {}
        headers = {}
        if isinstance(exc, ValidationError):
            extra["errors"] = exc.errors
        if isinstance(exc, BusinessRuleError) and exc.rule_name:
            extra["ruleName"] = exc.rule_name
        if isinstance(exc, RateLimitError):
            headers["Retry-After"] = str(exc.retry_after)
        return problem_response(request, exc.status_code, exc.message, exc.error_code, extra, headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors: Dict[str, List[str]] = {}
        for error in exc.errors():
            # Drop the "body"/"query" prefix so the key is the field path
            location = [str(part) for part in error.get("loc", ())[1:]] or ["request"]
            errors.setdefault(".".join(location), []).append(error.get("msg", "Invalid value"))
        return problem_response(
            request, 400, "One or more validation errors occurred", "VALIDATION_ERROR", {"errors": errors}
        )

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError):
        return problem_response(
            request, 409, "The resource was modified by another user", "CONCURRENCY_CONFLICT"
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        return problem_response(
            request, 409, "The change conflicts with existing data", "CONFLICT"
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_response(
            request, exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}",
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
        return problem_response(request, 500, "An unexpected error occurred", "INTERNAL_ERROR")
