"""
Request logging middleware.

Assigns every request an id (honouring an incoming X-Request-Id), logs the
request with its timing and echoes the id back on the response.
"""
import logging
import time
import uuid
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        """
        Log HTTP request and response with timing.

        Args:
            request: FastAPI request
            call_next: Next middleware in chain

        Returns:
            Response: Response carrying the X-Request-Id header
        """
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        client_host = request.client.host if request.client else "unknown"
        logger.info(
            f"HTTP Request: {request.method} {request.url.path} from {client_host}",
            extra={"request_id": request_id},
        )

        try:
            response: Response = await call_next(request)
        except Exception as e:
            logger.exception(
                f"HTTP Request failed: {request.method} {request.url.path}",
                extra={
                    "request_id": request_id,
                    "process_time_ms": round((time.time() - start_time) * 1000, 2),
                    "error_type": type(e).__name__,
                },
            )
            raise

        process_time_ms = round((time.time() - start_time) * 1000, 2)
        message = f"HTTP Response: {response.status_code} in {process_time_ms}ms for request {request_id}"
        extra = {
            "request_id": request_id,
            "user_id": getattr(request.state, "user_id", None),
            "status_code": response.status_code,
        }
        if response.status_code >= 400:
            logger.warning(message, extra=extra)
        else:
            logger.info(message, extra=extra)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
