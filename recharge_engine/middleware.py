"""FastAPI middleware for request/response logging and correlation."""

import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from recharge_engine.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

# Path segment -> log key for the identifier that follows it
PATH_CONTEXT_KEYS = {
    "plans": "plan_id",
    "purchases": "purchase_id",
    "codes": "code_id",
}

REQUEST_ID_HEADER = "X-Request-ID"


def segment_after(parts: list, segment: str) -> Optional[str]:
    """Return the path segment following `segment`, if any."""
    if segment not in parts:
        return None
    index = parts.index(segment)
    if index + 1 < len(parts) and parts[index + 1]:
        return parts[index + 1]
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with a correlation id.

    The id is taken from an incoming X-Request-ID header when present,
    bound to all log events of the request and echoed back on the response.
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id)

        if self.include_request_details:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                query_params=str(request.query_params) if request.query_params else None,
                client_host=request.client.host if request.client else "unknown",
                user_agent=request.headers.get("user-agent"),
            )
        else:
            logger.info("request_started", method=request.method, path=request.url.path)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        finally:
            clear_context()


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds plan, purchase and code ids found in the URL path to the
    logging context."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        parts = request.url.path.split("/")
        context = {}
        for segment, key in PATH_CONTEXT_KEYS.items():
            value = segment_after(parts, segment)
            # Skip collection sub-routes such as /purchases/pending
            if value is not None and value not in ("pending", "import", "counts"):
                context[key] = value
        if context:
            bind_context(**context)

        return await call_next(request)
