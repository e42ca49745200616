"""
Observability helpers.

Request middleware that tags every call with a correlation ID, the audit
actor and its duration, and the logging setup for the ``backoffice``
logger hierarchy (``backoffice.ledger``, ``backoffice.ledger.summary``...).
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("backoffice")
request_logger = logging.getLogger("backoffice.requests")


def configure_logging(level: str = "INFO") -> None:
    """Attach a stream handler to the ``backoffice`` logger once."""
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        ))
        logger.addHandler(handler)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
        started = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "actor": request.headers.get("X-Actor"),
        }

        # Writes at info, reads at debug
        if response.status_code >= 500:
            request_logger.error("%s %s failed", request.method, request.url.path, extra=log_data)
        elif response.status_code >= 400:
            request_logger.warning("%s %s rejected (%s)", request.method, request.url.path,
                                   response.status_code, extra=log_data)
        elif request.method != "GET":
            request_logger.info("%s %s", request.method, request.url.path, extra=log_data)
        else:
            request_logger.debug("%s %s", request.method, request.url.path, extra=log_data)

        return response
