"""
Observability Middleware.

Correlation IDs and one structured log line per request. Mutating tariff
calls are logged at INFO with the acting operator; reads only at DEBUG.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("terminal_billing.http")

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

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
            "actor": request.headers.get("X-Actor-Id", "anonymous"),
        }

        if response.status_code >= 500:
            logger.error("Request failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected", extra=log_data)
        elif request.method in MUTATING_METHODS:
            logger.info("Tariff change %s %s by %s", request.method, request.url.path, log_data["actor"], extra=log_data)
        else:
            logger.debug("Request served", extra=log_data)

        return response
