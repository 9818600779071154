import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from mealplan_billing.metrics import REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY

logger = logging.getLogger(__name__)


def _request_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and hasattr(route, "path"):
        return route.path
    return request.url.path


def _record(request: Request, status_code: int, duration_ms: float) -> str:
    path = _request_path(request)
    labels = (request.method, path, str(status_code))
    REQUEST_COUNT.labels(*labels).inc()
    REQUEST_LATENCY.labels(*labels).observe(duration_ms / 1000.0)
    if status_code >= 500:
        REQUEST_ERRORS.labels(*labels).inc()
    return path


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.monotonic() - start) * 1000.0
            path = _record(request, 500, duration_ms)
            logger.exception(
                "request_failed",
                extra={
                    "request_id": request_id,
                    "path": path,
                    "method": request.method,
                    "status": 500,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            raise
        duration_ms = (time.monotonic() - start) * 1000.0
        path = _record(request, response.status_code, duration_ms)
        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "path": path,
                "method": request.method,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        response.headers["x-request-id"] = request_id
        return response
