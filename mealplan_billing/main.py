from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import JSONResponse, Response

from mealplan_billing.api.checkout import CHECKOUT_PATHS
from mealplan_billing.api.checkout import router as checkout_router
from mealplan_billing.api.webhooks import router as webhooks_router
from mealplan_billing.config import settings, validate_settings
from mealplan_billing.errors import register_error_handlers
from mealplan_billing.logging import configure_logging
from mealplan_billing.middleware.cors import CrossOriginMiddleware
from mealplan_billing.middleware.security_headers import SecurityHeadersMiddleware
from mealplan_billing.observability import ObservabilityMiddleware
from mealplan_billing.telemetry import setup_otel

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[arg-type]
    # ── Startup ──────────────────────────────────────────
    warnings = validate_settings(settings)
    for w in warnings:
        logger.warning("Config warning: %s", w)

    logger.info("Application started (pid=%s)", os.getpid())
    yield

    # ── Shutdown ─────────────────────────────────────────
    logger.info("Application shutting down")


app = FastAPI(title="Meal Plan Billing API", lifespan=lifespan)

configure_logging()
setup_otel(app)

# ── Middleware (order matters: last added = first executed) ──
register_error_handlers(app)

cors_origins = [
    o.strip()
    for o in settings.cors_origins.split(",")
    if o.strip()
]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CrossOriginMiddleware,
    paths=[*CHECKOUT_PATHS, *(API_PREFIX + p for p in CHECKOUT_PATHS)],
    origins=cors_origins,
)
app.add_middleware(ObservabilityMiddleware)


def _include_api_router(router: object, dependencies: list[Any] | None = None) -> None:
    app.include_router(router, dependencies=dependencies)  # type: ignore[arg-type]
    app.include_router(router, prefix=API_PREFIX, dependencies=dependencies)  # type: ignore[arg-type]


_include_api_router(checkout_router)
_include_api_router(webhooks_router)


# ── Health Checks ────────────────────────────────────────


@app.get("/health")
def health_check() -> dict[str, str]:
    """Liveness check. Always ok while the process is running."""
    return {"status": "ok"}


@app.get("/health/ready")
def readiness_check() -> JSONResponse:
    """Readiness check. Reports whether the Stripe secrets are configured."""
    checks = {
        "stripe_secret_key": "ok" if settings.stripe_secret_key else "missing",
        "stripe_webhook_secret": "ok" if settings.stripe_webhook_secret else "missing",
    }
    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ok" if all_ok else "degraded", "checks": checks},
    )


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
