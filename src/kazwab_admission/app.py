"""FastAPI application for the Kazwab admission controller."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from kazwab_admission import __version__
from kazwab_admission.auth import require_admin
from kazwab_admission.config import get_settings
from kazwab_admission.controller import close_controller, get_controller
from kazwab_admission.errors import ConfigurationError, RateLimitExceeded
from kazwab_admission.logging import setup_logging
from kazwab_admission.models import CounterSnapshot, EvaluateRequest, EvaluateResponse, Policy
from kazwab_admission.ratelimit import (
    admission_middleware,
    metrics_middleware,
    rate_limit_exceeded_handler,
    rate_limit_headers,
)
from kazwab_admission.sweeper import CounterSweeper

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    # Startup
    setup_logging()
    settings = get_settings()
    logger.info("kazwab_admission_starting", version=__version__, backend=settings.rate_limit_backend)

    controller = get_controller()
    try:
        await asyncio.to_thread(controller.open)
    except Exception as e:
        logger.error("counter_store_unavailable", error=str(e))
        raise

    sweeper = CounterSweeper(controller, settings.rate_limit_sweep_interval_seconds)
    await sweeper.start()
    app.state.sweeper = sweeper

    yield

    # Shutdown
    await sweeper.stop()
    close_controller()
    logger.info("kazwab_admission_stopped")


app = FastAPI(
    title="Kazwab Admission Control API",
    version=__version__,
    description="Per-client rate limiting for the Kazwab news and outreach API",
    lifespan=lifespan,
)

# Starlette runs the last registered middleware first
app.middleware("http")(admission_middleware)
app.middleware("http")(metrics_middleware)


# === Health endpoints ===


@app.get("/health", tags=["Health"])
def health() -> dict[str, Any]:
    """Health check endpoint."""
    settings = get_settings()
    store_healthy = get_controller().health_check()

    return {
        "status": "healthy" if store_healthy else "degraded",
        "version": __version__,
        "checks": {
            "store": "ok" if store_healthy else "error",
            "backend": settings.rate_limit_backend,
        },
    }


@app.get("/ready", tags=["Health"])
def ready() -> dict[str, str]:
    """Readiness check endpoint."""
    if not get_controller().health_check():
        raise HTTPException(status_code=503, detail="Counter store not available")
    return {"status": "ready"}


# === Metrics endpoint ===


@app.get("/metrics", tags=["Observability"])
def prometheus_metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# === Admin endpoints ===

admin = APIRouter(prefix="/admission", tags=["Admission"], dependencies=[Depends(require_admin)])


def _policy_or_404(scope: str) -> Policy:
    try:
        return get_controller().catalog.get(scope)
    except ConfigurationError:
        raise HTTPException(status_code=404, detail=f"Unknown policy scope: {scope}") from None


@admin.get("/policies", response_model=list[Policy])
def list_policies() -> list[Policy]:
    """List the policies in the catalog."""
    return list(get_controller().catalog)


@admin.post("/evaluate", response_model=EvaluateResponse)
def evaluate(request: EvaluateRequest) -> JSONResponse:
    """Evaluate and count one request for a client key under a scope."""
    policy = _policy_or_404(request.scope)
    decision = get_controller().check_and_increment(request.client_key, policy)

    headers = {} if decision.exempt else rate_limit_headers(policy, decision)
    if not decision.admitted:
        headers["Retry-After"] = str(decision.retry_after_header)

    return JSONResponse(
        status_code=200 if decision.admitted else 429,
        content=EvaluateResponse.from_decision(decision).model_dump(by_alias=True),
        headers=headers,
    )


@admin.get("/counters/{scope}/{key}", response_model=CounterSnapshot)
def get_counter(scope: str, key: str) -> CounterSnapshot:
    """Show the live counter for a client key."""
    counter = get_controller().peek(key, _policy_or_404(scope))
    if counter is None:
        raise HTTPException(status_code=404, detail="Counter not found")
    return CounterSnapshot.from_counter(counter)


@admin.delete("/counters/{scope}/{key}", status_code=204)
def reset_counter(scope: str, key: str) -> Response:
    """Reset a client key so its next request opens a fresh window."""
    get_controller().reset(key, _policy_or_404(scope))
    return Response(status_code=204)


@admin.post("/counters/{scope}/{key}/refund", status_code=204)
def refund_request(scope: str, key: str) -> Response:
    """Give back one counted request."""
    get_controller().decrement(key, _policy_or_404(scope))
    return Response(status_code=204)


@admin.post("/sweep")
def sweep_counters() -> dict[str, int]:
    """Remove expired counters now."""
    return {"removed": get_controller().sweep()}


app.include_router(admin)


# === Error handlers ===


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors in the API's response envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation errors."""
    errors = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation error", "errors": errors},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"},
    )


def create_app() -> FastAPI:
    """Factory function to create the app."""
    return app
