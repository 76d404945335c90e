"""FastAPI application factory and entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import get_settings
from ..core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    IdentityProvisioningError,
    MemoryNotFoundError,
    PersistenceError,
    QuotaExceededError,
    ValidationError,
)
from ..memory.client import MemoryServiceClient
from ..memory.orchestrator import MemoryOrchestrator
from ..storage.connection import DatabaseManager
from ..utils.logging_config import configure_logging
from .admin_routes import admin_router
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .routes import router
from .usage_routes import usage_router

logger = structlog.get_logger()


def _safe_detail(exc: Exception, fallback: str) -> str:
    """Avoid leaking internal details in 5xx responses unless debug."""
    return str(exc) if get_settings().debug else fallback


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler: one engine, one HTTP client, one orchestrator per process."""
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json, app_name=settings.app_name)

    db_manager = await DatabaseManager.create(settings)
    app.state.db = db_manager
    client = MemoryServiceClient(settings.memory_service)
    app.state.orchestrator = await MemoryOrchestrator.create(db_manager, client, settings)
    if not client.configured:
        logger.warning("memory_service_not_configured", msg="MEMORY_SERVICE__API_KEY is not set")

    yield

    await app.state.orchestrator.close()
    await db_manager.close()


def create_app() -> FastAPI:
    """Create FastAPI application."""
    app = FastAPI(
        title="Chat Memory",
        description="Long-term memory, message links and usage quotas for chat users",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        if any(err["type"] == "missing" for err in errors):
            detail = "Missing required fields"
        else:
            detail = errors[0]["msg"] if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"detail": detail})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        _request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded_handler(_request: Request, exc: QuotaExceededError) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "detail": str(exc),
                "metric": exc.metric.wire_name,
                "limit": exc.limit,
                "current": exc.current,
                "shouldShowUpgrade": True,
            },
        )

    @app.exception_handler(MemoryNotFoundError)
    async def memory_not_found_handler(_request: Request, exc: MemoryNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(IdentityProvisioningError)
    async def identity_error_handler(
        _request: Request, exc: IdentityProvisioningError
    ) -> JSONResponse:
        logger.error("identity_provisioning_error", user_id=exc.user_id, error=str(exc))
        return JSONResponse(
            status_code=502,
            content={"detail": _safe_detail(exc, "Failed to set up memory identity")},
        )

    @app.exception_handler(ExternalServiceError)
    async def external_error_handler(_request: Request, exc: ExternalServiceError) -> JSONResponse:
        logger.error("memory_service_error", status_code=exc.status_code, error=str(exc))
        return JSONResponse(
            status_code=502,
            content={"detail": _safe_detail(exc, "Memory service error")},
        )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(_request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("persistence_error", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"detail": _safe_detail(exc, "Internal server error")},
        )

    settings = get_settings()
    if settings.cors_origins is not None:
        origins = settings.cors_origins
    elif settings.debug:
        origins = ["*"]
    else:
        origins = ["http://localhost:3000"]

    # Credentials are incompatible with wildcard origins
    allow_credentials = "*" not in origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    rpm = settings.auth.rate_limit_requests_per_minute
    if rpm > 0:
        app.add_middleware(RateLimitMiddleware, requests_per_minute=rpm)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router, prefix="/api/v1")
    app.include_router(usage_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")

    # Prometheus metrics endpoint
    from prometheus_client import make_asgi_app

    app.mount("/metrics", make_asgi_app())

    return app


app = create_app()
