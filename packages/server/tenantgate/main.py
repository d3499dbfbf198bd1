"""
tenantgate API Server

Entry point for the FastAPI application.
"""

from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
import structlog
from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.api.v1 import build_api_router
from tenantgate.core.config import Settings, get_settings
from tenantgate.core.database import get_session
from tenantgate.core.errors import OrgError, org_error_handler, request_validation_handler
from tenantgate.core.hooks import AuditLog, HookPipeline, InputSanitizer, SlowOperationWarning
from tenantgate.core.logging import configure_logging
from tenantgate.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from tenantgate.core.rate_limit import RateLimiter
from tenantgate.core.redis import close_redis, get_redis
from tenantgate.resources import build_registry
from tenantgate.services.cascade import CascadeEngine
from tenantgate.services.org_crud import build_handlers
from tenantgate.services.registry import ResourceRegistry

log = structlog.get_logger()


def default_pipeline(settings: Settings) -> HookPipeline:
    return HookPipeline(
        [
            SlowOperationWarning(threshold_ms=settings.slow_operation_ms),
            InputSanitizer(),
            AuditLog(verbose=settings.audit_verbose),
        ]
    )


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ResourceRegistry] = None,
    redis_client: Optional[Callable[[], Awaitable[redis.Redis]]] = None,
    pipeline: Optional[HookPipeline] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    registry = registry or build_registry()
    pipeline = pipeline or default_pipeline(settings)
    rate_limiter = RateLimiter(redis_client or get_redis, enabled=settings.rate_limit_enabled)
    handlers = build_handlers(registry, pipeline, rate_limiter, settings)

    app = FastAPI(
        title="tenantgate",
        description="Multi-tenant organization authorization and resource lifecycle engine.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.pipeline = pipeline
    app.state.rate_limiter = rate_limiter
    app.state.handlers = handlers
    app.state.cascade_engine = CascadeEngine(registry, batch_size=settings.cascade_batch_size)

    # Middleware (order matters: last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["Retry-After", "X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(OrgError, org_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(build_api_router(registry, handlers, settings.bulk_max), prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check(session: AsyncSession = Depends(get_session)):
        """Readiness check: the database answers."""
        await session.execute(text("SELECT 1"))
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info("tenantgate.starting", resources=[d.name for d in registry])

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("tenantgate.stopping")
        await close_redis()

    return app


app = create_app()
