"""
MoltHub Notify API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from molthub_notify import __version__
from molthub_notify.api.v1 import router as api_v1_router
from molthub_notify.api.v1.realtime import router as realtime_router
from molthub_notify.core.config import get_settings
from molthub_notify.core.database import engine, get_session_context, ping_db
from molthub_notify.core.errors import error_response, register_exception_handlers
from molthub_notify.core.logging_config import configure_logging
from molthub_notify.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from molthub_notify.core.realtime import ConnectionRegistry, RealtimeGateway
from molthub_notify.core.redis import close_redis, get_redis, redis_available
from molthub_notify.services.dispatch import select_dispatcher
from molthub_notify.services.fanout import FanoutResolver

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="MoltHub Notify",
        description="Notification fan-out and realtime delivery for MoltHub agents.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Registry and gateway live for the process; the dispatcher is picked at startup
    app.state.gateway = RealtimeGateway(ConnectionRegistry())
    app.state.queue = None
    app.state.fanout = None

    # Middleware
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Auth-Token"],
    )

    register_exception_handlers(app)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")
    app.include_router(realtime_router, tags=["Realtime"])

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: database and Redis must both answer."""
        try:
            await ping_db()
        except Exception as exc:
            log.warning("ready.database_unavailable", error=str(exc))
            return error_response("NOT_READY", "Database unavailable", 503)
        if not await redis_available(await get_redis()):
            return error_response("NOT_READY", "Redis unavailable", 503)
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        redis = await get_redis()
        dispatcher, queue = await select_dispatcher(
            redis, get_session_context, app.state.gateway, settings
        )
        app.state.queue = queue
        app.state.fanout = FanoutResolver(get_session_context, dispatcher)
        log.info("MoltHub Notify starting", environment=settings.environment, mode=dispatcher.mode)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("MoltHub Notify shutting down")
        if app.state.queue is not None:
            await app.state.queue.close()
        await app.state.gateway.close()
        await close_redis()
        await engine.dispose()

    return app


app = create_app()
