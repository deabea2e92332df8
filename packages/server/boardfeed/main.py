"""
Boardfeed API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from boardfeed.core.config import get_settings
from boardfeed.core.database import async_session_factory
from boardfeed.core.errors import BoardfeedError, boardfeed_error_handler
from boardfeed.core.jobs import ArqDispatcher, FanOutQueue, set_dispatcher
from boardfeed.core.logging import configure_logging
from boardfeed.core.redis import close_redis
from boardfeed.api.v1 import router as api_v1_router
from boardfeed.tasks.fanout import JOB_HANDLERS

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Boardfeed",
        description="Board membership, subscriptions, and activity feeds.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(BoardfeedError, boardfeed_error_handler)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready", "fanout_backend": settings.fanout_backend}

    queue: FanOutQueue | None = None

    @app.on_event("startup")
    async def on_startup():
        nonlocal queue
        configure_logging(settings.log_level, settings.log_format)
        if settings.fanout_backend == "arq":
            set_dispatcher(ArqDispatcher())
        else:
            queue = FanOutQueue(
                JOB_HANDLERS,
                async_session_factory,
                workers=settings.fanout_workers,
                max_attempts=settings.fanout_max_attempts,
                retry_base_seconds=settings.fanout_retry_base_seconds,
            )
            await queue.start()
            set_dispatcher(queue)
        log.info("Boardfeed starting", fanout_backend=settings.fanout_backend)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Boardfeed shutting down")
        if queue is not None:
            await queue.stop()
        set_dispatcher(None)
        await close_redis()

    return app


app = create_app()
