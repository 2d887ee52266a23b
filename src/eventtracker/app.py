"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from eventtracker.api.routes import market, projects, system
from eventtracker.core import timezone  # noqa: F401
from eventtracker.core.config import Settings, configure_logging
from eventtracker.core.database import setup_db_session
from eventtracker.services.ingestion.checkpoint import CheckpointStore
from eventtracker.uow import create_uow_factory
from eventtracker.workers.ingestion_worker import run_ingestion_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func, session_factory, settings, worker_name: str, shutdown_event: asyncio.Event
):
    """Create a worker with automatic restart on crash.

    A worker that returns normally has stopped on purpose (ingestion halt) and
    is not restarted.

    Args:
        coro_func: Worker coroutine function (e.g., run_ingestion_worker)
        session_factory: Database session factory
        settings: Application settings
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        # Check if shutdown was requested
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Check if task was cancelled (normal shutdown)
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc is None:
            logger.warning("worker.exited", worker=worker_name, message="Not restarting")
            return

        logger.error(
            "worker.crashed",
            worker=worker_name,
            error=str(exc),
            error_type=type(exc).__name__,
            retry_in_seconds=RESTART_DELAY,
            exc_info=exc,
        )

        # Schedule restart after fixed delay
        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(session_factory, settings))
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    # Create initial task
    task = asyncio.create_task(coro_func(session_factory, settings))
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Initialize database session factory, configure logging, start ingestion
    - Shutdown: Stop the ingestion worker
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory

    shutdown_event = asyncio.Event()
    ingestion_task = None
    if settings.start_ingestion:
        ingestion_task = create_resilient_worker(
            run_ingestion_worker, session_factory, settings, "ingestion", shutdown_event
        )
    else:
        logger.info("startup.ingestion_disabled")

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if ingestion_task is not None:
        ingestion_task.cancel()
        await asyncio.gather(ingestion_task, return_exceptions=True)

    await session_factory.kw["bind"].dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="EventTracker API",
        description="Read-only views over indexed generative-art platform state",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(projects.router)
    app.include_router(market.router)
    app.include_router(system.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity and halt status.

        Returns:
            200: {"status": "healthy", ...} if the database answers and ingestion runs
            503: {"status": "halted", ...} if ingestion is halted
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            async with await app.state.uow_factory() as uow:
                store = CheckpointStore(uow)
                checkpoint = await store.load()
                halt = await store.get_halt()

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

        body = {
            "status": "healthy",
            "checkpoint": checkpoint.block_number if checkpoint else None,
        }
        if halt is not None:
            logger.warning("health_check.halted", reason=halt.get("reason"))
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            body["status"] = "halted"
            body["halt"] = halt
        return body

    return app


# Create app instance for ASGI servers
app = create_app()
