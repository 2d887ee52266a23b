"""Ingestion worker.

Runs the ingestion pipeline against the configured JSON-RPC endpoint for the
lifetime of the API process.
"""

import asyncio
from typing import Callable

import structlog

from eventtracker.core.config import Settings
from eventtracker.services.exceptions import PermanentError
from eventtracker.services.ingestion.pipeline import IngestionPipeline
from eventtracker.services.ingestion.source import Web3ChainSource
from eventtracker.uow import create_uow_factory

logger = structlog.get_logger()


async def run_ingestion_worker(
    session_factory: Callable,
    settings: Settings,
) -> None:
    """Main entry point for the ingestion worker.

    Worker lifecycle:
    - Starts automatically with FastAPI app (registered in lifespan)
    - Runs until asyncio.CancelledError (app shutdown)
    - Returns when ingestion halts; a halt needs an operator resync, so the
      worker is not restarted

    Error handling:
    - TransientError: retried inside the pipeline with capped backoff
    - PermanentError: halt marker persisted, alert raised, worker exits

    Args:
        session_factory: Factory function to create new database sessions
        settings: Application settings (RPC endpoint, depths, poll interval)
    """
    source = Web3ChainSource.from_settings(settings)
    pipeline = IngestionPipeline(source, create_uow_factory(session_factory), settings)

    logger.info(
        "worker.started",
        worker="ingestion_worker",
        contracts=settings.contract_addresses_list,
        start_block=settings.start_block,
        confirmation_depth=settings.confirmation_depth,
        poll_interval=settings.poll_interval_seconds,
    )

    try:
        await pipeline.run()
    except PermanentError as e:
        logger.error(
            "worker.halted",
            worker="ingestion_worker",
            error=str(e),
            error_type=type(e).__name__,
            message="Ingestion halted - operator resync required",
        )
    except asyncio.CancelledError:
        logger.info(
            "worker.stopped",
            worker="ingestion_worker",
            message="Graceful shutdown requested",
        )
        raise  # Re-raise to propagate cancellation
