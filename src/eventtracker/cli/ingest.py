"""CLI for running and operating the ingestion pipeline.

Usage:
    python -m eventtracker.cli COMMAND [OPTIONS]

Examples:
    # Create tables in a fresh database (development; production uses alembic)
    python -m eventtracker.cli init-db

    # Apply all confirmed blocks once and exit
    python -m eventtracker.cli sync

    # Follow the chain until interrupted
    python -m eventtracker.cli sync --follow

    # Show checkpoint and halt state
    python -m eventtracker.cli status

    # Rebuild derived state from the stored event log
    python -m eventtracker.cli replay

    # Clear a halt and roll back to a trusted block
    python -m eventtracker.cli resync --to-block 18000000
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from eventtracker.core import timezone  # noqa: F401
from eventtracker.core.config import Settings, configure_logging
from eventtracker.core.database import create_schema, setup_db_session
from eventtracker.services.exceptions import PermanentError
from eventtracker.services.ingestion.pipeline import IngestionPipeline
from eventtracker.services.ingestion.replay import rebuild_from_event_log
from eventtracker.services.ingestion.source import Web3ChainSource
from eventtracker.services.query import QueryService
from eventtracker.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Index platform contract events into derived state",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Apply confirmed blocks")
    sync.add_argument(
        "--follow",
        action="store_true",
        help="Keep polling the chain instead of exiting once caught up",
    )

    commands.add_parser("status", help="Show checkpoint, halt marker and event count")
    commands.add_parser("replay", help="Rebuild derived state from the event log")
    commands.add_parser("init-db", help="Create all tables (development only)")

    resync = commands.add_parser("resync", help="Clear a halt and roll back state")
    resync.add_argument(
        "--to-block",
        type=int,
        help="Trusted block to roll back to (default: before START_BLOCK, i.e. empty state)",
    )

    return parser.parse_args(argv)


async def _sync(pipeline: IngestionPipeline, follow: bool) -> int:
    if follow:
        await pipeline.run()
        return 0

    while True:
        result = await pipeline.sync_once()
        logger.info(
            "sync.step",
            head=result.head,
            checkpoint=result.checkpoint.block_number if result.checkpoint else None,
            applied_blocks=result.applied_blocks,
            reverted_blocks=result.reverted_blocks,
            applied_events=result.applied_events,
            rejected_events=result.rejected_events,
        )
        if result.caught_up:
            return 0


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (interrupted), 3 (ingestion halted)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        if args.command == "init-db":
            await create_schema(session_factory.kw["bind"])
            logger.info("init_db.complete")
            return 0

        if args.command == "status":
            async with await uow_factory() as uow:
                current = await QueryService(uow).status()
            logger.info(
                "status",
                checkpoint=current.checkpoint.block_number if current.checkpoint else None,
                checkpoint_hash=current.checkpoint.block_hash if current.checkpoint else None,
                halted=current.halt is not None,
                halt=current.halt,
                event_count=current.event_count,
            )
            return 0

        if args.command == "replay":
            async with await uow_factory() as uow:
                count = await rebuild_from_event_log(uow, settings)
            logger.info("replay.complete", events=count)
            return 0

        pipeline = IngestionPipeline(Web3ChainSource.from_settings(settings), uow_factory, settings)

        if args.command == "resync":
            checkpoint = await pipeline.resync(args.to_block)
            logger.info(
                "resync.complete",
                checkpoint=checkpoint.block_number if checkpoint else None,
            )
            return 0

        return await _sync(pipeline, args.follow)

    except PermanentError as e:
        logger.error(
            "ingestion.halted",
            error=str(e),
            error_type=type(e).__name__,
            message="Run `resync` after investigating",
        )
        return 3

    except KeyboardInterrupt:
        logger.warning("cli.interrupted", message="Interrupted by user")
        return 2

    except Exception as e:
        logger.error("cli.fatal_error", error=str(e), exc_info=True)
        return 1
    finally:
        await session_factory.kw["bind"].dispose()


def main() -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
