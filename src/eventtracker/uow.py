"""Unit of Work pattern for EventTracker.

Provides transaction management with automatic commit/rollback and access to all
repositories. One pipeline block (events, lineage, checkpoint, statistics) is one
unit of work, so readers never observe a partially applied block.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventtracker.repositories.alert import AlertRepository
from eventtracker.repositories.block import AppliedBlockRepository
from eventtracker.repositories.chain_event import ChainEventRepository
from eventtracker.repositories.market import MarketRepository
from eventtracker.repositories.nft import NFTRepository
from eventtracker.repositories.project import ProjectRepository
from eventtracker.repositories.randao import RandaoRepository
from eventtracker.repositories.statistics import StatisticsRepository
from eventtracker.repositories.system_state import SystemStateRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages database transactions and provides access to all repositories.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            project = await uow.projects.get_by_id(0)
            # Automatically commits on successful exit
            # Automatically rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.alerts = AlertRepository(session)
        self.blocks = AppliedBlockRepository(session)
        self.chain_events = ChainEventRepository(session)
        self.market = MarketRepository(session)
        self.nfts = NFTRepository(session)
        self.projects = ProjectRepository(session)
        self.randao = RandaoRepository(session)
        self.statistics = StatisticsRepository(session)
        self.system_state = SystemStateRepository(session)

    async def __aenter__(self):
        """Enter async context manager.

        Returns:
            self: UnitOfWork instance with all repositories available
        """
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager with automatic commit/rollback.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(db_url)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            checkpoint = await uow.system_state.get_state("checkpoint")
    """

    async def _create_uow():
        """Create a new UnitOfWork instance with a new session."""
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
