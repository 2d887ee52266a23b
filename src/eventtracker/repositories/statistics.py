"""MarketStatistics repository."""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.statistics import MarketStatistics


class StatisticsRepository:
    """Repository for MarketStatistics rows, written only by the aggregator."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, scope: str) -> MarketStatistics | None:
        """Retrieve statistics of a scope ("all" or "project:<id>")."""
        return await self.session.get(MarketStatistics, scope)

    async def save(self, stats: MarketStatistics) -> MarketStatistics:
        """Insert or replace the statistics row of a scope."""
        merged = await self.session.merge(stats)
        await self.session.flush()
        return merged

    async def list_scopes(self) -> list[str]:
        """Retrieve every scope with a statistics row."""
        result = await self.session.execute(select(MarketStatistics.scope))  # type: ignore[arg-type]
        return list(result.scalars().all())

    async def delete_all(self) -> None:
        """Drop every statistics row (full replay)."""
        await self.session.execute(delete(MarketStatistics))
        await self.session.flush()
