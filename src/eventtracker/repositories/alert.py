"""IntegrityAlert repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.alert import IntegrityAlert


class AlertRepository:
    """Repository for persisted operator alerts."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, alert: IntegrityAlert) -> IntegrityAlert:
        """Persist an alert."""
        self.session.add(alert)
        await self.session.flush()
        return alert

    async def get_recent(self, category: str | None = None, limit: int = 100) -> list[IntegrityAlert]:
        """Retrieve alerts, newest first.

        Args:
            category: Restrict to "integrity" or "halt" (None: all)
            limit: Maximum number of alerts to return (default: 100)
        """
        stmt = select(IntegrityAlert)
        if category is not None:
            stmt = stmt.where(IntegrityAlert.category == category)  # type: ignore[arg-type]
        result = await self.session.execute(
            stmt.order_by(IntegrityAlert.id.desc()).limit(limit)  # type: ignore[union-attr]
        )
        return list(result.scalars().all())
