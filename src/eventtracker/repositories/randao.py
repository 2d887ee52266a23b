"""Randao repository.

Provides data access for commit-reveal rounds and commitments.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.randao import RandaoCommit, RandaoRound


class RandaoRepository:
    """Repository for RandaoRound and RandaoCommit entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_round(self, round_id: int) -> RandaoRound | None:
        """Retrieve a round by ID."""
        return await self.session.get(RandaoRound, round_id)

    async def get_commit(self, round_id: int, participant: str) -> RandaoCommit | None:
        """Retrieve a participant's commitment in a round.

        Returns:
            RandaoCommit if the participant committed, None (NoCommit) otherwise
        """
        return await self.session.get(RandaoCommit, (round_id, participant))

    async def get_latest_finalized(self) -> RandaoRound | None:
        """Retrieve the finalized round with the highest ID.

        Returns:
            Latest finalized round, or None if no round has reached quorum
        """
        result = await self.session.execute(
            select(RandaoRound)
            .where(RandaoRound.finalized == True)  # type: ignore[arg-type]  # noqa: E712
            .order_by(RandaoRound.round_id.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()
