"""AppliedBlock repository.

Provides access to the lineage of applied block headers.
"""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.block import AppliedBlock


class AppliedBlockRepository:
    """Repository for AppliedBlock entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, block: AppliedBlock) -> AppliedBlock:
        """Record a block as applied.

        Args:
            block: AppliedBlock entity to persist

        Returns:
            Persisted block
        """
        self.session.add(block)
        await self.session.flush()
        return block

    async def get_by_number(self, block_number: int) -> AppliedBlock | None:
        """Retrieve the applied block at a height.

        Args:
            block_number: Block height

        Returns:
            AppliedBlock if the height was applied, None otherwise
        """
        return await self.session.get(AppliedBlock, block_number)

    async def get_after(self, block_number: int) -> list[AppliedBlock]:
        """Retrieve applied blocks above a height, newest first (rollback order).

        Args:
            block_number: Exclusive lower bound

        Returns:
            Blocks ordered by descending block number
        """
        result = await self.session.execute(
            select(AppliedBlock)
            .where(AppliedBlock.block_number > block_number)  # type: ignore[arg-type]
            .order_by(AppliedBlock.block_number.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_all(self) -> list[AppliedBlock]:
        """Retrieve every applied block in ascending order (full replay)."""
        result = await self.session.execute(
            select(AppliedBlock).order_by(AppliedBlock.block_number.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def delete(self, block: AppliedBlock) -> None:
        """Forget an applied block (after its events were reverted)."""
        await self.session.delete(block)
        await self.session.flush()

    async def delete_all(self) -> None:
        """Forget the whole lineage (full replay or operator resync)."""
        await self.session.execute(delete(AppliedBlock))
        await self.session.flush()
