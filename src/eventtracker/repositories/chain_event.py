"""ChainEventRecord repository.

Provides the idempotency check and ordered access to the applied event log.
"""

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.chain_event import ChainEventRecord
from eventtracker.services.ingestion.events import EventIdentity


class ChainEventRepository:
    """Repository for ChainEventRecord entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, record: ChainEventRecord) -> ChainEventRecord:
        """Append an event (and its delta) to the log.

        Args:
            record: ChainEventRecord entity to persist

        Returns:
            Persisted record with generated ID
        """
        self.session.add(record)
        await self.session.flush()
        return record

    async def exists(self, identity: EventIdentity) -> bool:
        """Check whether an event identity was already applied (duplicate detection).

        The (block_number, block_hash, transaction_index, log_index) tuple
        uniquely identifies a chain event, so re-delivery of the same log from
        the source, or a retry after a crash, never double-applies it.

        Args:
            identity: Event identity

        Returns:
            True if the identity is in the log, False otherwise
        """
        result = await self.session.execute(
            select(
                exists().where(
                    ChainEventRecord.block_number == identity.block_number,  # type: ignore[arg-type]
                    ChainEventRecord.block_hash == identity.block_hash,  # type: ignore[arg-type]
                    ChainEventRecord.transaction_index == identity.transaction_index,  # type: ignore[arg-type]
                    ChainEventRecord.log_index == identity.log_index,  # type: ignore[arg-type]
                )
            )
        )
        return bool(result.scalar())

    async def get_by_block_hash(
        self, block_hash: str, newest_first: bool = False
    ) -> list[ChainEventRecord]:
        """Retrieve the events of one block in application order (or its reverse).

        Args:
            block_hash: Hash of the block
            newest_first: Return reverse application order (for rollback)

        Returns:
            Records ordered by (transaction_index, log_index)
        """
        order = (
            (ChainEventRecord.transaction_index.desc(), ChainEventRecord.log_index.desc())  # type: ignore[attr-defined]
            if newest_first
            else (ChainEventRecord.transaction_index.asc(), ChainEventRecord.log_index.asc())  # type: ignore[attr-defined]
        )
        result = await self.session.execute(
            select(ChainEventRecord)
            .where(ChainEventRecord.block_hash == block_hash)  # type: ignore[arg-type]
            .order_by(*order)
        )
        return list(result.scalars().all())

    async def get_canonical(self) -> list[ChainEventRecord]:
        """Retrieve the whole log in canonical order (full replay)."""
        result = await self.session.execute(
            select(ChainEventRecord).order_by(
                ChainEventRecord.block_number.asc(),  # type: ignore[attr-defined]
                ChainEventRecord.transaction_index.asc(),  # type: ignore[attr-defined]
                ChainEventRecord.log_index.asc(),  # type: ignore[attr-defined]
            )
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        """Number of events in the log."""
        result = await self.session.execute(select(func.count(ChainEventRecord.id)))  # type: ignore[arg-type]
        return result.scalar() or 0

    async def delete(self, record: ChainEventRecord) -> None:
        """Remove an event from the log after its delta was reverted."""
        await self.session.delete(record)
        await self.session.flush()

    async def delete_all(self) -> None:
        """Empty the log (full replay)."""
        await self.session.execute(delete(ChainEventRecord))
        await self.session.flush()
