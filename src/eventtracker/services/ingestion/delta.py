"""Reversible state deltas.

Every row an event touches is recorded with its before-image (or as an insert
when it did not exist). Reverting replays the changes backwards, restoring each
row to exactly the value it had before the event, so a reorg rollback never
needs a full recompute.
"""

from typing import Any

from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from eventtracker.models.chain_event import ChainEventRecord
from eventtracker.models.market import Offer, SaleListing
from eventtracker.models.nft import NFT
from eventtracker.models.project import Project
from eventtracker.models.randao import RandaoCommit, RandaoRound
from eventtracker.services.ingestion.events import EventIdentity

# Derived tables an event may touch, keyed by table name
TRACKED_MODELS: dict[str, type[SQLModel]] = {
    model.__tablename__: model  # type: ignore[misc]
    for model in (Project, NFT, SaleListing, Offer, RandaoRound, RandaoCommit)
}


class RowChange(BaseModel):
    """One row touched by an event. ``before`` is None for inserted rows."""

    table: str
    key: dict[str, Any]
    before: dict[str, Any] | None = None


class StateDelta(BaseModel):
    """Everything one event did to derived state."""

    block_number: int
    block_hash: str
    transaction_index: int
    log_index: int
    kind: str
    applied: bool
    reason: str | None = None
    changes: list[RowChange] = []

    @property
    def identity(self) -> EventIdentity:
        return EventIdentity(
            self.block_number, self.block_hash, self.transaction_index, self.log_index
        )

    @classmethod
    def from_record(cls, record: ChainEventRecord) -> "StateDelta":
        return cls(
            block_number=record.block_number,
            block_hash=record.block_hash,
            transaction_index=record.transaction_index,
            log_index=record.log_index,
            kind=record.kind,
            applied=record.applied,
            reason=record.rejection_reason,
            changes=[RowChange.model_validate(c) for c in record.delta],
        )


def _primary_key(row: SQLModel) -> dict[str, Any]:
    mapper = sa_inspect(type(row))
    return {column.key: getattr(row, column.key) for column in mapper.primary_key}


def _snapshot(row: SQLModel) -> dict[str, Any]:
    mapper = sa_inspect(type(row))
    return {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}


class DeltaRecorder:
    """Collects the row changes of one event while it is applied."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.changes: list[RowChange] = []
        self._seen: set[tuple[str, tuple]] = set()

    def _mark(self, table: str, key: dict[str, Any]) -> bool:
        marker = (table, tuple(sorted(key.items())))
        if marker in self._seen:
            return False
        self._seen.add(marker)
        return True

    async def insert(self, row: SQLModel) -> SQLModel:
        """Insert a new derived row and record it as created by this event."""
        table = row.__tablename__  # type: ignore[attr-defined]
        self.session.add(row)
        await self.session.flush()
        key = _primary_key(row)
        if self._mark(table, key):
            self.changes.append(RowChange(table=table, key=key, before=None))
        return row

    def track(self, row: SQLModel) -> SQLModel:
        """Capture a row's before-image; call before mutating it.

        Only the first capture per row within an event is kept, which is the
        value the row had before the event started.
        """
        table = row.__tablename__  # type: ignore[attr-defined]
        key = _primary_key(row)
        if self._mark(table, key):
            self.changes.append(RowChange(table=table, key=key, before=_snapshot(row)))
        self.session.add(row)
        return row

    async def flush(self) -> None:
        await self.session.flush()

    async def discard(self) -> None:
        """Undo whatever was recorded so far (event rejected midway)."""
        await restore(self.session, self.changes)
        self.changes = []
        self._seen.clear()


async def restore(session: AsyncSession, changes: list[RowChange]) -> None:
    """Apply recorded changes backwards, restoring every row's before-image."""
    for change in reversed(changes):
        model = TRACKED_MODELS[change.table]
        row = await session.get(model, change.key)
        if change.before is None:
            if row is not None:
                await session.delete(row)
        elif row is None:
            session.add(model(**change.before))
        else:
            for field, value in change.before.items():
                setattr(row, field, value)
            session.add(row)
        await session.flush()
