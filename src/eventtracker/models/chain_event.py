"""ChainEventRecord entity - Append-only log of applied events and their deltas."""

from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class ChainEventRecord(SQLModel, table=True):
    """One decoded event of a canonical block, with the delta its application produced.

    The identity columns form the idempotency key. ``applied`` is False when the
    event was rejected as an integrity violation; the row is still kept so a
    re-delivery of the same identity stays a no-op.
    """

    __tablename__ = "chain_events"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint(
            "block_number",
            "block_hash",
            "transaction_index",
            "log_index",
            name="uq_chain_events_identity",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    block_number: int = Field(index=True)
    block_hash: str = Field(max_length=66, index=True)
    transaction_index: int
    log_index: int
    block_timestamp: int
    kind: str = Field(max_length=50, index=True)
    payload: dict = Field(sa_column=Column(JSON, nullable=False))
    applied: bool = Field(default=True)
    rejection_reason: Optional[str] = Field(default=None, max_length=1000)
    delta: list = Field(sa_column=Column(JSON, nullable=False))
