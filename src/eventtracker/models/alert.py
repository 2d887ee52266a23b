"""IntegrityAlert entity - Persisted operator-facing alerts."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrityAlert(SQLModel, table=True):
    """Data-integrity violation or ingestion halt raised by the pipeline."""

    __tablename__ = "integrity_alerts"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    category: str = Field(max_length=50, index=True)  # "integrity", "halt"
    kind: Optional[str] = Field(default=None, max_length=50)
    block_number: Optional[int] = Field(default=None, index=True)
    block_hash: Optional[str] = Field(default=None, max_length=66)
    transaction_index: Optional[int] = Field(default=None)
    log_index: Optional[int] = Field(default=None)
    reason: str = Field(max_length=1000)
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow)
