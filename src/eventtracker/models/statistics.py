"""MarketStatistics entity - Derived market aggregates per scope."""

from typing import Optional

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from eventtracker.core.types import Uint256

PLATFORM_SCOPE = "all"


def project_scope(project_id: int) -> str:
    """Scope key for a single project's statistics."""
    return f"project:{project_id}"


class MarketStatistics(SQLModel, table=True):
    """Rolling statistics for a project or the whole platform.

    Rows are only ever written by the aggregator; they are a pure function of
    the sale listings and offers in scope at ``as_of_block``.
    """

    __tablename__ = "market_statistics"  # type: ignore[assignment]

    scope: str = Field(primary_key=True, max_length=64)
    project_id: Optional[int] = Field(default=None, index=True)
    volume_total: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    volume_24h: int = Field(default=0, sa_column=Column(Uint256, nullable=False))
    floor_price: Optional[int] = Field(default=None, sa_column=Column(Uint256, nullable=True))
    median_price: Optional[int] = Field(default=None, sa_column=Column(Uint256, nullable=True))
    best_offer: Optional[int] = Field(default=None, sa_column=Column(Uint256, nullable=True))
    sale_count: int = Field(default=0)
    open_listing_count: int = Field(default=0)
    open_offer_count: int = Field(default=0)
    as_of_block: int = Field(default=0)
    as_of_timestamp: int = Field(default=0)
