"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from eventtracker.models.alert import IntegrityAlert
from eventtracker.models.block import AppliedBlock
from eventtracker.models.chain_event import ChainEventRecord
from eventtracker.models.market import (
    InvalidStateTransition,
    ListingStatus,
    Offer,
    OfferStatus,
    SaleListing,
)
from eventtracker.models.nft import NFT
from eventtracker.models.project import Project
from eventtracker.models.randao import RandaoCommit, RandaoRound
from eventtracker.models.statistics import MarketStatistics
from eventtracker.models.system_state import SystemState

__all__ = [
    "AppliedBlock",
    "ChainEventRecord",
    "IntegrityAlert",
    "InvalidStateTransition",
    "ListingStatus",
    "MarketStatistics",
    "NFT",
    "Offer",
    "OfferStatus",
    "Project",
    "RandaoCommit",
    "RandaoRound",
    "SaleListing",
    "SystemState",
]
