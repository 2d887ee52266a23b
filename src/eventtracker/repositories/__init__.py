"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from eventtracker.repositories.alert import AlertRepository
from eventtracker.repositories.block import AppliedBlockRepository
from eventtracker.repositories.chain_event import ChainEventRepository
from eventtracker.repositories.market import MarketRepository
from eventtracker.repositories.nft import NFTRepository
from eventtracker.repositories.project import ProjectRepository
from eventtracker.repositories.randao import RandaoRepository
from eventtracker.repositories.statistics import StatisticsRepository
from eventtracker.repositories.system_state import SystemStateRepository

__all__ = [
    "AlertRepository",
    "AppliedBlockRepository",
    "ChainEventRepository",
    "MarketRepository",
    "NFTRepository",
    "ProjectRepository",
    "RandaoRepository",
    "StatisticsRepository",
    "SystemStateRepository",
]
