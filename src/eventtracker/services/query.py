"""Read-side queries over derived state.

Readers see committed state only; every read runs in its own unit of work, so
a block is either entirely visible or not at all.
"""

from dataclasses import dataclass

from eventtracker.models.alert import IntegrityAlert
from eventtracker.models.market import Offer, SaleListing
from eventtracker.models.nft import NFT
from eventtracker.models.project import Project
from eventtracker.models.randao import RandaoRound
from eventtracker.models.statistics import PLATFORM_SCOPE, MarketStatistics, project_scope
from eventtracker.services.ingestion.checkpoint import Checkpoint, CheckpointStore
from eventtracker.services.randomness.engine import RandomnessEngine
from eventtracker.uow import UnitOfWork


@dataclass(frozen=True)
class IngestionStatus:
    checkpoint: Checkpoint | None
    halt: dict | None
    event_count: int


class QueryService:
    """Read access to projects, tokens, market, statistics and randomness."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def status(self) -> IngestionStatus:
        store = CheckpointStore(self.uow)
        return IngestionStatus(
            checkpoint=await store.load(),
            halt=await store.get_halt(),
            event_count=await self.uow.chain_events.count(),
        )

    async def project(self, project_id: int) -> Project | None:
        return await self.uow.projects.get_by_id(project_id)

    async def projects(self, limit: int = 100, offset: int = 0) -> list[Project]:
        return await self.uow.projects.get_all(limit=limit, offset=offset)

    async def nft(self, token_id: int) -> NFT | None:
        return await self.uow.nfts.get_by_token_id(token_id)

    async def project_nfts(self, project_id: int, limit: int = 100, offset: int = 0) -> list[NFT]:
        return await self.uow.nfts.get_by_project(project_id, limit=limit, offset=offset)

    async def owner_nfts(self, owner: str, limit: int = 100, offset: int = 0) -> list[NFT]:
        return await self.uow.nfts.get_by_owner(owner, limit=limit, offset=offset)

    async def listing(self, listing_id: int) -> SaleListing | None:
        return await self.uow.market.get_listing(listing_id)

    async def listings(
        self, project_id: int | None = None, status: str | None = None
    ) -> list[SaleListing]:
        return await self.uow.market.get_listings(project_id=project_id, status=status)

    async def offer(self, offer_id: int) -> Offer | None:
        return await self.uow.market.get_offer(offer_id)

    async def offers(self, project_id: int | None = None, status: str | None = None) -> list[Offer]:
        return await self.uow.market.get_offers(project_id=project_id, status=status)

    async def statistics(self, project_id: int | None = None) -> MarketStatistics | None:
        """Stored statistics of a project, or of the platform when project_id is None."""
        scope = PLATFORM_SCOPE if project_id is None else project_scope(project_id)
        return await self.uow.statistics.get(scope)

    async def randao_round(self, round_id: int) -> RandaoRound | None:
        return await self.uow.randao.get_round(round_id)

    async def finalized_seed(self, round_id: int) -> str | None:
        """Final value of a round; None while the round is not finalized."""
        engine = RandomnessEngine(self.uow, quorum=1)
        return await engine.finalized_seed(round_id)

    async def alerts(self, category: str | None = None, limit: int = 100) -> list[IntegrityAlert]:
        return await self.uow.alerts.get_recent(category=category, limit=limit)
