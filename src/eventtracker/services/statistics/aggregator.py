"""Market statistics aggregator.

Statistics are a pure function of the listings and offers in a scope at a
given block: they are recomputed from the market tables rather than patched
incrementally, so rollbacks and replays converge to the same values.

- floor: lowest price among open and filled listings
- median: median of sale prices (filled listings and accepted offers); for an
  even count, the floored mean of the two middle prices
- volume: sum of sale prices, all time and over the 24h before ``as_of``
"""

import structlog

from eventtracker.models.market import ListingStatus, OfferStatus
from eventtracker.models.statistics import PLATFORM_SCOPE, MarketStatistics, project_scope
from eventtracker.services.ingestion.checkpoint import CheckpointStore
from eventtracker.services.ingestion.events import BlockHeader
from eventtracker.uow import UnitOfWork

logger = structlog.get_logger()

DAY_SECONDS = 24 * 60 * 60


def median_price(prices: list[int]) -> int | None:
    """Median of integer prices; floored mean of the middle pair for even counts."""
    if not prices:
        return None
    ordered = sorted(prices)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) // 2


class MarketStatisticsAggregator:
    """Recomputes MarketStatistics rows inside the caller's unit of work."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def recompute(
        self, project_id: int | None = None, as_of: BlockHeader | None = None
    ) -> MarketStatistics:
        """Recompute and store statistics of one scope.

        Args:
            project_id: Project scope, or None for the whole platform
            as_of: Block the statistics are evaluated at (defaults to the
                latest applied block)

        Returns:
            The stored statistics row
        """
        as_of_block, as_of_timestamp = await self._resolve_as_of(as_of)

        listings = await self.uow.market.get_listings(project_id=project_id)
        offers = await self.uow.market.get_offers(project_id=project_id)

        # (price, timestamp) of every completed sale
        sales = [
            (listing.price, listing.closed_timestamp or 0)
            for listing in listings
            if listing.status == ListingStatus.FILLED
        ]
        sales += [
            (offer.price, offer.closed_timestamp or 0)
            for offer in offers
            if offer.status == OfferStatus.ACCEPTED
        ]

        floor_candidates = [
            listing.price
            for listing in listings
            if listing.status in (ListingStatus.OPEN, ListingStatus.FILLED)
        ]
        open_offers = [offer.price for offer in offers if offer.status == OfferStatus.OPEN]
        window_start = as_of_timestamp - DAY_SECONDS

        stats = MarketStatistics(
            scope=PLATFORM_SCOPE if project_id is None else project_scope(project_id),
            project_id=project_id,
            volume_total=sum(price for price, _ in sales),
            volume_24h=sum(price for price, ts in sales if window_start < ts <= as_of_timestamp),
            floor_price=min(floor_candidates) if floor_candidates else None,
            median_price=median_price([price for price, _ in sales]),
            best_offer=max(open_offers) if open_offers else None,
            sale_count=len(sales),
            open_listing_count=sum(1 for listing in listings if listing.status == ListingStatus.OPEN),
            open_offer_count=len(open_offers),
            as_of_block=as_of_block,
            as_of_timestamp=as_of_timestamp,
        )
        saved = await self.uow.statistics.save(stats)

        logger.debug(
            "statistics.recomputed",
            scope=stats.scope,
            sale_count=stats.sale_count,
            floor_price=stats.floor_price,
            as_of_block=as_of_block,
        )
        return saved

    async def recompute_scopes(
        self, project_ids: set[int], as_of: BlockHeader | None = None
    ) -> None:
        """Recompute the platform scope plus the given project scopes."""
        await self.recompute(None, as_of)
        for project_id in sorted(project_ids):
            await self.recompute(project_id, as_of)

    async def recompute_all(self, as_of: BlockHeader | None = None) -> None:
        """Recompute every scope that has market activity or a stored row.

        Used after rollbacks and full replays, where any scope may have changed.
        """
        project_ids = {listing.project_id for listing in await self.uow.market.get_listings()}
        project_ids |= {offer.project_id for offer in await self.uow.market.get_offers()}
        for scope in await self.uow.statistics.list_scopes():
            if scope.startswith("project:"):
                project_ids.add(int(scope.split(":", 1)[1]))
        await self.recompute_scopes(project_ids, as_of)

    async def _resolve_as_of(self, as_of: BlockHeader | None) -> tuple[int, int]:
        if as_of is not None:
            return as_of.number, as_of.timestamp
        checkpoint = await CheckpointStore(self.uow).load()
        if checkpoint is None:
            return 0, 0
        block = await self.uow.blocks.get_by_number(checkpoint.block_number)
        return checkpoint.block_number, block.timestamp if block is not None else 0
