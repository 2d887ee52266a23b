"""Market repository.

Read access to SaleListings and Offers, scoped by project or platform-wide.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.market import Offer, SaleListing


class MarketRepository:
    """Repository for SaleListing and Offer entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_listing(self, listing_id: int) -> SaleListing | None:
        """Retrieve listing by on-chain listing ID."""
        return await self.session.get(SaleListing, listing_id)

    async def get_offer(self, offer_id: int) -> Offer | None:
        """Retrieve offer by on-chain offer ID."""
        return await self.session.get(Offer, offer_id)

    async def get_listings(
        self, project_id: int | None = None, status: str | None = None
    ) -> list[SaleListing]:
        """Retrieve listings in scope.

        Args:
            project_id: Restrict to one project (None: platform-wide)
            status: Restrict to one status (None: any)

        Returns:
            Listings ordered by listing ID
        """
        stmt = select(SaleListing)
        if project_id is not None:
            stmt = stmt.where(SaleListing.project_id == project_id)  # type: ignore[arg-type]
        if status is not None:
            stmt = stmt.where(SaleListing.status == status)  # type: ignore[arg-type]
        result = await self.session.execute(stmt.order_by(SaleListing.listing_id.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())

    async def get_offers(
        self, project_id: int | None = None, status: str | None = None
    ) -> list[Offer]:
        """Retrieve offers in scope.

        Args:
            project_id: Restrict to one project (None: platform-wide)
            status: Restrict to one status (None: any)

        Returns:
            Offers ordered by offer ID
        """
        stmt = select(Offer)
        if project_id is not None:
            stmt = stmt.where(Offer.project_id == project_id)  # type: ignore[arg-type]
        if status is not None:
            stmt = stmt.where(Offer.status == status)  # type: ignore[arg-type]
        result = await self.session.execute(stmt.order_by(Offer.offer_id.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())
