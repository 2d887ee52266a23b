"""NFT repository.

Read access to NFTRecords; writes go through the delta recorder.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.nft import NFT


class NFTRepository:
    """Repository for NFT entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_token_id(self, token_id: int) -> NFT | None:
        """Retrieve NFT by on-chain token ID.

        Args:
            token_id: On-chain token ID (unique)

        Returns:
            NFT if found, None otherwise
        """
        return await self.session.get(NFT, token_id)

    async def get_by_project(
        self, project_id: int, limit: int = 100, offset: int = 0
    ) -> list[NFT]:
        """Retrieve NFTs of a project ordered by token ID.

        Args:
            project_id: Project's on-chain ID
            limit: Maximum number of NFTs to return (default: 100)
            offset: Number of NFTs to skip (default: 0)
        """
        result = await self.session.execute(
            select(NFT)
            .where(NFT.project_id == project_id)  # type: ignore[arg-type]
            .order_by(NFT.token_id.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_by_owner(self, owner: str, limit: int = 100, offset: int = 0) -> list[NFT]:
        """Retrieve NFTs held by an address (case-insensitive).

        Args:
            owner: Holder wallet address
            limit: Maximum number of NFTs to return (default: 100)
            offset: Number of NFTs to skip (default: 0)
        """
        result = await self.session.execute(
            select(NFT)
            .where(func.lower(NFT.owner) == owner.lower())
            .order_by(NFT.token_id.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_by_project(self, project_id: int) -> int:
        """Number of NFTs minted for a project."""
        result = await self.session.execute(
            select(func.count(NFT.token_id)).where(NFT.project_id == project_id)  # type: ignore[arg-type]
        )
        return result.scalar() or 0
