"""Project repository.

Read access to ProjectRecords; writes go through the delta recorder.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eventtracker.models.project import Project


class ProjectRepository:
    """Repository for Project entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, project_id: int) -> Project | None:
        """Retrieve project by on-chain project ID.

        Args:
            project_id: On-chain project ID

        Returns:
            Project if found, None otherwise
        """
        return await self.session.get(Project, project_id)

    async def get_all(self, limit: int = 100, offset: int = 0) -> list[Project]:
        """Retrieve projects ordered by project ID.

        Args:
            limit: Maximum number of projects to return (default: 100)
            offset: Number of projects to skip (default: 0)
        """
        result = await self.session.execute(
            select(Project)
            .order_by(Project.project_id.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_ids(self) -> list[int]:
        """Retrieve every project ID."""
        result = await self.session.execute(select(Project.project_id))  # type: ignore[arg-type]
        return list(result.scalars().all())
