"""FastAPI dependency injection functions."""

from typing import AsyncGenerator, Callable

from fastapi import Request

from eventtracker.core.config import Settings
from eventtracker.services.query import QueryService
from eventtracker.uow import UnitOfWork


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_uow_factory(request: Request) -> Callable:
    """Get UnitOfWork factory from app state.

    Args:
        request: FastAPI Request object (contains app.state)

    Returns:
        UnitOfWork factory function from app lifespan
    """
    return request.app.state.uow_factory


async def get_query_service(request: Request) -> AsyncGenerator[QueryService, None]:
    """Yield a QueryService bound to a request-scoped UnitOfWork.

    Example:
        @router.get("/projects/{project_id}")
        async def get_project(project_id: int, queries=Depends(get_query_service)):
            return await queries.project(project_id)
    """
    uow_factory = request.app.state.uow_factory
    uow: UnitOfWork
    async with await uow_factory() as uow:
        yield QueryService(uow)
