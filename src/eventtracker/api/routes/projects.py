"""Project and NFT read endpoints.

- GET /api/projects - Paginated project list
- GET /api/projects/{project_id} - One project with its revenue splits
- GET /api/projects/{project_id}/nfts - Paginated NFTs of a project
- GET /api/nfts/{token_id} - One NFT with seed and reveal state
- GET /api/owners/{address}/nfts - NFTs held by an address
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from eventtracker.api.dependencies import get_query_service
from eventtracker.services.query import QueryService

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["projects"])

# Wei amounts exceed the JSON safe integer range, so they are rendered as strings
Wei = Annotated[str, BeforeValidator(str)]


# Response Models


class SplitEntry(BaseModel):
    beneficiary: str
    percentage: int


class ProjectResponse(BaseModel):
    """Project state as derived from ProjectCreated/ProjectUpdated."""

    model_config = ConfigDict(from_attributes=True)

    project_id: int
    artist: str
    name: str
    editions: int = Field(..., description="Editions still mintable")
    max_editions: int
    price: Wei
    opening_time: int
    code_pointer: str
    details_pointer: str
    splits: list[SplitEntry]
    royalty_percentage: int
    active: bool
    created_block: int

    @classmethod
    def from_project(cls, project) -> "ProjectResponse":
        data = {c: getattr(project, c) for c in cls.model_fields if c != "splits"}
        data["splits"] = [
            SplitEntry(beneficiary=beneficiary, percentage=percentage)
            for beneficiary, percentage in project.splits
        ]
        return cls.model_validate(data)


class NFTResponse(BaseModel):
    """Minted token."""

    model_config = ConfigDict(from_attributes=True)

    token_id: int
    project_id: int
    owner: str
    seed: str
    seed_final: bool = Field(..., description="False while the seed is the mint-time placeholder")
    seed_round: int | None
    revealed: bool
    token_uri: str
    minted_block: int


# Endpoints


@router.get("/projects", response_model=list[ProjectResponse], status_code=status.HTTP_200_OK)
async def list_projects(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    queries: QueryService = Depends(get_query_service),
) -> list[ProjectResponse]:
    projects = await queries.projects(limit=limit, offset=offset)
    return [ProjectResponse.from_project(p) for p in projects]


@router.get(
    "/projects/{project_id}", response_model=ProjectResponse, status_code=status.HTTP_200_OK
)
async def get_project(
    project_id: int, queries: QueryService = Depends(get_query_service)
) -> ProjectResponse:
    """Retrieve one project.

    Raises:
        HTTPException 404: Project not indexed
    """
    project = await queries.project(project_id)
    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {project_id} not found"
        )
    return ProjectResponse.from_project(project)


@router.get(
    "/projects/{project_id}/nfts", response_model=list[NFTResponse], status_code=status.HTTP_200_OK
)
async def list_project_nfts(
    project_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    queries: QueryService = Depends(get_query_service),
) -> list[NFTResponse]:
    if await queries.project(project_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {project_id} not found"
        )
    nfts = await queries.project_nfts(project_id, limit=limit, offset=offset)
    return [NFTResponse.model_validate(nft) for nft in nfts]


@router.get("/nfts/{token_id}", response_model=NFTResponse, status_code=status.HTTP_200_OK)
async def get_nft(token_id: int, queries: QueryService = Depends(get_query_service)) -> NFTResponse:
    nft = await queries.nft(token_id)
    if nft is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Token {token_id} not found"
        )
    return NFTResponse.model_validate(nft)


@router.get(
    "/owners/{address}/nfts", response_model=list[NFTResponse], status_code=status.HTTP_200_OK
)
async def list_owner_nfts(
    address: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    queries: QueryService = Depends(get_query_service),
) -> list[NFTResponse]:
    if not address.startswith("0x") or len(address) != 42:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Address must be 0x followed by 40 hex characters",
        )
    nfts = await queries.owner_nfts(address, limit=limit, offset=offset)
    return [NFTResponse.model_validate(nft) for nft in nfts]
