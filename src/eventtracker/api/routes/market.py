"""Marketplace read endpoints.

- GET /api/listings - Sale listings, filterable by project and status
- GET /api/listings/{listing_id}
- GET /api/offers - Offers, filterable by project and status
- GET /api/offers/{offer_id}
- GET /api/statistics - Platform-wide market statistics
- GET /api/projects/{project_id}/statistics - Market statistics of one project
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, BeforeValidator, ConfigDict

from eventtracker.api.dependencies import get_query_service
from eventtracker.models.market import ListingStatus, OfferStatus
from eventtracker.services.query import QueryService

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["market"])

Wei = Annotated[str, BeforeValidator(str)]
OptionalWei = Annotated[str | None, BeforeValidator(lambda v: None if v is None else str(v))]


# Response Models


class ListingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    listing_id: int
    token_id: int
    project_id: int
    seller: str
    buyer: str | None
    price: Wei
    status: str
    created_block: int
    closed_block: int | None
    closed_timestamp: int | None


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    offer_id: int
    token_id: int
    project_id: int
    bidder: str
    seller: str | None
    price: Wei
    status: str
    created_block: int
    closed_block: int | None
    closed_timestamp: int | None


class StatisticsResponse(BaseModel):
    """Market statistics of a scope at ``as_of_block``."""

    model_config = ConfigDict(from_attributes=True)

    scope: str
    project_id: int | None
    volume_total: Wei
    volume_24h: Wei
    floor_price: OptionalWei
    median_price: OptionalWei
    best_offer: OptionalWei
    sale_count: int
    open_listing_count: int
    open_offer_count: int
    as_of_block: int
    as_of_timestamp: int


# Endpoints


@router.get("/listings", response_model=list[ListingResponse], status_code=status.HTTP_200_OK)
async def list_listings(
    project_id: int | None = Query(default=None),
    listing_status: ListingStatus | None = Query(default=None, alias="status"),
    queries: QueryService = Depends(get_query_service),
) -> list[ListingResponse]:
    listings = await queries.listings(
        project_id=project_id, status=listing_status.value if listing_status else None
    )
    return [ListingResponse.model_validate(listing) for listing in listings]


@router.get(
    "/listings/{listing_id}", response_model=ListingResponse, status_code=status.HTTP_200_OK
)
async def get_listing(
    listing_id: int, queries: QueryService = Depends(get_query_service)
) -> ListingResponse:
    listing = await queries.listing(listing_id)
    if listing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Listing {listing_id} not found"
        )
    return ListingResponse.model_validate(listing)


@router.get("/offers", response_model=list[OfferResponse], status_code=status.HTTP_200_OK)
async def list_offers(
    project_id: int | None = Query(default=None),
    offer_status: OfferStatus | None = Query(default=None, alias="status"),
    queries: QueryService = Depends(get_query_service),
) -> list[OfferResponse]:
    offers = await queries.offers(
        project_id=project_id, status=offer_status.value if offer_status else None
    )
    return [OfferResponse.model_validate(offer) for offer in offers]


@router.get("/offers/{offer_id}", response_model=OfferResponse, status_code=status.HTTP_200_OK)
async def get_offer(offer_id: int, queries: QueryService = Depends(get_query_service)) -> OfferResponse:
    offer = await queries.offer(offer_id)
    if offer is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Offer {offer_id} not found"
        )
    return OfferResponse.model_validate(offer)


@router.get("/statistics", response_model=StatisticsResponse, status_code=status.HTTP_200_OK)
async def get_platform_statistics(
    queries: QueryService = Depends(get_query_service),
) -> StatisticsResponse:
    """Platform-wide statistics.

    Raises:
        HTTPException 404: No market activity indexed yet
    """
    stats = await queries.statistics()
    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No market statistics yet"
        )
    return StatisticsResponse.model_validate(stats)


@router.get(
    "/projects/{project_id}/statistics",
    response_model=StatisticsResponse,
    status_code=status.HTTP_200_OK,
)
async def get_project_statistics(
    project_id: int, queries: QueryService = Depends(get_query_service)
) -> StatisticsResponse:
    stats = await queries.statistics(project_id)
    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No market statistics for project {project_id}",
        )
    return StatisticsResponse.model_validate(stats)
