"""Ingestion status, alerts and randomness endpoints.

- GET /api/status - Checkpoint, halt marker and event log size
- GET /api/alerts - Recent integrity and halt alerts
- GET /api/randao/rounds/{round_id} - Commit-reveal round state and final seed
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from eventtracker.api.dependencies import get_query_service
from eventtracker.services.query import QueryService

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["system"])


# Response Models


class StatusResponse(BaseModel):
    checkpoint_block: int | None
    checkpoint_hash: str | None
    halted: bool
    halt_reason: str | None = None
    event_count: int


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category: str
    kind: str | None
    block_number: int | None
    block_hash: str | None
    transaction_index: int | None
    log_index: int | None
    reason: str
    created_at: datetime


class RoundResponse(BaseModel):
    """Round state. ``final_value`` is only set once the round is finalized."""

    model_config = ConfigDict(from_attributes=True)

    round_id: int
    commit_count: int
    reveal_count: int
    opened_block: int | None
    finalized: bool
    final_value: str | None = Field(
        default=None, description="Frozen random output; null while not finalized"
    )
    finalized_block: int | None


# Endpoints


@router.get("/status", response_model=StatusResponse, status_code=status.HTTP_200_OK)
async def get_status(queries: QueryService = Depends(get_query_service)) -> StatusResponse:
    current = await queries.status()
    return StatusResponse(
        checkpoint_block=current.checkpoint.block_number if current.checkpoint else None,
        checkpoint_hash=current.checkpoint.block_hash if current.checkpoint else None,
        halted=current.halt is not None,
        halt_reason=current.halt.get("reason") if current.halt else None,
        event_count=current.event_count,
    )


@router.get("/alerts", response_model=list[AlertResponse], status_code=status.HTTP_200_OK)
async def list_alerts(
    category: str | None = Query(default=None, pattern="^(integrity|halt)$"),
    limit: int = Query(default=100, ge=1, le=500),
    queries: QueryService = Depends(get_query_service),
) -> list[AlertResponse]:
    alerts = await queries.alerts(category=category, limit=limit)
    return [AlertResponse.model_validate(alert) for alert in alerts]


@router.get(
    "/randao/rounds/{round_id}", response_model=RoundResponse, status_code=status.HTTP_200_OK
)
async def get_round(round_id: int, queries: QueryService = Depends(get_query_service)) -> RoundResponse:
    """Retrieve a commit-reveal round.

    Raises:
        HTTPException 404: Round has no commitments
    """
    round_ = await queries.randao_round(round_id)
    if round_ is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Round {round_id} not found"
        )
    response = RoundResponse.model_validate(round_)
    # The accumulator is only a usable seed once frozen
    response.final_value = await queries.finalized_seed(round_id)
    return response
