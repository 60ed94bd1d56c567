"""Public contest endpoints: browse, join, leaderboard, performance."""

import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from arena.api.dependencies import get_contest_service
from arena.api.errors import http_error
from arena.models.domain import ContestStatus
from arena.services.contests import ContestService
from arena.services.exceptions import ArenaError

router = APIRouter(prefix="/api/contests", tags=["contests"])


class ContestSummary(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    entry_fee: int
    prize_pool: int
    max_participants: int
    start_time: datetime
    end_time: datetime
    status: str
    featured: bool

    model_config = {"from_attributes": True}


class ContestDetail(ContestSummary):
    participant_count: int


class HoldingRequest(BaseModel):
    stock_symbol: str = Field(min_length=1, max_length=10)
    coins_invested: int = Field(gt=0)


class JoinRequest(BaseModel):
    """Join request: who is entering and how the entry budget is split."""

    user_id: uuid.UUID
    portfolio: list[HoldingRequest] = Field(min_length=1)


class EntryResponse(BaseModel):
    id: uuid.UUID
    contest_id: uuid.UUID
    user_id: uuid.UUID
    total_coins_invested: int

    model_config = {"from_attributes": True}


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: uuid.UUID
    entry_id: uuid.UUID
    portfolio_value: Decimal
    roi: Decimal
    rank_change: int | None = None

    model_config = {"from_attributes": True}


class PerformancePoint(BaseModel):
    timestamp: datetime
    portfolio_value: Decimal

    model_config = {"from_attributes": True}


@router.get("", response_model=list[ContestSummary])
async def list_contests(
    status: str | None = Query(None, description="Filter by contest status"),
    service: ContestService = Depends(get_contest_service),
):
    """List contests, optionally filtered by status."""
    if status is None:
        return await service.ledger.list_contests()
    try:
        wanted = ContestStatus(status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    return await service.ledger.list_contests_by_status(wanted)


@router.get("/{contest_id}", response_model=ContestDetail)
async def get_contest(
    contest_id: uuid.UUID,
    service: ContestService = Depends(get_contest_service),
):
    try:
        contest = await service.get_contest(contest_id)
    except ArenaError as e:
        raise http_error(e)

    participant_count = await service.ledger.count_entries(contest_id)
    return ContestDetail(
        **ContestSummary.model_validate(contest).model_dump(),
        participant_count=participant_count,
    )


@router.post("/{contest_id}/join", response_model=EntryResponse, status_code=201)
async def join_contest(
    contest_id: uuid.UUID,
    body: JoinRequest,
    service: ContestService = Depends(get_contest_service),
):
    """
    Enter a contest with a portfolio.

    The coins across all holdings must add up to the entry budget. The entry
    fee is debited from the user's balance in the same transaction.
    """
    allocations = [(h.stock_symbol, h.coins_invested) for h in body.portfolio]
    try:
        return await service.join_contest(contest_id, body.user_id, allocations)
    except ArenaError as e:
        raise http_error(e)


@router.get("/{contest_id}/leaderboard", response_model=list[LeaderboardEntry])
async def get_leaderboard(
    contest_id: uuid.UUID,
    service: ContestService = Depends(get_contest_service),
):
    try:
        return await service.get_leaderboard(contest_id)
    except ArenaError as e:
        raise http_error(e)


@router.get("/entries/{entry_id}/performance", response_model=list[PerformancePoint])
async def get_performance(
    entry_id: uuid.UUID,
    service: ContestService = Depends(get_contest_service),
):
    """Portfolio value history for one entry, oldest first."""
    try:
        return await service.get_performance_history(entry_id)
    except ArenaError as e:
        raise http_error(e)
