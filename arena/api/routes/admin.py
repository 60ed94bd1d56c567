"""Admin API endpoints.

Contest management, manual lifecycle control and task triggers.
These endpoints should be protected in production (not implemented here).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import AwareDatetime, BaseModel, Field

from arena.api.dependencies import get_contest_service, get_scheduler
from arena.api.errors import http_error
from arena.services.contests import ContestService
from arena.services.exceptions import ArenaError
from arena.services.scheduler import LifecycleScheduler

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = structlog.get_logger(__name__)


class ContestCreate(BaseModel):
    """Contest creation request."""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    entry_fee: int = Field(ge=0)
    prize_pool: int = Field(ge=0)
    max_participants: int = Field(ge=2)
    start_time: AwareDatetime
    end_time: AwareDatetime
    featured: bool = False


class ContestUpdate(BaseModel):
    """Partial contest update; omitted or null fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    entry_fee: int | None = Field(default=None, ge=0)
    prize_pool: int | None = Field(default=None, ge=0)
    max_participants: int | None = Field(default=None, ge=2)
    start_time: AwareDatetime | None = None
    end_time: AwareDatetime | None = None
    featured: bool | None = None


class ContestResponse(BaseModel):
    """Contest as returned by the admin API."""

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
    prizes_distributed: bool

    model_config = {"from_attributes": True}


class ParticipantResponse(BaseModel):
    """Contest entry with its results."""

    id: uuid.UUID
    user_id: uuid.UUID
    total_coins_invested: int
    final_portfolio_value: Decimal | None = None
    roi: Decimal | None = None
    rank: int | None = None

    model_config = {"from_attributes": True}


class StatusUpdate(BaseModel):
    status: str


class ActionResponse(BaseModel):
    """Outcome of a manual lifecycle action."""

    success: bool
    message: str
    status: str | None = None
    details: dict[str, Any] | None = None


class TaskTriggerResponse(BaseModel):
    """Response from task trigger."""
    task_name: str
    task_id: str
    status: str
    message: str


# Map of friendly names to actual Celery task names
TASK_MAP = {
    "scan-contests": "arena.tasks.lifecycle.scan_contests",
    "record-portfolio-snapshots": "arena.tasks.snapshots.record_portfolio_snapshots",
    "record-leaderboard-snapshots": "arena.tasks.snapshots.record_leaderboard_snapshots",
}


# ----------------------------------------------------------------------
# Contest CRUD
# ----------------------------------------------------------------------


@router.get("/contests", response_model=list[ContestResponse])
async def list_contests(service: ContestService = Depends(get_contest_service)):
    """List all contests, oldest first."""
    return await service.ledger.list_contests()


@router.post("/contests", response_model=ContestResponse, status_code=201)
async def create_contest(
    body: ContestCreate,
    service: ContestService = Depends(get_contest_service),
):
    """Create an upcoming contest and register its start and end timers."""
    try:
        return await service.create_contest(**body.model_dump())
    except ArenaError as e:
        raise http_error(e)


@router.put("/contests/{contest_id}", response_model=ContestResponse)
async def update_contest(
    contest_id: uuid.UUID,
    body: ContestUpdate,
    service: ContestService = Depends(get_contest_service),
):
    """Edit a contest. Changing its times re-registers its timers."""
    try:
        updates = body.model_dump(exclude_unset=True, exclude_none=True)
        return await service.update_contest(contest_id, **updates)
    except ArenaError as e:
        raise http_error(e)


@router.delete("/contests/{contest_id}", response_model=ActionResponse)
async def delete_contest(
    contest_id: uuid.UUID,
    service: ContestService = Depends(get_contest_service),
):
    """Delete a contest that nobody has joined."""
    try:
        await service.delete_contest(contest_id)
    except ArenaError as e:
        raise http_error(e)
    return ActionResponse(success=True, message="Contest deleted successfully")


@router.get("/contests/{contest_id}/participants", response_model=list[ParticipantResponse])
async def list_participants(
    contest_id: uuid.UUID,
    service: ContestService = Depends(get_contest_service),
):
    try:
        return await service.list_participants(contest_id)
    except ArenaError as e:
        raise http_error(e)


@router.get("/dashboard")
async def dashboard(service: ContestService = Depends(get_contest_service)) -> dict[str, Any]:
    """Contest counts by status and prize totals."""
    return await service.dashboard_stats()


# ----------------------------------------------------------------------
# Lifecycle control
# ----------------------------------------------------------------------


@router.patch("/contests/{contest_id}/status", response_model=ActionResponse)
async def update_contest_status(
    contest_id: uuid.UUID,
    body: StatusUpdate,
    scheduler: LifecycleScheduler = Depends(get_scheduler),
):
    """
    Move a contest forward.

    Accepted changes:
    - upcoming -> active (same as manual start)
    - active -> completed (same as manual end)
    - upcoming -> cancelled (entry fees refunded)
    """
    try:
        status = await scheduler.update_contest_status(contest_id, body.status)
    except ArenaError as e:
        raise http_error(e)

    logger.info(
        "contest_status_updated_manually",
        contest_id=str(contest_id),
        requested=body.status,
        status=status.value,
    )
    return ActionResponse(
        success=status.value == body.status,
        message=f"Contest status is now {status.value}",
        status=status.value,
    )


@router.post("/contests/{contest_id}/start", response_model=ActionResponse)
async def start_contest(
    contest_id: uuid.UUID,
    scheduler: LifecycleScheduler = Depends(get_scheduler),
):
    """Start an upcoming contest now (cancelled instead if too few entrants)."""
    try:
        status = await scheduler.start_contest_manually(contest_id)
    except ArenaError as e:
        raise http_error(e)

    if status.value == "active":
        message = "Contest started successfully"
    else:
        message = f"Contest could not start and is now {status.value}"
    return ActionResponse(success=status.value == "active", message=message, status=status.value)


@router.post("/contests/{contest_id}/end", response_model=ActionResponse)
async def end_contest(
    contest_id: uuid.UUID,
    scheduler: LifecycleScheduler = Depends(get_scheduler),
):
    """Finalise an active contest: value, rank, then mark completed."""
    try:
        summary = await scheduler.end_contest_manually(contest_id)
    except ArenaError as e:
        raise http_error(e)

    if summary.complete:
        message = "Contest ended successfully"
    else:
        message = "Contest results are incomplete; some holdings have no current price"
    return ActionResponse(
        success=summary.complete,
        message=message,
        status=summary.status.value,
        details=summary.to_dict(),
    )


@router.post("/contests/{contest_id}/calculate-results", response_model=ActionResponse)
async def calculate_results(
    contest_id: uuid.UUID,
    scheduler: LifecycleScheduler = Depends(get_scheduler),
):
    """Recompute values, ROI and ranks without changing the contest status."""
    try:
        summary = await scheduler.calculate_results_manually(contest_id)
    except ArenaError as e:
        raise http_error(e)

    return ActionResponse(
        success=True,
        message="Results calculated successfully",
        status=summary.status.value,
        details=summary.to_dict(),
    )


@router.post("/contests/{contest_id}/distribute-prizes", response_model=ActionResponse)
async def distribute_prizes(
    contest_id: uuid.UUID,
    scheduler: LifecycleScheduler = Depends(get_scheduler),
):
    """Pay the prize pool to the top ranked entries (once per contest)."""
    try:
        awards = await scheduler.distribute_prizes(contest_id)
    except ArenaError as e:
        raise http_error(e)

    return ActionResponse(
        success=True,
        message="Prizes distributed successfully",
        details={"results": [award.to_dict() for award in awards]},
    )


@router.get("/scheduled-contests")
async def scheduled_contests(
    scheduler: LifecycleScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """Pending one-shot start/end timers."""
    return {
        "scheduled_contests": [timer.to_dict() for timer in scheduler.get_scheduled_contests()]
    }


# ----------------------------------------------------------------------
# Background tasks
# ----------------------------------------------------------------------


@router.post("/trigger-task/{task_name}", response_model=TaskTriggerResponse)
async def trigger_task(task_name: str) -> TaskTriggerResponse:
    """
    Manually trigger a background task.

    Available tasks:
    - scan-contests: Run the contest lifecycle scan
    - record-portfolio-snapshots: Append portfolio values for active contests
    - record-leaderboard-snapshots: Append leaderboard standings for active contests
    """
    if task_name not in TASK_MAP:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown task: {task_name}. Available: {list(TASK_MAP.keys())}"
        )

    celery_task_name = TASK_MAP[task_name]

    try:
        # Import celery app and send task
        from arena.tasks import celery_app

        result = celery_app.send_task(celery_task_name)

        logger.info(
            "task_triggered_manually",
            task_name=task_name,
            celery_task=celery_task_name,
            task_id=result.id,
        )

        return TaskTriggerResponse(
            task_name=task_name,
            task_id=result.id,
            status="submitted",
            message=f"Task {task_name} submitted successfully. Check Celery logs for progress."
        )

    except Exception as e:
        logger.error(
            "task_trigger_failed",
            task_name=task_name,
            error=str(e),
        )
        raise HTTPException(
            status_code=500,
            detail=f"Failed to trigger task: {str(e)}"
        )


@router.get("/tasks", response_model=dict[str, str])
async def list_tasks() -> dict[str, str]:
    """List all available tasks that can be triggered manually."""
    return TASK_MAP
