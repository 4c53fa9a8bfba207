from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loadhunter.api import deps
from loadhunter.core.db import get_db
from loadhunter.core.errors import (
    InvalidTransitionError,
    LoadHunterError,
    MatchNotFoundError,
    NetworkFailure,
    StaleWindowError,
    ValidationError,
)
from loadhunter.models.load import Load
from loadhunter.schemas.load_hunter import (
    ActionHistoryEntry,
    BidWarning,
    Dispatcher,
    DispatcherMetricsResponse,
    LaneAverage,
    LoadBidRead,
    MatchIntentRequest,
    MatchState,
    MatchTransition,
)
from loadhunter.services.action_history import ActionHistoryService
from loadhunter.services.bid_coordinator import BidCoordinator
from loadhunter.services.lane_analytics import LaneAnalyticsService
from loadhunter.services.match_state import MatchStateMachine

router = APIRouter()


def _http_error(exc: LoadHunterError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "field": exc.field},
        )
    if isinstance(exc, MatchNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, (StaleWindowError, InvalidTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    if isinstance(exc, NetworkFailure):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": exc.message, "retryable": True},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


@router.get("/matches/{match_id}", response_model=MatchState)
async def get_match(
    match_id: str,
    machine: MatchStateMachine = Depends(deps.get_state_machine),
) -> MatchState:
    try:
        match = await machine.get_match(match_id)
    except LoadHunterError as exc:
        raise _http_error(exc)
    return MatchState.model_validate(match)


@router.post("/matches/{match_id}/view", response_model=ActionHistoryEntry, status_code=status.HTTP_201_CREATED)
async def record_view(
    match_id: str,
    dispatcher: Dispatcher = Depends(deps.get_current_dispatcher),
    machine: MatchStateMachine = Depends(deps.get_state_machine),
) -> ActionHistoryEntry:
    try:
        return await machine.record_view(match_id, dispatcher)
    except LoadHunterError as exc:
        raise _http_error(exc)


@router.post("/matches/{match_id}/actions", response_model=MatchTransition)
async def apply_intent(
    match_id: str,
    payload: MatchIntentRequest,
    dispatcher: Dispatcher = Depends(deps.get_current_dispatcher),
    machine: MatchStateMachine = Depends(deps.get_state_machine),
) -> MatchTransition:
    """
    Apply a dispatcher intent: skip, wait, undecided, mark_unreviewed or bid.

    A bid that lost the first-bid-wins race still returns success.
    """
    try:
        return await machine.apply(match_id, payload.intent, dispatcher)
    except LoadHunterError as exc:
        raise _http_error(exc)


@router.get("/matches/{match_id}/history", response_model=List[ActionHistoryEntry])
async def match_history(
    match_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    history: ActionHistoryService = Depends(deps.get_history),
) -> List[ActionHistoryEntry]:
    try:
        return await history.query(match_id, limit=limit)
    except LoadHunterError as exc:
        raise _http_error(exc)


@router.get("/loads/{load_id}/bid-warning", response_model=Optional[BidWarning])
async def bid_warning(
    load_id: str,
    bids: BidCoordinator = Depends(deps.get_bid_coordinator),
) -> Optional[BidWarning]:
    try:
        return await bids.existing_bid(load_id)
    except LoadHunterError as exc:
        raise _http_error(exc)


@router.get("/loads/{load_id}/bids", response_model=List[LoadBidRead])
async def load_bids(
    load_id: str,
    bids: BidCoordinator = Depends(deps.get_bid_coordinator),
) -> List[LoadBidRead]:
    try:
        return await bids.list_bids(load_id)
    except LoadHunterError as exc:
        raise _http_error(exc)


@router.get("/loads/{load_id}/lane-average", response_model=Optional[LaneAverage])
async def lane_average(
    load_id: str,
    db: AsyncSession = Depends(get_db),
    analytics: LaneAnalyticsService = Depends(deps.get_lane_analytics),
) -> Optional[LaneAverage]:
    try:
        load = await db.get(Load, load_id)
    except SQLAlchemyError as exc:
        raise _http_error(NetworkFailure(f"Could not load {load_id}")) from exc
    if not load:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Load not found")
    try:
        return await analytics.lane_average(load)
    except LoadHunterError as exc:
        raise _http_error(exc)


@router.get("/dispatchers/metrics", response_model=DispatcherMetricsResponse)
async def dispatcher_metrics(
    since: Optional[datetime] = Query(None),
    history: ActionHistoryService = Depends(deps.get_history),
) -> DispatcherMetricsResponse:
    try:
        return await history.dispatcher_metrics(since=since)
    except LoadHunterError as exc:
        raise _http_error(exc)
