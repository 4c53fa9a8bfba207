from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from loadhunter.core.config import Settings, get_settings
from loadhunter.core.db import get_db
from loadhunter.schemas.load_hunter import Dispatcher
from loadhunter.services.action_history import ActionHistoryService
from loadhunter.services.bid_coordinator import BidCoordinator
from loadhunter.services.event_dispatcher import EventDispatcher, get_dispatcher
from loadhunter.services.lane_analytics import LaneAnalyticsService
from loadhunter.services.mail import MailSender, SmtpMailSender
from loadhunter.services.match_state import MatchStateMachine
from loadhunter.services.restoration import RestorationPolicy


async def get_current_dispatcher(
    x_dispatcher_email: Optional[str] = Header(None),
    x_dispatcher_name: Optional[str] = Header(None),
    x_dispatcher_id: Optional[str] = Header(None),
) -> Dispatcher:
    """Dispatcher identity forwarded by the UI shell, which owns authentication."""
    if not x_dispatcher_email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing dispatcher identity")
    return Dispatcher(id=x_dispatcher_id, email=x_dispatcher_email, name=x_dispatcher_name)


def get_event_dispatcher() -> EventDispatcher:
    return get_dispatcher()


def get_mail_sender(settings: Settings = Depends(get_settings)) -> MailSender:
    return SmtpMailSender(settings)


async def get_history(db: AsyncSession = Depends(get_db)) -> ActionHistoryService:
    return ActionHistoryService(db)


async def get_bid_coordinator(
    db: AsyncSession = Depends(get_db),
    history: ActionHistoryService = Depends(get_history),
    mail: MailSender = Depends(get_mail_sender),
    events: EventDispatcher = Depends(get_event_dispatcher),
    settings: Settings = Depends(get_settings),
) -> BidCoordinator:
    return BidCoordinator(db, mail, history, events, mode=settings.bid_coordination_mode)


async def get_state_machine(
    db: AsyncSession = Depends(get_db),
    history: ActionHistoryService = Depends(get_history),
    bids: BidCoordinator = Depends(get_bid_coordinator),
    events: EventDispatcher = Depends(get_event_dispatcher),
    settings: Settings = Depends(get_settings),
) -> MatchStateMachine:
    policy = RestorationPolicy(window=timedelta(minutes=settings.restoration_window_minutes))
    return MatchStateMachine(db, history, bids, events, restoration=policy)


async def get_lane_analytics(
    history: ActionHistoryService = Depends(get_history),
    settings: Settings = Depends(get_settings),
) -> LaneAnalyticsService:
    return LaneAnalyticsService(history, radius_miles=settings.lane_radius_miles)
