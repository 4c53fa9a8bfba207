"""
Match state machine.

    active ──skip──────────► skipped ──mark_unreviewed (< 40 min)──► active
       │  ──wait──────────► waitlist ──mark_unreviewed (< 40 min)──► active
       │  ──undecided─────► undecided
       └──bid─────────────► bid_sent   (terminal)

skip, wait, undecided and bid are accepted from any non-terminal status.
Every applied intent appends exactly one history entry in the same
transaction as the status write, then pushes the new state to subscribers of
the match and of its load.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from loadhunter.core.errors import InvalidTransitionError, MatchNotFoundError, NetworkFailure, ValidationError
from loadhunter.models.match import ActionType, LoadBid, LoadHuntMatch, MatchStatus
from loadhunter.schemas.load_hunter import (
    ActionHistoryEntry,
    BidIntent,
    Dispatcher,
    MatchIntent,
    MatchState,
    MatchTransition,
)
from loadhunter.services.action_history import ActionHistoryService
from loadhunter.services.bid_coordinator import BidCoordinator
from loadhunter.services.event_dispatcher import Event, EventDispatcher, EventType, load_topic, match_topic
from loadhunter.services.restoration import RestorationPolicy
from loadhunter.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Rule:
    target: MatchStatus
    action: ActionType
    is_active: Optional[bool]  # None leaves the flag unchanged


SIMPLE_RULES = {
    "skip": _Rule(MatchStatus.SKIPPED, ActionType.SKIPPED, False),
    "wait": _Rule(MatchStatus.WAITLIST, ActionType.WAITLIST, False),
    "undecided": _Rule(MatchStatus.UNDECIDED, ActionType.UNDECIDED, None),
    "mark_unreviewed": _Rule(MatchStatus.ACTIVE, ActionType.UNREVIEWED, True),
}

TERMINAL_STATUSES = frozenset({MatchStatus.BID_SENT.value})


def validate_bid(intent: BidIntent) -> None:
    """Local checks run before anything touches the store."""
    if intent.amount is None or not math.isfinite(intent.amount) or intent.amount <= 0:
        raise ValidationError("Bid amount must be greater than zero", field="amount")
    if not intent.recipient or not intent.recipient.strip():
        raise ValidationError("A recipient email is required to send a bid", field="recipient")


class MatchStateMachine:
    def __init__(
        self,
        db: AsyncSession,
        history: ActionHistoryService,
        bids: BidCoordinator,
        events: EventDispatcher,
        restoration: Optional[RestorationPolicy] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self.history = history
        self.bids = bids
        self.events = events
        self.restoration = restoration or RestorationPolicy()
        self.clock = clock

    async def get_match(self, match_id: str) -> LoadHuntMatch:
        try:
            result = await self.db.execute(select(LoadHuntMatch).where(LoadHuntMatch.id == match_id))
        except SQLAlchemyError as exc:
            raise NetworkFailure(f"Could not load match {match_id}") from exc
        match = result.unique().scalar_one_or_none()
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    async def apply(self, match_id: str, intent: MatchIntent, dispatcher: Dispatcher) -> MatchTransition:
        if not dispatcher.email or not dispatcher.email.strip():
            raise ValidationError("Dispatcher email is required", field="dispatcher")
        if isinstance(intent, BidIntent):
            validate_bid(intent)

        match = await self.get_match(match_id)
        previous_status = match.status

        if previous_status in TERMINAL_STATUSES:
            raise InvalidTransitionError(match_id, previous_status, intent.kind)

        if isinstance(intent, BidIntent):
            return await self._apply_bid(match, intent, dispatcher)

        rule = SIMPLE_RULES[intent.kind]
        if intent.kind == "mark_unreviewed":
            self.restoration.check(match, self.clock())

        values = {"status": rule.target.value, "updated_at": self.clock()}
        if rule.is_active is not None:
            values["is_active"] = rule.is_active

        try:
            # Another session may have moved the match since it was read
            applied = await self._write_status(match, LoadHuntMatch.status == previous_status, values)
            if applied:
                self.history.stage(match_id, dispatcher, rule.action, {"previous_status": previous_status})
                await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "Failed to apply match intent",
                extra={"match_id": match_id, "intent": intent.kind},
            )
            raise NetworkFailure(f"Could not update match {match_id}") from exc

        if not applied:
            await self.db.rollback()
            current = await self.get_match(match_id)
            logger.info(f"Match {match_id} changed to {current.status} before '{intent.kind}' was applied")
            raise InvalidTransitionError(match_id, current.status, intent.kind)

        state = MatchState.model_validate(match)
        logger.info(f"Match {match_id}: {previous_status} -> {state.status} by {dispatcher.email}")
        await self._publish(state, previous_status, intent.kind, dispatcher)
        return MatchTransition(previous_status=previous_status, match=state)

    async def record_view(self, match_id: str, dispatcher: Dispatcher) -> ActionHistoryEntry:
        """Log that the dispatcher opened the match. Never changes status."""
        match = await self.get_match(match_id)
        load_id = match.load_id
        entry = await self.history.append(match_id, dispatcher, ActionType.VIEWED)
        await self.events.emit(
            Event(
                type=EventType.MATCH_VIEWED,
                key=match_topic(match_id),
                data={
                    "match_id": match_id,
                    "load_id": load_id,
                    "dispatcher_email": dispatcher.email,
                    "dispatcher_name": dispatcher.display_name,
                },
            )
        )
        return entry

    async def _apply_bid(self, match: LoadHuntMatch, intent: BidIntent, dispatcher: Dispatcher) -> MatchTransition:
        previous_status = match.status

        async def _mark_bid_sent(bid: LoadBid) -> None:
            values = {
                "status": MatchStatus.BID_SENT.value,
                "is_active": False,
                "bid_rate": intent.amount,
                "bid_by": dispatcher.email,
                "bid_at": bid.created_at,
                "updated_at": bid.created_at,
            }
            # The first bid on the match keeps its summary
            if not await self._write_status(match, LoadHuntMatch.status.notin_(list(TERMINAL_STATUSES)), values):
                logger.info(f"Match {match.id} already reached bid_sent; keeping the earlier bid summary")
                set_committed_value(match, "status", MatchStatus.BID_SENT.value)
                set_committed_value(match, "is_active", False)

        submission = await self.bids.submit_bid(match, intent, dispatcher, on_accepted=_mark_bid_sent)

        state = MatchState.model_validate(match)
        logger.info(f"Match {match.id}: bid of {intent.amount} submitted by {dispatcher.email}")
        await self._publish(state, previous_status, intent.kind, dispatcher)
        return MatchTransition(previous_status=previous_status, match=state, bid=submission.receipt)

    async def _write_status(self, match: LoadHuntMatch, guard, values: Dict[str, Any]) -> bool:
        """Conditional UPDATE of one match; False when the guard no longer holds."""
        result = await self.db.execute(
            update(LoadHuntMatch)
            .where(LoadHuntMatch.id == match.id, guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        for key, value in values.items():
            set_committed_value(match, key, value)
        return True

    async def _publish(self, state: MatchState, previous_status: str, action: str, dispatcher: Dispatcher) -> None:
        data = {
            "match": state.model_dump(mode="json"),
            "previous_status": previous_status,
            "action": action,
            "dispatcher_email": dispatcher.email,
        }
        await self.events.emit(Event(type=EventType.MATCH_UPDATED, key=match_topic(state.id), data=data))
        await self.events.emit(Event(type=EventType.MATCH_UPDATED, key=load_topic(state.load_id), data=data))
