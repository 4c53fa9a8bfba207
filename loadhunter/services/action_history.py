"""
Match action history (audit log).

Every dispatcher action on a match is appended here and never modified.
History is observational: nothing in this module changes a match's status.
It also feeds lane analytics (priced ``bid`` entries) and dispatcher metrics.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loadhunter.core.errors import NetworkFailure
from loadhunter.models.load import Load
from loadhunter.models.match import ActionType, LoadHuntMatch, MatchActionHistory
from loadhunter.schemas.load_hunter import (
    ActionHistoryEntry,
    Dispatcher,
    DispatcherMetric,
    DispatcherMetricsResponse,
)
from loadhunter.utils.clock import Clock, as_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BidSample:
    """A historical bid joined to its load's coordinates."""
    load_id: str
    amount: float
    pickup_lat: Optional[float]
    pickup_lng: Optional[float]
    delivery_lat: Optional[float]
    delivery_lng: Optional[float]
    created_at: datetime


class ActionHistoryService:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow) -> None:
        self.db = db
        self.clock = clock

    def stage(
        self,
        match_id: str,
        dispatcher: Dispatcher,
        action_type: ActionType,
        details: Optional[Dict[str, Any]] = None,
    ) -> MatchActionHistory:
        """Add an entry to the current transaction without committing it.

        Used by the state machine so the status write and its history entry
        commit together.
        """
        entry = MatchActionHistory(
            id=str(uuid.uuid4()),
            match_id=match_id,
            dispatcher_id=dispatcher.id,
            dispatcher_email=dispatcher.email,
            dispatcher_name=dispatcher.display_name,
            action_type=action_type.value,
            action_details=details,
            created_at=self.clock(),
        )
        self.db.add(entry)
        return entry

    async def append(
        self,
        match_id: str,
        dispatcher: Dispatcher,
        action_type: ActionType,
        details: Optional[Dict[str, Any]] = None,
    ) -> ActionHistoryEntry:
        """Append one entry in its own transaction."""
        entry = self.stage(match_id, dispatcher, action_type, details)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "Failed to append match action",
                extra={"match_id": match_id, "action_type": action_type.value},
            )
            raise NetworkFailure(f"Could not record {action_type.value} for match {match_id}") from exc
        return ActionHistoryEntry.model_validate(entry)

    async def query(self, match_id: str, limit: Optional[int] = None) -> List[ActionHistoryEntry]:
        """Entries for a match, newest first."""
        query = (
            select(MatchActionHistory)
            .where(MatchActionHistory.match_id == match_id)
            .order_by(MatchActionHistory.created_at.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await self._execute(query, f"history for match {match_id}")
        return [ActionHistoryEntry.model_validate(row) for row in result.scalars().all()]

    async def bid_samples(self) -> List[BidSample]:
        """All priced ``bid`` entries joined to the coordinates of their load."""
        result = await self._execute(
            select(
                MatchActionHistory.action_details,
                MatchActionHistory.created_at,
                Load.id,
                Load.origin_lat,
                Load.origin_lng,
                Load.destination_lat,
                Load.destination_lng,
            )
            .join(LoadHuntMatch, LoadHuntMatch.id == MatchActionHistory.match_id)
            .join(Load, Load.id == LoadHuntMatch.load_id)
            .where(MatchActionHistory.action_type == ActionType.BID.value),
            "bid history",
        )

        samples: List[BidSample] = []
        for details, created_at, load_id, o_lat, o_lng, d_lat, d_lng in result.all():
            amount = _bid_amount(details)
            if amount is None:
                continue
            samples.append(
                BidSample(
                    load_id=load_id,
                    amount=amount,
                    pickup_lat=o_lat,
                    pickup_lng=o_lng,
                    delivery_lat=d_lat,
                    delivery_lng=d_lng,
                    created_at=created_at,
                )
            )
        return samples

    async def dispatcher_metrics(self, since: Optional[datetime] = None) -> DispatcherMetricsResponse:
        """Per-dispatcher action counts, busiest bidders first."""
        query = select(MatchActionHistory).order_by(MatchActionHistory.created_at.desc())
        if since:
            query = query.where(MatchActionHistory.created_at >= as_naive_utc(since))
        result = await self._execute(query, "dispatcher metrics")

        by_dispatcher: Dict[str, DispatcherMetric] = {}
        for action in result.scalars().all():
            key = action.dispatcher_email or action.dispatcher_id or "unknown"
            metric = by_dispatcher.get(key)
            if metric is None:
                metric = DispatcherMetric(
                    dispatcher_id=action.dispatcher_id,
                    dispatcher_name=action.dispatcher_name or "Unknown",
                    dispatcher_email=action.dispatcher_email,
                )
                by_dispatcher[key] = metric

            metric.total_actions += 1
            if action.action_type == ActionType.BID.value:
                metric.bids_sent += 1
            elif action.action_type == ActionType.SKIPPED.value:
                metric.skips += 1
            elif action.action_type == ActionType.WAITLIST.value:
                metric.waitlist += 1
            elif action.action_type == ActionType.UNDECIDED.value:
                metric.undecided += 1
            elif action.action_type == ActionType.VIEWED.value:
                metric.views += 1

        dispatchers = sorted(by_dispatcher.values(), key=lambda m: m.bids_sent, reverse=True)
        return DispatcherMetricsResponse(
            dispatchers=dispatchers,
            total_actions=sum(m.total_actions for m in dispatchers),
            total_bids=sum(m.bids_sent for m in dispatchers),
            total_skips=sum(m.skips for m in dispatchers),
        )

    async def _execute(self, statement, label: str):
        try:
            return await self.db.execute(statement)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to read {label}")
            raise NetworkFailure(f"Could not read {label}") from exc


def _bid_amount(details: Optional[Dict[str, Any]]) -> Optional[float]:
    if not details:
        return None
    raw = details.get("bid_amount")
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None
