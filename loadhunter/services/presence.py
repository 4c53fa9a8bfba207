"""
Per-load presence registry.

Each open load detail view is a session that tracks (email, display name,
joined-at) in the load's arena. Every membership change re-syncs all sessions
of that load; each one receives the other viewers, deduplicated by email and
without its own email. Presence is informational only and never gates bids.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from loadhunter.core.errors import PresenceChannelFailure
from loadhunter.schemas.load_hunter import PresenceViewer
from loadhunter.utils.clock import Clock, as_naive_utc, utcnow

logger = logging.getLogger(__name__)

SyncCallback = Callable[[List[PresenceViewer]], Any]


@dataclass
class PresenceSession:
    session_id: str
    load_id: str
    email: str
    display_name: str
    joined_at: datetime
    last_seen_at: datetime
    on_sync: SyncCallback


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class PresenceRegistry:
    def __init__(self, ttl_seconds: int = 90, clock: Clock = utcnow) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        # load_id -> session_id -> session
        self._arenas: Dict[str, Dict[str, PresenceSession]] = {}
        self._lock = asyncio.Lock()

    async def track(
        self,
        load_id: str,
        session_id: str,
        email: str,
        display_name: Optional[str],
        on_sync: SyncCallback,
    ) -> List[PresenceViewer]:
        """Join the load's channel and announce this session.

        Returns the viewers this session should display. If the session's own
        sync delivery fails it is dropped and PresenceChannelFailure is raised;
        callers treat that as "no other viewers".
        """
        if not load_id or not email:
            raise PresenceChannelFailure("Presence requires a load id and an email")

        now = self.clock()
        async with self._lock:
            arena = self._arenas.setdefault(load_id, {})
            arena[session_id] = PresenceSession(
                session_id=session_id,
                load_id=load_id,
                email=email,
                display_name=display_name or email,
                joined_at=now,
                last_seen_at=now,
                on_sync=on_sync,
            )
            logger.debug(f"Presence track: {email} on load {load_id} ({len(arena)} sessions)")

        failed = await self._sync(load_id)
        if session_id in failed:
            raise PresenceChannelFailure(f"Presence channel for load {load_id} could not be established")
        return self.viewers(load_id, exclude_email=email)

    async def untrack(self, load_id: str, session_id: str) -> None:
        """Leave the channel; called when the view's connection closes."""
        async with self._lock:
            removed = self._remove(load_id, session_id)
        if removed:
            await self._sync(load_id)

    async def heartbeat(self, load_id: str, session_id: str) -> bool:
        async with self._lock:
            session = self._arenas.get(load_id, {}).get(session_id)
            if session is None:
                return False
            session.last_seen_at = self.clock()
        return True

    async def evict_stale(self, now: Optional[datetime] = None) -> int:
        """Drop sessions whose last heartbeat is older than the TTL."""
        now = as_naive_utc(now) if now is not None else self.clock()
        evicted_loads = set()
        evicted = 0
        async with self._lock:
            for load_id, arena in list(self._arenas.items()):
                for session_id, session in list(arena.items()):
                    if now - session.last_seen_at > self.ttl:
                        self._remove(load_id, session_id)
                        evicted_loads.add(load_id)
                        evicted += 1
                        logger.info(f"Evicted stale presence {session.email} from load {load_id}")

        for load_id in evicted_loads:
            await self._sync(load_id)
        return evicted

    def viewers(self, load_id: str, exclude_email: Optional[str] = None) -> List[PresenceViewer]:
        excluded = _normalize_email(exclude_email) if exclude_email else None
        by_email: Dict[str, PresenceSession] = {}
        for session in self._arenas.get(load_id, {}).values():
            key = _normalize_email(session.email)
            if key == excluded:
                continue
            current = by_email.get(key)
            if current is None or session.joined_at < current.joined_at:
                by_email[key] = session

        ordered = sorted(by_email.values(), key=lambda s: s.joined_at)
        return [PresenceViewer(email=s.email, name=s.display_name, joined_at=s.joined_at) for s in ordered]

    def session_count(self, load_id: str) -> int:
        return len(self._arenas.get(load_id, {}))

    def _remove(self, load_id: str, session_id: str) -> bool:
        arena = self._arenas.get(load_id)
        if not arena or session_id not in arena:
            return False
        del arena[session_id]
        if not arena:
            self._arenas.pop(load_id, None)
        return True

    async def _sync(self, load_id: str) -> set:
        """Push the current viewer list to every session of the load.

        Returns the ids of sessions whose delivery failed; those are dropped.
        """
        failed = set()
        for session in list(self._arenas.get(load_id, {}).values()):
            if not await self._deliver(session):
                failed.add(session.session_id)

        if failed:
            async with self._lock:
                for session_id in failed:
                    self._remove(load_id, session_id)
            # Survivors must stop seeing the dropped sessions
            for session in list(self._arenas.get(load_id, {}).values()):
                await self._deliver(session)
        return failed

    async def _deliver(self, session: PresenceSession) -> bool:
        try:
            result = session.on_sync(self.viewers(session.load_id, exclude_email=session.email))
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning(f"Presence sync failed for {session.email} on load {session.load_id}: {e}")
            return False
        return True
