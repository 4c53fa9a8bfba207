from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from loadhunter.core.config import get_settings
from loadhunter.routers.websocket import presence_registry

logger = logging.getLogger(__name__)
settings = get_settings()

presence_scheduler = AsyncIOScheduler()


async def evict_stale_presence() -> None:
    evicted = await presence_registry.evict_stale()
    if evicted:
        logger.info("presence_eviction", extra={"evicted": evicted})


def start_scheduler() -> None:
    if presence_scheduler.running:
        return
    # Sweep at half the TTL so a dead session lingers at most 1.5x TTL
    interval = max(settings.presence_ttl_seconds // 2, 5)
    presence_scheduler.add_job(evict_stale_presence, "interval", seconds=interval, id="presence-eviction", replace_existing=True, max_instances=1, coalesce=True)
    presence_scheduler.start()
    logger.info("Presence scheduler started", extra={"interval_seconds": interval})


def shutdown_scheduler() -> None:
    if presence_scheduler.running:
        presence_scheduler.shutdown(wait=False)
        logger.info("Presence scheduler stopped")
