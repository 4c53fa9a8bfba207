"""
Load feed ingestion entry points.

Loads and matches arrive from the external hunting process. Missing
coordinates are geocoded here, once, and stored on the load so lane analytics
never geocodes on its own.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loadhunter.core.errors import NetworkFailure
from loadhunter.models.load import Load
from loadhunter.models.match import LoadHuntMatch, MatchStatus
from loadhunter.services.geocoding import Geocoder
from loadhunter.utils.clock import Clock, utcnow
from loadhunter.utils.geo import has_coordinates

logger = logging.getLogger(__name__)


class LoadIngestionService:
    def __init__(self, db: AsyncSession, geocoder: Optional[Geocoder] = None, clock: Clock = utcnow) -> None:
        self.db = db
        self.geocoder = geocoder
        self.clock = clock

    async def ingest_load(self, load: Load) -> Load:
        if not load.id:
            load.id = str(uuid.uuid4())
        if load.created_at is None:
            load.created_at = self.clock()
        await self.enrich_coordinates(load)
        self.db.add(load)
        await self._commit(f"load {load.id}")
        return load

    async def ingest_match(
        self,
        load_id: str,
        vehicle_id: str,
        distance_miles: Optional[float] = None,
        matched_at: Optional[datetime] = None,
    ) -> LoadHuntMatch:
        match = LoadHuntMatch(
            id=str(uuid.uuid4()),
            load_id=load_id,
            vehicle_id=vehicle_id,
            distance_miles=distance_miles,
            matched_at=matched_at or self.clock(),
            status=MatchStatus.ACTIVE.value,
            is_active=True,
        )
        self.db.add(match)
        await self._commit(f"match {match.id}")
        return match

    async def enrich_coordinates(self, load: Load) -> None:
        """Fill in missing pickup/delivery coordinates from the geocoder."""
        if self.geocoder is None:
            return
        if not has_coordinates(load.origin_lat, load.origin_lng) and load.origin_city and load.origin_state:
            coords = await self.geocoder.geocode(load.origin_city, load.origin_state)
            if coords:
                load.origin_lat, load.origin_lng = coords.lat, coords.lng
        if (
            not has_coordinates(load.destination_lat, load.destination_lng)
            and load.destination_city
            and load.destination_state
        ):
            coords = await self.geocoder.geocode(load.destination_city, load.destination_state)
            if coords:
                load.destination_lat, load.destination_lng = coords.lat, coords.lng

    async def _commit(self, label: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"Failed to ingest {label}")
            raise NetworkFailure(f"Could not save {label}") from exc
