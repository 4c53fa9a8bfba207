from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol, Tuple
from urllib.parse import quote

import httpx

from loadhunter.core.config import Settings
from loadhunter.schemas.load_hunter import Coordinates

logger = logging.getLogger(__name__)


class Geocoder(Protocol):
    async def geocode(self, city: str, state: str) -> Optional[Coordinates]:
        ...


class MapboxGeocoder:
    """City/state lookups against the Mapbox places API, cached per process."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client
        self._cache: Dict[Tuple[str, str], Optional[Coordinates]] = {}

    async def geocode(self, city: str, state: str) -> Optional[Coordinates]:
        if not city or not state:
            return None
        key = (city.strip().lower(), state.strip().lower())
        if key in self._cache:
            return self._cache[key]
        if not self.settings.mapbox_access_token:
            logger.warning("Mapbox token not configured; skipping geocode")
            return None

        query = quote(f"{city}, {state}")
        url = f"{self.settings.mapbox_geocoding_url}/{query}.json"
        params = {"access_token": self.settings.mapbox_access_token, "country": "US", "limit": 1}
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, timeout=self.settings.geocoding_timeout_seconds)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, params=params, timeout=self.settings.geocoding_timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Geocoding failed for {city}, {state}: {e}")
            return None

        features = response.json().get("features") or []
        coords = None
        if features:
            lng, lat = features[0]["center"]
            coords = Coordinates(lat=lat, lng=lng)
        self._cache[key] = coords
        return coords
