from functools import lru_cache
import os
from typing import List, Literal, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    project_name: str = "Load Hunter API"
    environment: str = "development"

    # Raw CORS origins string - read from env
    cors_origins_raw: Optional[str] = Field(
        default=None,
        alias="CORS_ORIGINS"
    )

    @computed_field
    @property
    def backend_cors_origins(self) -> List[str]:
        """Parse CORS_ORIGINS from environment variable (comma-separated string)."""
        raw = self.cors_origins_raw
        if not raw:
            raw = os.environ.get("CORS_ORIGINS") or os.environ.get("BACKEND_CORS_ORIGINS") or ""

        if not raw or not raw.strip():
            return []

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    database_url: str  # Required - no default, must be set in .env

    # Mail dispatch (bid emails)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    bid_from_email: Optional[str] = None  # Falls back to smtp_username

    # Geocoding (Mapbox) - used by load ingestion only
    mapbox_access_token: Optional[str] = None
    mapbox_geocoding_url: str = "https://api.mapbox.com/geocoding/v5/mapbox.places"
    geocoding_timeout_seconds: float = 10.0

    # Match lifecycle
    restoration_window_minutes: int = 40  # Skipped/waitlisted matches can be reopened inside this window
    lane_radius_miles: float = 50.0  # Pickup and delivery must both fall within this radius
    presence_ttl_seconds: int = 90  # Presence entries without a heartbeat are evicted after this

    # optimistic: check, send, insert (conflicts after send are logged)
    # transactional: check, insert + flush, send (the unique index arbitrates)
    bid_coordination_mode: Literal["optimistic", "transactional"] = "optimistic"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
