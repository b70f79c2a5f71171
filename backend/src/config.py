from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from utils import mask_secret


class Configuration(BaseModel):
    # Google (premium provider)
    google_maps_api_key: Optional[str] = Field(default=None)
    google_maps_base_url: str = Field(default="https://maps.googleapis.com/maps/api")

    # OpenStreetMap (free provider)
    nominatim_base_url: str = Field(default="https://nominatim.openstreetmap.org")
    overpass_url: str = Field(default="https://overpass-api.de/api/interpreter")
    osm_user_agent: str = Field(
        default="JustChooseAlready/1.0 (https://justchoosealready.com; contact@justchoosealready.com)"
    )
    osm_min_interval_sec: float = Field(default=1.0)

    # HTTP
    http_timeout: int = Field(default=15)
    http_retries: int = Field(default=1)
    max_results: int = Field(default=20)

    # Cache
    cache_ttl_sec: int = Field(default=24 * 60 * 60)
    cache_coord_precision: int = Field(default=4)
    cache_max_entries: int = Field(default=2048)

    # Location
    autocomplete_min_chars: int = Field(default=3)

    # Spin
    spin_history_limit: int = Field(default=50)
    spin_extra_turns: int = Field(default=5)

    # Admin allow-list (emails)
    admin_emails: list[str] = Field(default_factory=list)

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "google_maps_api_key": os.getenv("GOOGLE_MAPS_API_KEY"),
            "google_maps_base_url": os.getenv("GOOGLE_MAPS_BASE_URL"),
            "nominatim_base_url": os.getenv("NOMINATIM_BASE_URL"),
            "overpass_url": os.getenv("OVERPASS_URL"),
            "osm_user_agent": os.getenv("OSM_USER_AGENT"),
            "osm_min_interval_sec": os.getenv("OSM_MIN_INTERVAL_SEC"),
            "http_timeout": os.getenv("HTTP_TIMEOUT"),
            "http_retries": os.getenv("HTTP_RETRIES"),
            "max_results": os.getenv("MAX_RESULTS"),
            "cache_ttl_sec": os.getenv("CACHE_TTL_SEC"),
            "cache_coord_precision": os.getenv("CACHE_COORD_PRECISION"),
            "cache_max_entries": os.getenv("CACHE_MAX_ENTRIES"),
            "autocomplete_min_chars": os.getenv("AUTOCOMPLETE_MIN_CHARS"),
            "spin_history_limit": os.getenv("SPIN_HISTORY_LIMIT"),
            "spin_extra_turns": os.getenv("SPIN_EXTRA_TURNS"),
            "admin_emails": os.getenv("ADMIN_EMAILS"),
        }

        list_fields = {"admin_emails"}

        for k, v in env_map.items():
            if v is None:
                continue
            if k in list_fields:
                raw[k] = [item.strip().lower() for item in str(v).split(",") if item.strip()]
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def has_google(self) -> bool:
        return bool(self.google_maps_api_key)

    def is_admin(self, email: Optional[str]) -> bool:
        if not email:
            return False
        return email.strip().lower() in {e.lower() for e in self.admin_emails}

    def log_summary(self) -> str:
        return (
            "google=%s osm_interval=%.2fs timeout=%s max_results=%s cache_ttl=%ss admins=%d api_key=%s"
            % (
                self.has_google(),
                self.osm_min_interval_sec,
                self.http_timeout,
                self.max_results,
                self.cache_ttl_sec,
                len(self.admin_emails),
                mask_secret(self.google_maps_api_key),
            )
        )
