"""
Runtime configuration, read from environment variables.

GOOGLE_MAPS_API_KEY is optional: without it reverse geocoding and the map
script are still attempted (and will likely fail), but nothing refuses to
start.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_ORDER_SERVICE_URL = "http://localhost:8080/api"
DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org"
DEFAULT_GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
DEFAULT_MAP_SCRIPT_URL = "https://cdn.jsdelivr.net/npm/leaflet@1.9.3/dist/leaflet.js"
DEFAULT_USER_AGENT = "courier-tracking/1.0"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using default %s", name, raw, default)
        return default


@dataclass
class TrackingConfig:
    """Configuration shared by the tracker, reconciler and map view."""
    api_key: Optional[str] = None
    order_service_url: str = DEFAULT_ORDER_SERVICE_URL
    nominatim_url: str = DEFAULT_NOMINATIM_URL
    google_geocode_url: str = DEFAULT_GOOGLE_GEOCODE_URL
    map_script_url: str = DEFAULT_MAP_SCRIPT_URL
    user_agent: str = DEFAULT_USER_AGENT
    country: str = "India"
    sync_interval_seconds: float = 5.0
    position_timeout_seconds: float = 10.0
    position_max_age_seconds: float = 0.0
    http_timeout_seconds: float = 15.0
    session_idle_seconds: float = 600.0

    @classmethod
    def from_env(cls) -> "TrackingConfig":
        api_key = os.environ.get("GOOGLE_MAPS_API_KEY") or None
        if not api_key:
            logger.info(
                "GOOGLE_MAPS_API_KEY not set; reverse geocoding and map "
                "loading will run without a credential"
            )
        return cls(
            api_key=api_key,
            order_service_url=os.environ.get("ORDER_SERVICE_URL", DEFAULT_ORDER_SERVICE_URL),
            nominatim_url=os.environ.get("NOMINATIM_URL", DEFAULT_NOMINATIM_URL),
            google_geocode_url=os.environ.get("GOOGLE_GEOCODE_URL", DEFAULT_GOOGLE_GEOCODE_URL),
            map_script_url=os.environ.get("MAP_SCRIPT_URL", DEFAULT_MAP_SCRIPT_URL),
            user_agent=os.environ.get("GEOCODE_USER_AGENT", DEFAULT_USER_AGENT),
            country=os.environ.get("GEOCODE_COUNTRY", "India"),
            sync_interval_seconds=_env_float("SYNC_INTERVAL_SECONDS", 5.0),
            position_timeout_seconds=_env_float("POSITION_TIMEOUT_SECONDS", 10.0),
            position_max_age_seconds=_env_float("POSITION_MAX_AGE_SECONDS", 0.0),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 15.0),
            session_idle_seconds=_env_float("SESSION_IDLE_SECONDS", 600.0),
        )

    @property
    def map_script_src(self) -> str:
        """Map script URL, with the credential appended when one is set."""
        if not self.api_key:
            return self.map_script_url
        sep = "&" if "?" in self.map_script_url else "?"
        return f"{self.map_script_url}{sep}key={self.api_key}"
