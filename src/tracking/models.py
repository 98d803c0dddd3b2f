"""
Data model for courier location tracking.

A PositionSample is one device reading. The sync scheduler pairs it with a
reverse-geocoded address to build a LocationRecord, which is what gets pushed
to the order service. A DeliveryLocation is what the map view renders.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise ValueError if the coordinates are outside WGS84 bounds."""
    if not (-90 <= latitude <= 90):
        raise ValueError(f"Latitude {latitude} out of range [-90, 90]")
    if not (-180 <= longitude <= 180):
        raise ValueError(f"Longitude {longitude} out of range [-180, 180]")


@dataclass(frozen=True)
class PositionSample:
    """One instantaneous device position reading."""
    latitude: float
    longitude: float
    accuracy_meters: float = 0.0
    speed_mps: Optional[float] = None
    heading_degrees: Optional[float] = None
    captured_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)
        if self.accuracy_meters < 0:
            raise ValueError(f"Accuracy {self.accuracy_meters} must be >= 0")


@dataclass(frozen=True)
class LocationRecord:
    """A sample plus its resolved address; the unit pushed upstream."""
    sample: PositionSample
    resolved_address: str = ""

    @property
    def latitude(self) -> float:
        return self.sample.latitude

    @property
    def longitude(self) -> float:
        return self.sample.longitude

    def to_payload(self) -> Dict:
        """Serialize in the order service's location wire format."""
        return {
            "lat": self.sample.latitude,
            "lng": self.sample.longitude,
            "accuracy": self.sample.accuracy_meters,
            "speed": self.sample.speed_mps,
            "heading": self.sample.heading_degrees,
            "address": self.resolved_address,
            "timestamp": self.sample.captured_at.isoformat(),
        }


class LocationSource(str, Enum):
    TRACKING_HISTORY = "TRACKING_HISTORY"
    GEOCODED_FALLBACK = "GEOCODED_FALLBACK"


@dataclass(frozen=True)
class DeliveryLocation:
    """The location rendered on the map, tagged with where it came from."""
    latitude: float
    longitude: float
    source: LocationSource
    address: Optional[str] = None
    pincode: Optional[str] = None

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)

    @property
    def coordinates(self) -> tuple:
        return (self.latitude, self.longitude)


@dataclass
class TrackingSession:
    """
    State of one courier tracking session.

    `last_sample` is the shared "current sample" cell: the watch callback
    overwrites it and the sync scheduler reads it. Plain attribute assignment
    is atomic on the event loop, so no lock is taken.
    """
    order_id: str
    active: bool = False
    last_sample: Optional[PositionSample] = None
    started_at: Optional[datetime] = None

    def activate(self) -> None:
        self.active = True
        self.started_at = _utcnow()

    def deactivate(self) -> None:
        self.active = False
