"""
Pydantic request/response schemas for the courier tracking service.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class PositionSampleRequest(BaseModel):
    """Input schema for POST /tracking/{order_id}/samples (device feed)."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude (degrees)")
    lng: float = Field(..., ge=-180, le=180, description="Longitude (degrees)")
    accuracy: float = Field(0.0, ge=0, description="Horizontal accuracy (m)")
    speed: Optional[float] = Field(None, description="Speed (m/s)")
    heading: Optional[float] = Field(None, description="Heading (degrees from north)")
    captured_at: Optional[datetime] = Field(None, description="Capture time (default: now)")

    model_config = {"json_schema_extra": {
        "examples": [{
            "lat": 12.9716, "lng": 77.5946, "accuracy": 8.0,
            "speed": 4.2, "heading": 90.0,
        }]
    }}


class PermissionRequest(BaseModel):
    """Input schema for POST /tracking/{order_id}/permission (device feed)."""
    granted: bool = Field(..., description="Whether the courier allowed position access")


class CurrentLocation(BaseModel):
    lat: float
    lng: float
    accuracy: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    captured_at: datetime


class TrackingStatusResponse(BaseModel):
    """Output schema for the /tracking/{order_id} endpoints."""
    order_id: str
    active: bool
    started_at: Optional[datetime] = None
    current_location: Optional[CurrentLocation] = None
    last_address: Optional[str] = None
    error: Optional[str] = None


class LocationRecordResponse(BaseModel):
    """Output schema for POST /tracking/{order_id}/update-now."""
    lat: float
    lng: float
    accuracy: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    address: str = ""
    timestamp: datetime


class DeliveryLocationResponse(BaseModel):
    """Output schema for GET /delivery-location."""
    lat: float
    lng: float
    address: Optional[str] = None
    pincode: Optional[str] = None
    source: str = Field(..., description="TRACKING_HISTORY or GEOCODED_FALLBACK")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    credential_configured: bool
    active_sessions: int
    version: str
