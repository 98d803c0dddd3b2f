"""Tests for the tracking data model, error state and configuration."""

import sys
import pytest
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.tracking.config import TrackingConfig
from src.tracking.errors import (
    ErrorState, GeocodeNoMatch, GeocodeError, SyncPushFailure, TrackingError,
)
from src.tracking.models import (
    DeliveryLocation, LocationRecord, LocationSource, PositionSample, TrackingSession,
)


class TestPositionSample:
    def test_valid_sample(self):
        sample = PositionSample(12.9716, 77.5946, accuracy_meters=8.0, speed_mps=3.5)
        assert sample.latitude == 12.9716
        assert sample.heading_degrees is None
        assert sample.captured_at.tzinfo is not None

    @pytest.mark.parametrize("lat,lng", [(90.1, 0), (-91, 0), (0, 180.5), (0, -181)])
    def test_out_of_range_rejected(self, lat, lng):
        with pytest.raises(ValueError, match="out of range"):
            PositionSample(lat, lng)

    def test_bounds_inclusive(self):
        PositionSample(90, 180)
        PositionSample(-90, -180)

    def test_negative_accuracy_rejected(self):
        with pytest.raises(ValueError, match="Accuracy"):
            PositionSample(12.0, 77.0, accuracy_meters=-1)

    def test_immutable(self):
        sample = PositionSample(12.0, 77.0)
        with pytest.raises(Exception):
            sample.latitude = 13.0


class TestLocationRecord:
    def test_payload_wire_format(self):
        ts = datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)
        sample = PositionSample(12.97, 77.59, accuracy_meters=5.0, speed_mps=2.0,
                                heading_degrees=45.0, captured_at=ts)
        payload = LocationRecord(sample, "MG Road, Bengaluru").to_payload()
        assert payload == {
            "lat": 12.97,
            "lng": 77.59,
            "accuracy": 5.0,
            "speed": 2.0,
            "heading": 45.0,
            "address": "MG Road, Bengaluru",
            "timestamp": "2024-05-01T10:30:00+00:00",
        }

    def test_empty_address_allowed(self):
        record = LocationRecord(PositionSample(12.97, 77.59))
        assert record.to_payload()["address"] == ""


class TestDeliveryLocation:
    def test_coordinates(self):
        loc = DeliveryLocation(12.97, 77.59, LocationSource.TRACKING_HISTORY)
        assert loc.coordinates == (12.97, 77.59)
        assert loc.address is None

    def test_invalid_rejected(self):
        with pytest.raises(ValueError):
            DeliveryLocation(120.0, 77.59, LocationSource.GEOCODED_FALLBACK)


class TestTrackingSession:
    def test_activate_deactivate(self):
        session = TrackingSession("A1")
        assert not session.active
        session.activate()
        assert session.active
        assert session.started_at is not None
        session.deactivate()
        assert not session.active


class TestErrorState:
    def test_single_slot_replaced(self):
        errors = ErrorState()
        assert not errors
        errors.report(SyncPushFailure("HTTP 500"), prefix="Failed to update location: ")
        errors.report(GeocodeNoMatch("nothing"))
        assert errors.message == "nothing"
        assert errors.kind == "GeocodeNoMatch"

    def test_prefix_and_clear(self):
        errors = ErrorState()
        errors.report(SyncPushFailure("HTTP 500"), prefix="Failed to update location: ")
        assert errors.message == "Failed to update location: HTTP 500"
        errors.clear()
        assert errors.message is None
        assert not errors

    def test_hierarchy(self):
        assert issubclass(GeocodeNoMatch, GeocodeError)
        assert issubclass(GeocodeError, TrackingError)


class TestConfig:
    def test_defaults_without_env(self, monkeypatch):
        for name in ("GOOGLE_MAPS_API_KEY", "SYNC_INTERVAL_SECONDS", "ORDER_SERVICE_URL"):
            monkeypatch.delenv(name, raising=False)
        config = TrackingConfig.from_env()
        assert config.api_key is None
        assert config.sync_interval_seconds == 5.0
        assert config.country == "India"
        assert "key=" not in config.map_script_src

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "secret")
        monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "2.5")
        monkeypatch.setenv("ORDER_SERVICE_URL", "http://orders:9000/api")
        monkeypatch.setenv("SESSION_IDLE_SECONDS", "120")
        config = TrackingConfig.from_env()
        assert config.api_key == "secret"
        assert config.sync_interval_seconds == 2.5
        assert config.order_service_url == "http://orders:9000/api"
        assert config.session_idle_seconds == 120.0
        assert config.map_script_src.endswith("?key=secret")

    def test_invalid_number_falls_back(self, monkeypatch):
        monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "soon")
        assert TrackingConfig.from_env().sync_interval_seconds == 5.0
