"""Tests for delivery location reconciliation (tracking data vs PIN code geocoding)."""

import asyncio
import sys
import pytest
from unittest.mock import MagicMock
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.tracking.errors import (
    GeocodeNoMatch, GeocodeProviderError, TrackingFetchFailure,
)
from src.tracking.geocoding import GeocodeResult
from src.tracking.models import LocationSource
from src.tracking.reconciler import LocationSourceReconciler


@pytest.fixture
def resolver():
    resolver = MagicMock()
    resolver.forward_geocode.return_value = GeocodeResult(12.9762, 77.6033, "Bengaluru GPO, Karnataka")
    return resolver


@pytest.fixture
def order_client():
    return MagicMock()


class TestTrackingFirst:
    def test_tracking_location_wins(self, order_client, resolver):
        order_client.delivery_location.return_value = {"lat": 12.9352, "lng": 77.6245, "address": "Koramangala"}
        reconciler = LocationSourceReconciler(order_client, resolver)

        loc = asyncio.run(reconciler.resolve("560001", order_id="A1"))

        assert loc.source == LocationSource.TRACKING_HISTORY
        assert loc.coordinates == (12.9352, 77.6245)
        assert loc.address == "Koramangala"
        assert loc.pincode == "560001"
        resolver.forward_geocode.assert_not_called()

    def test_tracking_without_address_uses_callers(self, order_client, resolver):
        order_client.delivery_location.return_value = {"lat": 12.9352, "lng": 77.6245}
        reconciler = LocationSourceReconciler(order_client, resolver)
        loc = asyncio.run(reconciler.resolve("560001", order_id="A1", address="Flat 4B"))
        assert loc.address == "Flat 4B"

    def test_zero_coordinates_are_usable(self, order_client, resolver):
        order_client.delivery_location.return_value = {"lat": 0.0, "lng": 0.0}
        reconciler = LocationSourceReconciler(order_client, resolver)
        loc = asyncio.run(reconciler.resolve("560001", order_id="A1"))
        assert loc.source == LocationSource.TRACKING_HISTORY

    @pytest.mark.parametrize("payload", [
        None,
        {"lat": 12.93},
        {"lat": None, "lng": 77.62},
        {"lat": 512.0, "lng": 77.62},
    ])
    def test_unusable_tracking_falls_back(self, order_client, resolver, payload):
        order_client.delivery_location.return_value = payload
        reconciler = LocationSourceReconciler(order_client, resolver)
        loc = asyncio.run(reconciler.resolve("560001", order_id="A1"))
        assert loc.source == LocationSource.GEOCODED_FALLBACK

    def test_fetch_failure_is_soft_miss(self, order_client, resolver):
        order_client.delivery_location.side_effect = TrackingFetchFailure("HTTP 503")
        reconciler = LocationSourceReconciler(order_client, resolver)
        loc = asyncio.run(reconciler.resolve("560001", order_id="A1"))
        assert loc.source == LocationSource.GEOCODED_FALLBACK
        resolver.forward_geocode.assert_called_once_with("560001, India")


class TestGeocodedFallback:
    def test_no_order_geocodes_pincode(self, order_client, resolver):
        reconciler = LocationSourceReconciler(order_client, resolver)
        loc = asyncio.run(reconciler.resolve("560001"))

        order_client.delivery_location.assert_not_called()
        resolver.forward_geocode.assert_called_once_with("560001, India")
        assert loc.source == LocationSource.GEOCODED_FALLBACK
        assert loc.address == "Bengaluru GPO, Karnataka"
        assert loc.pincode == "560001"

    def test_no_match_message(self, order_client, resolver):
        resolver.forward_geocode.side_effect = GeocodeNoMatch("nothing")
        reconciler = LocationSourceReconciler(order_client, resolver)
        with pytest.raises(GeocodeNoMatch, match="Failed to get location for pincode: 999999"):
            asyncio.run(reconciler.resolve("999999"))

    def test_provider_error_keeps_kind(self, order_client, resolver):
        resolver.forward_geocode.side_effect = GeocodeProviderError("HTTP 503")
        reconciler = LocationSourceReconciler(order_client, resolver)
        with pytest.raises(GeocodeProviderError, match="Failed to get location for pincode: 560001"):
            asyncio.run(reconciler.resolve("560001"))

    @pytest.mark.parametrize("lat, lng", [(float("nan"), 77.6), (12.97, 200.0)])
    def test_unusable_geocode_result_is_provider_error(self, order_client, resolver, lat, lng):
        resolver.forward_geocode.return_value = GeocodeResult(lat, lng, "Somewhere")
        reconciler = LocationSourceReconciler(order_client, resolver)
        with pytest.raises(GeocodeProviderError, match="Failed to get location for pincode: 560001"):
            asyncio.run(reconciler.resolve("560001"))

    def test_country_is_configurable(self, order_client, resolver):
        reconciler = LocationSourceReconciler(order_client, resolver, country="Nepal")
        asyncio.run(reconciler.resolve("44600"))
        resolver.forward_geocode.assert_called_once_with("44600, Nepal")

    @pytest.mark.parametrize("pincode", ["", "   ", None])
    def test_pincode_required(self, order_client, resolver, pincode):
        reconciler = LocationSourceReconciler(order_client, resolver)
        with pytest.raises(ValueError, match="Pincode is required"):
            asyncio.run(reconciler.resolve(pincode))
