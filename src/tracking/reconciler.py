"""
Delivery location reconciliation: choose the single location to display.

Tracking data stored by the order service is more accurate than a PIN code
centroid, so it always wins when it has coordinates. Otherwise the PIN code
is geocoded (with a fixed country qualifier).
"""

import asyncio
import logging
from typing import Optional

from src.tracking.errors import GeocodeError, GeocodeProviderError, TrackingFetchFailure
from src.tracking.models import DeliveryLocation, LocationSource

logger = logging.getLogger(__name__)


class LocationSourceReconciler:
    """
    Usage:
        reconciler = LocationSourceReconciler(order_client, resolver)
        location = await reconciler.resolve("560001", order_id="abc")
    """

    def __init__(self, order_client, resolver, country: str = "India"):
        self.order_client = order_client
        self.resolver = resolver
        self.country = country

    async def resolve(
        self,
        pincode: str,
        order_id: Optional[str] = None,
        address: Optional[str] = None,
    ) -> DeliveryLocation:
        """
        Resolve the delivery location for an order / PIN code.

        Raises:
            ValueError: Empty PIN code.
            GeocodeNoMatch, GeocodeProviderError: Tracking had no usable
                location and the PIN code could not be geocoded.
        """
        pincode = (pincode or "").strip()
        if not pincode:
            raise ValueError("Pincode is required")

        if order_id:
            tracked = await self._from_tracking(order_id, pincode, address)
            if tracked is not None:
                return tracked

        query = f"{pincode}, {self.country}"
        try:
            match = await asyncio.to_thread(self.resolver.forward_geocode, query)
        except GeocodeError as e:
            logger.warning("Geocoding failed for pincode %s: %s", pincode, e)
            raise type(e)(f"Failed to get location for pincode: {pincode}") from e

        try:
            return DeliveryLocation(
                latitude=match.lat,
                longitude=match.lng,
                address=match.address or address,
                source=LocationSource.GEOCODED_FALLBACK,
                pincode=pincode,
            )
        except ValueError as e:
            logger.warning("Geocoder returned unusable coordinates for pincode %s: %s", pincode, e)
            raise GeocodeProviderError(f"Failed to get location for pincode: {pincode}") from e

    async def _from_tracking(
        self, order_id: str, pincode: str, address: Optional[str],
    ) -> Optional[DeliveryLocation]:
        try:
            location = await asyncio.to_thread(self.order_client.delivery_location, order_id)
        except TrackingFetchFailure as e:
            logger.info("No tracking data for order %s (%s); geocoding pincode", order_id, e)
            return None

        if not location:
            return None
        lat, lng = location.get("lat"), location.get("lng")
        if lat is None or lng is None:
            return None
        try:
            return DeliveryLocation(
                latitude=float(lat),
                longitude=float(lng),
                address=location.get("address") or address,
                source=LocationSource.TRACKING_HISTORY,
                pincode=pincode,
            )
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring invalid tracking location for order %s: %s", order_id, e)
            return None
