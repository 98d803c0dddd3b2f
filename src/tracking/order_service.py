"""
Order service client: reads an order's tracking data and pushes courier
location records.

Endpoints (relative to ORDER_SERVICE_URL):
    GET order-tracking/{orderId}  -> {"deliveryLocation": {"lat", "lng", "address"}}
    PUT order-location/{orderId}  <- location record -> ack or {"error": message}
"""

import logging
from typing import Dict, Optional

import requests

from src.tracking.errors import SyncPushFailure, TrackingFetchFailure
from src.tracking.models import LocationRecord

logger = logging.getLogger(__name__)


class OrderServiceClient:
    def __init__(self, base_url: str, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def fetch_tracking(self, order_id: str) -> Dict:
        """
        Fetch tracking data for an order.

        Raises:
            TrackingFetchFailure: On transport error, non-2xx status or a
                body that is not a JSON object.
        """
        url = f"{self.base_url}/order-tracking/{order_id}"
        try:
            resp = requests.get(url, timeout=self.timeout, headers={"Accept": "application/json"})
            resp.raise_for_status()
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise TrackingFetchFailure(f"Tracking fetch failed for order {order_id}: {e}") from e

        if not isinstance(data, dict):
            raise TrackingFetchFailure(f"Unexpected tracking payload for order {order_id}")
        return data

    def delivery_location(self, order_id: str) -> Optional[Dict]:
        """Return the order's `deliveryLocation` object, if any."""
        location = self.fetch_tracking(order_id).get("deliveryLocation")
        return location if isinstance(location, dict) else None

    def push_location(self, order_id: str, record: LocationRecord) -> Dict:
        """
        Push a location record for an order.

        Raises:
            SyncPushFailure: On transport error or when the service answers
                with an error. The server's `error` message is preferred.
        """
        url = f"{self.base_url}/order-location/{order_id}"
        try:
            resp = requests.put(url, json=record.to_payload(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SyncPushFailure(str(e)) from e

        body = {}
        try:
            body = resp.json()
        except ValueError:
            pass

        if resp.status_code >= 400 or (isinstance(body, dict) and body.get("error")):
            message = body.get("error") if isinstance(body, dict) else None
            raise SyncPushFailure(message or f"HTTP {resp.status_code}")

        logger.debug(
            "Pushed location for order %s: %.6f,%.6f",
            order_id, record.latitude, record.longitude,
        )
        return body if isinstance(body, dict) else {}
