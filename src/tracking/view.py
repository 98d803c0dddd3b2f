"""
Delivery location view: given a container, a PIN code, an optional address
and an optional order id, show a loading state, then either an error or the
bound map.
"""

import asyncio
import html
import logging
from enum import Enum
from typing import Optional

from src.tracking.document import Element
from src.tracking.map_view import MapState, MapViewController
from src.tracking.models import DeliveryLocation
from src.tracking.reconciler import LocationSourceReconciler

logger = logging.getLogger(__name__)


class ViewState(str, Enum):
    LOADING = "LOADING"
    ERROR = "ERROR"
    READY = "READY"


class DeliveryLocationView:
    """
    Map loading and location resolution run concurrently; neither waits for
    the other, and the map is bound once both have finished.
    """

    def __init__(self, controller: MapViewController, reconciler: LocationSourceReconciler):
        self.controller = controller
        self.reconciler = reconciler
        self.state = ViewState.LOADING
        self.error: Optional[str] = None
        self.location: Optional[DeliveryLocation] = None
        self.container: Optional[Element] = None

    async def render(
        self,
        container: Element,
        pincode: str,
        address: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> "DeliveryLocationView":
        self.container = container
        self.state = ViewState.LOADING
        self.error = None

        loaded, resolved = await asyncio.gather(
            self.controller.load_provider(),
            self.reconciler.resolve(pincode, order_id=order_id, address=address),
            return_exceptions=True,
        )
        if isinstance(resolved, Exception):
            return self._fail(str(resolved))
        if isinstance(loaded, Exception):
            return self._fail(str(loaded))

        self.location = resolved
        if self.controller.state == MapState.ERROR:
            return self._fail(self.controller.errors.message or "Map provider error")
        try:
            self.controller.bind(container, resolved)
        except Exception as e:
            return self._fail(f"Failed to initialize map: {e}")

        if self.controller.state == MapState.ERROR:
            return self._fail(self.controller.errors.message or "Map provider error")
        self.state = ViewState.READY
        return self

    def _fail(self, message: str) -> "DeliveryLocationView":
        logger.warning("Delivery map unavailable: %s", message)
        self.state = ViewState.ERROR
        self.error = message
        return self

    def html(self) -> str:
        if self.state == ViewState.READY and self.container is not None:
            return self.controller.html(self.container) or ""
        if self.state == ViewState.ERROR:
            return f'<div class="map-status map-error">{html.escape(self.error or "")}</div>'
        return '<div class="map-status map-loading">Loading map...</div>'

    def close(self) -> None:
        if self.container is not None:
            self.controller.teardown(self.container)
