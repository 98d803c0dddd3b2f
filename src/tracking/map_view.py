"""
Map view controller: loads the map widget, binds a delivery location to a
container as one marker + info overlay, and keeps vendor warning overlays
out of the page.

States:
    UNINITIALIZED -> SCRIPT_LOADING -> READY -> BOUND (-> BOUND on rebind)
    ERROR is reachable from any state when the provider fails.
"""

import html
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from src.tracking.document import Element, HostDocument
from src.tracking.errors import ErrorState, ProviderLoadFailure
from src.tracking.models import DeliveryLocation
from src.tracking.script_registry import ScriptLoadRegistry, registry as default_registry
from src.tracking.suppression import SCRUB_INTERVAL, OverlaySuppressor

logger = logging.getLogger(__name__)

DEFAULT_ZOOM = 15
AUTH_FAILURE_HOOK = "map_auth_failure"
AUTH_FAILURE_MESSAGE = "Map provider authentication failed. Using alternative map view."

MARKER_ICON = {
    "shape": "circle",
    "scale": 10,
    "fill_color": "#34A853",
    "fill_opacity": 1.0,
    "stroke_color": "#ffffff",
    "stroke_weight": 3,
}


class MapState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    SCRIPT_LOADING = "SCRIPT_LOADING"
    READY = "READY"
    BOUND = "BOUND"
    ERROR = "ERROR"


@dataclass
class MapBinding:
    """One container's live map, marker and info overlay."""
    container: Element
    location: DeliveryLocation
    widget: object
    marker: object
    info_window: object


def info_content(location: DeliveryLocation) -> str:
    """Info overlay HTML: the address (or PIN code) and the PIN code."""
    pincode = location.pincode or ""
    headline = location.address or (f"Pincode: {pincode}" if pincode else "")
    parts = [
        '<div style="padding: 8px; min-width: 200px;">',
        '<strong style="color: #34A853; font-size: 14px;">Delivery Location</strong><br/>',
        f'<p style="margin: 4px 0; color: #333; font-size: 13px;">{html.escape(headline)}</p>',
    ]
    if pincode:
        parts.append(
            f'<p style="margin: 4px 0; color: #666; font-size: 12px;">Pincode: {html.escape(pincode)}</p>'
        )
    parts.append("</div>")
    return "".join(parts)


class MapViewController:
    """
    Usage:
        controller = MapViewController(document, FoliumMapProvider(url))
        controller.start()
        await controller.load_provider()
        controller.bind(container, location)
        ...
        controller.close()

    Callers must not bind the same container concurrently.
    """

    def __init__(
        self,
        document: HostDocument,
        provider,
        registry: Optional[ScriptLoadRegistry] = None,
        errors: Optional[ErrorState] = None,
        scrub_interval: float = SCRUB_INTERVAL,
    ):
        self.document = document
        self.provider = provider
        self.registry = registry or default_registry
        self.errors = errors if errors is not None else ErrorState()
        self.state = MapState.UNINITIALIZED
        self.suppressor = OverlaySuppressor(document, interval=scrub_interval)
        self._namespace = None
        self._bindings: Dict[Element, MapBinding] = {}

    def start(self) -> None:
        """Begin overlay suppression and listen for credential rejection."""
        self.document.globals[AUTH_FAILURE_HOOK] = self._on_auth_failure
        self.suppressor.start()

    def binding(self, container: Element) -> Optional[MapBinding]:
        return self._bindings.get(container)

    async def load_provider(self):
        """
        Load the map widget script (shared process-wide).

        Raises:
            ProviderLoadFailure: The script failed to load; state is ERROR.
        """
        if self._namespace is not None and self.state in (MapState.READY, MapState.BOUND):
            return self._namespace
        if not self.suppressor.running:
            self.start()

        self.state = MapState.SCRIPT_LOADING
        try:
            namespace = await self.registry.load(
                self.document,
                self.provider.script_url,
                self.provider.global_name,
                self.provider.fetch,
            )
        except ProviderLoadFailure as e:
            self._fail(e)
            raise

        self._namespace = namespace
        if self.state == MapState.SCRIPT_LOADING:
            self.state = MapState.READY
        return namespace

    def bind(self, container: Element, location: DeliveryLocation) -> MapBinding:
        """
        Show `location` in `container` with exactly one marker.

        Any marker previously bound to the container is removed first; its
        map is recentered rather than rebuilt.
        """
        if self.state not in (MapState.READY, MapState.BOUND) or self._namespace is None:
            raise RuntimeError(f"Map provider is not ready (state={self.state.value})")
        if location is None:
            raise ValueError("A location is required to bind the map")

        self.suppressor.scrub_now()
        ns = self._namespace
        center = location.coordinates
        previous = self._bindings.pop(container, None)

        try:
            if previous is not None:
                previous.marker.remove()
                widget = previous.widget
                widget.set_center(*center)
            else:
                widget = ns.Map(container, center, DEFAULT_ZOOM)

            marker = ns.Marker(widget, center, MARKER_ICON, "Delivery Location")
            info_window = ns.InfoWindow(info_content(location))
            marker.add_listener("click", lambda: info_window.open(widget, marker))
            info_window.open(widget, marker)
        except Exception as e:
            logger.error("Error initializing map: %s", e)
            self.errors.report(e, prefix="Failed to initialize map: ")
            raise

        binding = MapBinding(
            container=container,
            location=location,
            widget=widget,
            marker=marker,
            info_window=info_window,
        )
        self._bindings[container] = binding
        self.state = MapState.BOUND
        self.errors.clear()
        logger.info(
            "Bound %s location %.6f,%.6f to %r",
            location.source.value, location.latitude, location.longitude, container,
        )
        return binding

    def html(self, container: Element) -> Optional[str]:
        binding = self._bindings.get(container)
        return binding.widget.html() if binding else None

    def teardown(self, container: Element) -> None:
        """Remove the container's marker. The map script stays loaded."""
        binding = self._bindings.pop(container, None)
        if binding is not None:
            binding.marker.remove()

    def close(self) -> None:
        self.suppressor.stop()
        for container in list(self._bindings):
            self.teardown(container)
        if self.document.globals.get(AUTH_FAILURE_HOOK) == self._on_auth_failure:
            del self.document.globals[AUTH_FAILURE_HOOK]

    def _fail(self, error: Exception) -> None:
        logger.warning("Map provider failure: %s", error)
        self.state = MapState.ERROR
        self.errors.report(error)

    def _on_auth_failure(self) -> None:
        self._fail(ProviderLoadFailure(AUTH_FAILURE_MESSAGE))
        self.suppressor.scrub_now()
