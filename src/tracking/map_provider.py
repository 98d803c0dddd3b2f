"""
Map widget provider backed by folium (Leaflet).

Loading the provider fetches the Leaflet script; once it is reachable the
provider publishes a namespace with the three constructors the map view
needs: Map, Marker and InfoWindow.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

import folium
import requests

from src.tracking.document import Element
from src.tracking.errors import ProviderLoadFailure

logger = logging.getLogger(__name__)

LEAFLET_GLOBAL = "L"


class FoliumMapWidget:
    """A folium map rendered into one container element."""

    def __init__(self, container: Element, center: Tuple[float, float], zoom: int):
        self.container = container
        self.zoom = zoom
        self.map = folium.Map(location=list(center), zoom_start=zoom, tiles="OpenStreetMap")
        container.attrs["data-map"] = self.map.get_name()

    @property
    def center(self) -> Tuple[float, float]:
        lat, lng = self.map.location
        return (lat, lng)

    def set_center(self, lat: float, lng: float) -> None:
        self.map.location = [lat, lng]

    def layers(self, kind=folium.CircleMarker) -> List:
        return [child for child in self.map._children.values() if isinstance(child, kind)]

    def html(self) -> str:
        return self.map.get_root().render()


class FoliumMarker:
    """
    A circle marker on a FoliumMapWidget.

    icon keys: scale, fill_color, fill_opacity, stroke_color, stroke_weight.
    """

    def __init__(self, widget: FoliumMapWidget, position: Tuple[float, float], icon: Dict, title: str = ""):
        self.widget = widget
        self.position = position
        self.layer = folium.CircleMarker(
            location=list(position),
            radius=icon.get("scale", 10),
            color=icon.get("stroke_color", "#ffffff"),
            weight=icon.get("stroke_weight", 3),
            fill=True,
            fill_color=icon.get("fill_color", "#34A853"),
            fill_opacity=icon.get("fill_opacity", 1.0),
            tooltip=title or None,
        )
        self.layer.add_to(widget.map)
        self._listeners: Dict[str, List[Callable[[], None]]] = {}

    @property
    def attached(self) -> bool:
        return self.layer.get_name() in self.widget.map._children

    def add_listener(self, event: str, callback: Callable[[], None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def trigger(self, event: str) -> None:
        for callback in self._listeners.get(event, []):
            callback()

    def click(self) -> None:
        self.trigger("click")

    def remove(self) -> None:
        self.widget.map._children.pop(self.layer.get_name(), None)
        self._listeners.clear()


class FoliumInfoWindow:
    """Popup overlay attached to a marker; opening it shows it by default."""

    def __init__(self, content: str, max_width: int = 300):
        self.content = content
        self.max_width = max_width
        self.popup: Optional[folium.Popup] = None

    @property
    def is_open(self) -> bool:
        return self.popup is not None

    def open(self, widget: FoliumMapWidget, marker: FoliumMarker) -> None:
        if self.popup is not None:
            marker.layer._children.pop(self.popup.get_name(), None)
        self.popup = folium.Popup(self.content, max_width=self.max_width, show=True)
        self.popup.add_to(marker.layer)


class FoliumNamespace:
    """Constructors published once the map script has loaded."""
    Map = FoliumMapWidget
    Marker = FoliumMarker
    InfoWindow = FoliumInfoWindow


class FoliumMapProvider:
    """
    Usage:
        provider = FoliumMapProvider(config.map_script_src)
        namespace = await provider.fetch(provider.script_url)
    """

    global_name = LEAFLET_GLOBAL

    def __init__(self, script_url: str, timeout: float = 15.0):
        self.script_url = script_url
        self.timeout = timeout

    async def fetch(self, url: str) -> FoliumNamespace:
        try:
            resp = await asyncio.to_thread(requests.get, url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ProviderLoadFailure(f"Failed to load map script: {e}") from e
        logger.info("Map script loaded (%d bytes)", len(resp.content or b""))
        return FoliumNamespace()
