"""
Vendor warning overlay suppression.

A misconfigured map widget (bad or missing key) injects an unstyled white
warning box into the host page. The scrubber hides such boxes: immediately,
on a short recurring interval, and on every document mutation. Matching
elements are hidden, never removed; everything else is left alone.
"""

import asyncio
import logging
from typing import Optional

from src.tracking.document import Element, HostDocument, MutationObserver

logger = logging.getLogger(__name__)

SCRUB_INTERVAL = 0.3

STYLE_SIGNATURE = {
    "background-color": "white",
    "font-weight": "500",
}

WARNING_TEXTS = (
    "can't load Google Maps",
    "Do you own this website",
    "This page can't load",
)

HIDDEN_STYLE = {
    "display": "none",
    "visibility": "hidden",
    "opacity": "0",
    "pointer-events": "none",
}


def is_vendor_warning(el: Element) -> bool:
    for prop, value in STYLE_SIGNATURE.items():
        if el.style.get(prop) != value:
            return False
    text = el.text_content
    return any(marker in text for marker in WARNING_TEXTS)


def scrub(document: HostDocument) -> int:
    """Hide every vendor warning overlay in the document. Returns hits."""
    hidden = 0
    for el in document.iter():
        if el.hidden or not is_vendor_warning(el):
            continue
        el.style.update(HIDDEN_STYLE)
        hidden += 1
    if hidden:
        logger.debug("Hid %d vendor warning overlay(s)", hidden)
    return hidden


class OverlaySuppressor:
    """
    Supervised scrubbing task owned by one map view.

    Usage:
        suppressor = OverlaySuppressor(document)
        suppressor.start()
        ...
        suppressor.stop()
    """

    def __init__(self, document: HostDocument, interval: float = SCRUB_INTERVAL):
        self.document = document
        self.interval = interval
        self.hidden_total = 0
        self._task: Optional[asyncio.Task] = None
        self._observer: Optional[MutationObserver] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def scrub_now(self) -> int:
        hits = scrub(self.document)
        self.hidden_total += hits
        return hits

    def start(self) -> None:
        if self.running:
            return
        self.stop()
        self.scrub_now()
        self._observer = self.document.observe(lambda added: self.scrub_now())
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.scrub_now()

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
