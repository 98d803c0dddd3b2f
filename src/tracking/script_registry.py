"""
Process-wide map script loading.

Every map view in the process shares one script tag per provider URL:
    - script present and its global published  -> ready immediately
    - script present but still loading         -> wait for its load event
    - no script                                -> inject exactly one tag
Concurrent callers share the same in-flight load. The tag is never owned by
a single view, so tearing a view down leaves it in place for the others.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Tuple

from src.tracking.document import Element, HostDocument
from src.tracking.errors import ProviderLoadFailure

logger = logging.getLogger(__name__)

ScriptFetcher = Callable[[str], Awaitable[object]]


def script_base(url: str) -> str:
    """URL without its query string; used to spot an already-injected tag."""
    return url.split("?", 1)[0]


class ScriptLoadRegistry:
    def __init__(self):
        self._inflight: Dict[Tuple[int, str], asyncio.Future] = {}
        self._waiters: Dict[Tuple[int, str], int] = {}
        self._tasks = set()

    def waiting(self, document: HostDocument, url: str) -> int:
        """Number of callers currently waiting on the load of `url`."""
        return self._waiters.get((id(document), url), 0)

    async def load(
        self, document: HostDocument, url: str, global_name: str, fetch: ScriptFetcher,
    ) -> object:
        """
        Make sure the provider script is loaded into `document`.

        Returns:
            The namespace the script publishes as `document.globals[global_name]`.

        Raises:
            ProviderLoadFailure: The script failed to load.
        """
        key = (id(document), url)
        existing = document.find_script(script_base(url))

        if existing is not None and global_name in document.globals:
            return document.globals[global_name]

        future = self._inflight.get(key)
        if future is None:
            if existing is not None:
                logger.debug("Map script already present; waiting for its load event")
                future = self._listen(document, existing, global_name, key)
            else:
                future = self._inject(document, url, global_name, fetch, key)
        return await self._wait(key, future)

    async def _wait(self, key, future: asyncio.Future) -> object:
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            return await asyncio.shield(future)
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] <= 0:
                del self._waiters[key]

    def _listen(self, document: HostDocument, script: Element, global_name: str, key) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future

        def _on_load(_script):
            self._inflight.pop(key, None)
            if future.done():
                return
            if global_name in document.globals:
                future.set_result(document.globals[global_name])
            else:
                future.set_exception(
                    ProviderLoadFailure(f"Map script loaded but {global_name!r} is missing")
                )

        def _on_error(_script):
            self._inflight.pop(key, None)
            if not future.done():
                future.set_exception(ProviderLoadFailure("Failed to load map script"))

        script.add_listener("load", _on_load, once=True)
        script.add_listener("error", _on_error, once=True)
        return future

    def _inject(
        self, document: HostDocument, url: str, global_name: str, fetch: ScriptFetcher, key,
    ) -> asyncio.Future:
        script = Element("script", {"src": url, "async": "true", "defer": "true"})
        document.head.append(script)
        future = self._listen(document, script, global_name, key)
        logger.info("Injected map script %s", script_base(url))

        async def _run():
            try:
                namespace = await fetch(url)
            except Exception as e:
                logger.warning("Map script failed to load from %s: %s", script_base(url), e)
                # A failed tag is dropped so a later load can retry
                document.head.remove(script)
                if not future.done():
                    failure = e
                    if not isinstance(e, ProviderLoadFailure):
                        failure = ProviderLoadFailure(f"Failed to load map script: {e}")
                        failure.__cause__ = e
                    future.set_exception(failure)
                script.dispatch("error")
                return
            document.globals[global_name] = namespace
            script.dispatch("load")

        task = asyncio.get_running_loop().create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return future


registry = ScriptLoadRegistry()
