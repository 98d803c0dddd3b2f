"""
Device positioning: providers that produce position samples, and the
LocationSampler that keeps a session's current sample up to date.

A provider offers two things:
    current_position(options) — one fix, awaited
    watch(on_sample, on_error, options) — a continuous stream, returned as a
        cancellable WatchSubscription. Once cancelled, no further callbacks
        are delivered.

Providers:
    DeviceFeedProvider     — fixes pushed in from the courier's device
    ReplayPositionProvider — replays a recorded CSV track
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import pandas as pd

from src.tracking.errors import (
    CapabilityUnavailable, ErrorState, PermissionDenied, PositionUnavailable,
)
from src.tracking.models import PositionSample, TrackingSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionOptions:
    """Fix request options. maximum_age=0 means never reuse a cached fix."""
    high_accuracy: bool = True
    timeout: float = 10.0
    maximum_age: float = 0.0


SampleCallback = Callable[[PositionSample], None]
ErrorCallback = Callable[[Exception], None]


class WatchSubscription:
    """Opaque handle for a continuous position watch."""

    def __init__(self, on_sample: SampleCallback, on_error: ErrorCallback):
        self._on_sample = on_sample
        self._on_error = on_error
        self._active = True
        self._cancel_hooks: List[Callable[[], None]] = []
        self._fresh = asyncio.Event()

    @property
    def active(self) -> bool:
        return self._active

    def on_cancel(self, hook: Callable[[], None]) -> None:
        self._cancel_hooks.append(hook)

    def deliver(self, sample: PositionSample) -> None:
        if not self._active:
            return
        self._fresh.set()
        self._on_sample(sample)

    def fail(self, error: Exception) -> None:
        if not self._active:
            return
        self._on_error(error)

    async def wait_fresh(self) -> None:
        await self._fresh.wait()
        self._fresh.clear()

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        for hook in self._cancel_hooks:
            hook()
        self._cancel_hooks.clear()


class DeviceFeedProvider:
    """
    Position provider fed by the courier's device.

    The device (e.g. through the API's sample endpoint) calls `feed()` with
    every fix it takes. `current_position` waits for the next fed fix unless
    the latest one is younger than `maximum_age`. Each watch gets a watchdog
    that reports PositionUnavailable when no fix arrives within `timeout`.
    """

    def __init__(self, supported: bool = True):
        self.supported = supported
        self._denied = False
        self._latest: Optional[PositionSample] = None
        self._waiters: List[asyncio.Future] = []
        self._subscriptions: List[WatchSubscription] = []

    def deny(self) -> None:
        """The user declined position access on the device."""
        self._denied = True
        error = PermissionDenied("User denied Geolocation")
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_exception(error)
        self._waiters.clear()
        for sub in list(self._subscriptions):
            sub.fail(error)

    def grant(self) -> None:
        self._denied = False

    def feed(self, sample: PositionSample) -> None:
        if self._denied:
            logger.debug("Ignoring fix fed while permission is denied")
            return
        self._latest = sample
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(sample)
        self._waiters.clear()
        for sub in list(self._subscriptions):
            sub.deliver(sample)

    def report_error(self, error: Exception) -> None:
        for sub in list(self._subscriptions):
            sub.fail(error)

    async def current_position(self, options: PositionOptions) -> PositionSample:
        if self._denied:
            raise PermissionDenied("User denied Geolocation")
        if self._latest is not None and options.maximum_age > 0:
            age = (datetime.now(timezone.utc) - self._latest.captured_at).total_seconds()
            if age <= options.maximum_age:
                return self._latest

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(waiter, options.timeout)
        except asyncio.TimeoutError:
            raise PositionUnavailable("Timeout expired") from None
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def watch(
        self, on_sample: SampleCallback, on_error: ErrorCallback, options: PositionOptions,
    ) -> WatchSubscription:
        sub = WatchSubscription(on_sample, on_error)
        self._subscriptions.append(sub)
        watchdog = asyncio.get_running_loop().create_task(self._watchdog(sub, options.timeout))

        def _release():
            watchdog.cancel()
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        sub.on_cancel(_release)
        return sub

    async def _watchdog(self, sub: WatchSubscription, timeout: float) -> None:
        while sub.active:
            try:
                await asyncio.wait_for(sub.wait_fresh(), timeout)
            except asyncio.TimeoutError:
                sub.fail(PositionUnavailable("Timeout expired"))


class ReplayPositionProvider:
    """
    Replays a recorded track, one sample every `interval` seconds.

    CSV columns: latitude, longitude and optionally accuracy, speed, heading.
    Capture times are stamped at replay time so samples always look fresh.
    """

    supported = True

    def __init__(self, points: List[dict], interval: float = 1.0, loop: bool = False):
        if not points:
            raise ValueError("Replay track is empty")
        self.points = points
        self.interval = interval
        self.loop = loop
        self._cursor = 0

    @classmethod
    def from_csv(cls, path, interval: float = 1.0, loop: bool = False) -> "ReplayPositionProvider":
        df = pd.read_csv(Path(path))
        missing = {"latitude", "longitude"} - set(df.columns)
        if missing:
            raise ValueError(f"Track CSV missing columns: {sorted(missing)}")
        df = df.dropna(subset=["latitude", "longitude"])
        points = []
        for row in df.to_dict(orient="records"):
            points.append({
                "latitude": float(row["latitude"]),
                "longitude": float(row["longitude"]),
                "accuracy": _optional_float(row.get("accuracy")) or 0.0,
                "speed": _optional_float(row.get("speed")),
                "heading": _optional_float(row.get("heading")),
            })
        logger.info("Loaded %d track points from %s", len(points), path)
        return cls(points, interval=interval, loop=loop)

    def _next_sample(self) -> Optional[PositionSample]:
        if self._cursor >= len(self.points):
            if not self.loop:
                return None
            self._cursor = 0
        point = self.points[self._cursor]
        self._cursor += 1
        return PositionSample(
            latitude=point["latitude"],
            longitude=point["longitude"],
            accuracy_meters=point.get("accuracy") or 0.0,
            speed_mps=point.get("speed"),
            heading_degrees=point.get("heading"),
        )

    async def current_position(self, options: PositionOptions) -> PositionSample:
        sample = self._next_sample()
        if sample is None:
            raise PositionUnavailable("Replay track exhausted")
        return sample

    def watch(
        self, on_sample: SampleCallback, on_error: ErrorCallback, options: PositionOptions,
    ) -> WatchSubscription:
        sub = WatchSubscription(on_sample, on_error)
        task = asyncio.get_running_loop().create_task(self._replay(sub))
        sub.on_cancel(task.cancel)
        return sub

    async def _replay(self, sub: WatchSubscription) -> None:
        while sub.active:
            await asyncio.sleep(self.interval)
            sample = self._next_sample()
            if sample is None:
                sub.fail(PositionUnavailable("Replay track exhausted"))
                return
            sub.deliver(sample)


def _optional_float(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


class LocationSampler:
    """
    Keeps a TrackingSession's current sample fed from a position provider.

    start() takes one immediate fix and then starts a continuous watch.
    Watch errors are logged and surfaced as transient errors; the watch keeps
    running. stop() is idempotent.
    """

    def __init__(
        self,
        provider,
        session: TrackingSession,
        errors: Optional[ErrorState] = None,
        options: Optional[PositionOptions] = None,
    ):
        self.provider = provider
        self.session = session
        self.errors = errors if errors is not None else ErrorState()
        self.options = options or PositionOptions()
        self._subscription: Optional[WatchSubscription] = None
        self._generation = 0

    @property
    def watching(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def _check_supported(self) -> None:
        if not getattr(self.provider, "supported", False):
            raise CapabilityUnavailable("Geolocation is not supported by this device")

    async def fix(self) -> PositionSample:
        """Take one fix and make it the session's current sample."""
        self._check_supported()
        sample = await self.provider.current_position(self.options)
        self.session.last_sample = sample
        return sample

    async def start(self) -> PositionSample:
        """
        Take an initial fix, then watch continuously.

        A stop() while the first fix is pending wins: no watch is started.

        Raises:
            CapabilityUnavailable: The provider has no positioning support.
            PermissionDenied: The user declined; no watch is started.
        """
        if self.watching:
            return self.session.last_sample

        generation = self._generation
        sample = await self.fix()
        if generation != self._generation or self.watching:
            return sample
        self._subscription = self.provider.watch(self._on_sample, self._on_error, self.options)
        logger.info("Position watch started for order %s", self.session.order_id)
        return sample

    def stop(self) -> None:
        self._generation += 1
        if self._subscription is None:
            return
        self._subscription.cancel()
        self._subscription = None
        logger.info("Position watch stopped for order %s", self.session.order_id)

    def _on_sample(self, sample: PositionSample) -> None:
        self.session.last_sample = sample

    def _on_error(self, error: Exception) -> None:
        logger.warning("Location watch error for order %s: %s", self.session.order_id, error)
        self.errors.report(error, prefix="Location tracking error: ")
