"""
Periodic location sync: every tick, push the session's current sample
(with a best-effort reverse-geocoded address) to the order service.

The timer and the position watch are independent. A tick pushes whatever
sample is current, even if it was already pushed on the previous tick; no
deduplication is done. Each tick's push runs as its own task so a slow push
never delays the next tick.
"""

import asyncio
import logging
from typing import Callable, Optional, Set

from src.tracking.errors import (
    CapabilityUnavailable, ErrorState, PermissionDenied, PositionUnavailable,
    SyncPushFailure,
)
from src.tracking.models import LocationRecord, PositionSample, TrackingSession

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 5.0


class LocationSyncScheduler:
    """
    Pushes location records for one TrackingSession on a fixed period.

    Usage:
        scheduler = LocationSyncScheduler(session, resolver, order_client)
        scheduler.start()
        ...
        scheduler.stop()

    Pushes still in flight when stop() is called complete, but their results
    are discarded: no update callback, no error reported.
    """

    def __init__(
        self,
        session: TrackingSession,
        resolver,
        order_client,
        interval: float = DEFAULT_SYNC_INTERVAL,
        errors: Optional[ErrorState] = None,
        on_location_update: Optional[Callable[[LocationRecord], None]] = None,
        on_push_failure: Optional[Callable[[SyncPushFailure], None]] = None,
    ):
        self.session = session
        self.resolver = resolver
        self.order_client = order_client
        self.interval = interval
        self.errors = errors if errors is not None else ErrorState()
        self.on_location_update = on_location_update
        self.on_push_failure = on_push_failure
        self._timer: Optional[asyncio.Task] = None
        self._generation = 0
        self._inflight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            return
        self._generation += 1
        self._timer = asyncio.get_running_loop().create_task(self._run(self._generation))
        logger.info(
            "Location sync started for order %s every %.1fs",
            self.session.order_id, self.interval,
        )

    def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        # Invalidates pushes already in flight
        self._generation += 1
        logger.info("Location sync stopped for order %s", self.session.order_id)

    async def _run(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.session.active:
                self.tick(generation)

    def tick(self, generation: Optional[int] = None) -> Optional[asyncio.Task]:
        """Schedule a push of the current sample, tied to the current run."""
        if generation is None:
            generation = self._generation
        sample = self.session.last_sample
        if sample is None:
            logger.debug("Tick for order %s: no sample yet", self.session.order_id)
            return None
        task = asyncio.get_running_loop().create_task(self.push(sample, generation))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def _is_stale(self, generation: Optional[int]) -> bool:
        return generation is not None and generation != self._generation

    async def compose(self, sample: PositionSample) -> LocationRecord:
        """Pair a sample with its address; geocoding failures give ""."""
        address = await asyncio.to_thread(
            self.resolver.reverse_geocode, sample.latitude, sample.longitude,
        )
        return LocationRecord(sample=sample, resolved_address=address or "")

    async def push(
        self, sample: PositionSample, generation: Optional[int] = None,
    ) -> Optional[LocationRecord]:
        """
        Compose and push one record.

        `generation` ties the push to a timer run; a push whose run has since
        been stopped is discarded. Manual pushes pass None and always count.
        """
        record = await self.compose(sample)
        if self._is_stale(generation):
            logger.debug("Discarding geocoded sample for stopped order %s", self.session.order_id)
            return None

        try:
            await asyncio.to_thread(self.order_client.push_location, self.session.order_id, record)
        except SyncPushFailure as e:
            if self._is_stale(generation):
                return None
            logger.warning("Location push failed for order %s: %s", self.session.order_id, e)
            self.errors.report(e, prefix="Failed to update location: ")
            if self.on_push_failure:
                self.on_push_failure(e)
            return None

        if self._is_stale(generation):
            return None
        self.errors.clear()
        if self.on_location_update:
            self.on_location_update(record)
        return record

    async def update_now(self, sampler) -> Optional[LocationRecord]:
        """One-shot fix-and-push, independent of the timer."""
        try:
            sample = await sampler.fix()
        except CapabilityUnavailable as e:
            self.errors.report(e)
            return None
        except (PermissionDenied, PositionUnavailable) as e:
            logger.warning("Manual fix failed for order %s: %s", self.session.order_id, e)
            self.errors.report(e, prefix="Failed to get location: ")
            return None
        return await self.push(sample)
