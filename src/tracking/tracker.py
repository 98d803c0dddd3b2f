"""
LocationTracker: one courier's tracking session, start to stop.

Composes the session, the LocationSampler and the LocationSyncScheduler and
owns the error slot they share.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from src.tracking.errors import (
    CapabilityUnavailable, ErrorState, PermissionDenied, PositionUnavailable,
    SyncPushFailure,
)
from src.tracking.models import LocationRecord, TrackingSession
from src.tracking.positioning import LocationSampler, PositionOptions
from src.tracking.scheduler import DEFAULT_SYNC_INTERVAL, LocationSyncScheduler

logger = logging.getLogger(__name__)


class LocationTracker:
    """
    Usage:
        tracker = LocationTracker("abc", provider, resolver, order_client)
        await tracker.start()
        record = await tracker.update_now()
        tracker.stop()
    """

    def __init__(
        self,
        order_id: str,
        provider,
        resolver,
        order_client,
        interval: float = DEFAULT_SYNC_INTERVAL,
        options: Optional[PositionOptions] = None,
        on_location_update: Optional[Callable[[LocationRecord], None]] = None,
        on_push_failure: Optional[Callable[[SyncPushFailure], None]] = None,
    ):
        self.session = TrackingSession(order_id=order_id)
        self.errors = ErrorState()
        self.last_record: Optional[LocationRecord] = None
        self._on_location_update = on_location_update
        self._starting: Optional[asyncio.Future] = None
        self._generation = 0
        self.sampler = LocationSampler(provider, self.session, self.errors, options)
        self.scheduler = LocationSyncScheduler(
            self.session,
            resolver,
            order_client,
            interval=interval,
            errors=self.errors,
            on_location_update=self._record_update,
            on_push_failure=on_push_failure,
        )

    @property
    def order_id(self) -> str:
        return self.session.order_id

    @property
    def is_tracking(self) -> bool:
        return self.session.active

    def _record_update(self, record: LocationRecord) -> None:
        self.last_record = record
        if self._on_location_update:
            self._on_location_update(record)

    async def start(self) -> None:
        """
        Start tracking. A second call while tracking is a no-op, and calls
        made while a start is pending wait on that same start.

        Raises:
            CapabilityUnavailable, PermissionDenied, PositionUnavailable:
                The initial fix failed; the session stays inactive.
        """
        if self.session.active:
            return
        if self._starting is None or self._starting.done():
            self._starting = asyncio.ensure_future(self._start())
        await asyncio.shield(self._starting)

    @property
    def starting(self) -> bool:
        return self._starting is not None and not self._starting.done()

    async def _start(self) -> None:
        generation = self._generation
        self.errors.clear()
        try:
            await self.sampler.start()
        except (CapabilityUnavailable, PermissionDenied, PositionUnavailable) as e:
            if generation != self._generation:
                logger.info("Start for order %s abandoned after stop: %s", self.order_id, e)
                return
            if isinstance(e, CapabilityUnavailable):
                self.errors.report(e)
            else:
                self.errors.report(e, prefix="Failed to get location: ")
            raise

        if generation != self._generation:
            # stop() ran while the first fix was pending
            self.sampler.stop()
            logger.info("Start for order %s abandoned after stop", self.order_id)
            return

        self.session.activate()
        self.scheduler.start()
        # The initial fix is pushed right away rather than on the first tick
        self.scheduler.tick()
        logger.info("Tracking started for order %s", self.order_id)

    def stop(self) -> None:
        """Stop tracking; safe to call when not started or while starting."""
        self._generation += 1
        self.sampler.stop()
        self.scheduler.stop()
        if self.session.active:
            self.session.deactivate()
            logger.info("Tracking stopped for order %s", self.order_id)

    async def update_now(self) -> Optional[LocationRecord]:
        return await self.scheduler.update_now(self.sampler)

    def status(self) -> Dict:
        sample = self.session.last_sample
        return {
            "order_id": self.order_id,
            "active": self.session.active,
            "started_at": self.session.started_at.isoformat() if self.session.started_at else None,
            "current_location": {
                "lat": sample.latitude,
                "lng": sample.longitude,
                "accuracy": sample.accuracy_meters,
                "speed": sample.speed_mps,
                "heading": sample.heading_degrees,
                "captured_at": sample.captured_at.isoformat(),
            } if sample else None,
            "last_address": self.last_record.resolved_address if self.last_record else None,
            "error": self.errors.message,
        }
