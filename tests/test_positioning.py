"""Tests for position providers and the LocationSampler."""

import asyncio
import sys
import pytest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.tracking.errors import (
    CapabilityUnavailable, ErrorState, PermissionDenied, PositionUnavailable,
)
from src.tracking.models import PositionSample, TrackingSession
from src.tracking.positioning import (
    DeviceFeedProvider, LocationSampler, PositionOptions, ReplayPositionProvider,
)


def _sample(lat=12.97, lng=77.59):
    return PositionSample(lat, lng, accuracy_meters=5.0)


async def _start_with_fix(sampler, feed, sample):
    """Start the sampler and feed its first fix once it is waiting."""
    task = asyncio.create_task(sampler.start())
    await asyncio.sleep(0)
    feed.feed(sample)
    return await task


class TestDeviceFeedProvider:
    def test_current_position_waits_for_feed(self):
        async def scenario():
            feed = DeviceFeedProvider()
            task = asyncio.create_task(feed.current_position(PositionOptions(timeout=1.0)))
            await asyncio.sleep(0)
            feed.feed(_sample(13.0, 77.0))
            return await task

        assert asyncio.run(scenario()).latitude == 13.0

    def test_timeout(self):
        async def scenario():
            feed = DeviceFeedProvider()
            await feed.current_position(PositionOptions(timeout=0.05))

        with pytest.raises(PositionUnavailable, match="Timeout expired"):
            asyncio.run(scenario())

    def test_fresh_fix_reused_with_maximum_age(self):
        async def scenario():
            feed = DeviceFeedProvider()
            feed.feed(_sample(14.0, 77.0))
            return await feed.current_position(PositionOptions(timeout=0.05, maximum_age=60))

        assert asyncio.run(scenario()).latitude == 14.0

    def test_cached_fix_not_reused_with_zero_maximum_age(self):
        async def scenario():
            feed = DeviceFeedProvider()
            feed.feed(_sample())
            await feed.current_position(PositionOptions(timeout=0.05, maximum_age=0))

        with pytest.raises(PositionUnavailable):
            asyncio.run(scenario())

    def test_denied(self):
        async def scenario():
            feed = DeviceFeedProvider()
            feed.deny()
            await feed.current_position(PositionOptions(timeout=1.0))

        with pytest.raises(PermissionDenied):
            asyncio.run(scenario())

    def test_deny_fails_pending_request(self):
        async def scenario():
            feed = DeviceFeedProvider()
            task = asyncio.create_task(feed.current_position(PositionOptions(timeout=1.0)))
            await asyncio.sleep(0)
            feed.deny()
            await task

        with pytest.raises(PermissionDenied):
            asyncio.run(scenario())


class TestReplayPositionProvider:
    def test_sequential_then_exhausted(self):
        async def scenario():
            provider = ReplayPositionProvider([
                {"latitude": 12.0, "longitude": 77.0},
                {"latitude": 12.1, "longitude": 77.1, "accuracy": 4.0},
            ])
            first = await provider.current_position(PositionOptions())
            second = await provider.current_position(PositionOptions())
            assert (first.latitude, second.latitude) == (12.0, 12.1)
            assert second.accuracy_meters == 4.0
            await provider.current_position(PositionOptions())

        with pytest.raises(PositionUnavailable, match="exhausted"):
            asyncio.run(scenario())

    def test_from_csv(self, tmp_path):
        track = tmp_path / "track.csv"
        track.write_text(
            "latitude,longitude,accuracy,speed\n"
            "12.97,77.59,5,3.2\n"
            "12.98,77.60,,\n"
        )
        provider = ReplayPositionProvider.from_csv(track)
        assert len(provider.points) == 2
        assert provider.points[0]["speed"] == 3.2
        assert provider.points[1]["accuracy"] == 0.0
        assert provider.points[1]["heading"] is None

    def test_from_csv_missing_columns(self, tmp_path):
        track = tmp_path / "track.csv"
        track.write_text("lat,lon\n12.97,77.59\n")
        with pytest.raises(ValueError, match="missing columns"):
            ReplayPositionProvider.from_csv(track)

    def test_empty_track_rejected(self):
        with pytest.raises(ValueError):
            ReplayPositionProvider([])

    def test_watch_streams_samples(self):
        async def scenario():
            provider = ReplayPositionProvider(
                [{"latitude": 12.0 + i / 100, "longitude": 77.0} for i in range(3)],
                interval=0.01,
            )
            seen, errors = [], []
            sub = provider.watch(seen.append, errors.append, PositionOptions())
            await asyncio.sleep(0.1)
            sub.cancel()
            return seen, errors

        seen, errors = asyncio.run(scenario())
        assert [s.latitude for s in seen] == [12.0, 12.01, 12.02]
        assert isinstance(errors[0], PositionUnavailable)


class TestLocationSampler:
    def test_capability_unavailable(self):
        sampler = LocationSampler(DeviceFeedProvider(supported=False), TrackingSession("A1"))
        with pytest.raises(CapabilityUnavailable, match="Geolocation is not supported"):
            asyncio.run(sampler.start())
        assert not sampler.watching

    def test_permission_denied_no_watch(self):
        feed = DeviceFeedProvider()
        feed.deny()
        session = TrackingSession("A1")
        sampler = LocationSampler(feed, session)
        with pytest.raises(PermissionDenied):
            asyncio.run(sampler.start())
        assert not sampler.watching
        assert session.last_sample is None

    def test_initial_fix_then_watch(self):
        async def scenario():
            feed = DeviceFeedProvider()
            session = TrackingSession("A1")
            sampler = LocationSampler(feed, session, options=PositionOptions(timeout=1.0))
            first = await _start_with_fix(sampler, feed, _sample(12.0, 77.0))
            assert session.last_sample == first
            assert sampler.watching

            feed.feed(_sample(12.5, 77.5))
            assert session.last_sample.latitude == 12.5

            sampler.stop()
            feed.feed(_sample(13.0, 78.0))
            return session

        session = asyncio.run(scenario())
        assert session.last_sample.latitude == 12.5

    def test_start_is_idempotent(self):
        async def scenario():
            feed = DeviceFeedProvider()
            sampler = LocationSampler(feed, TrackingSession("A1"), options=PositionOptions(timeout=1.0))
            await _start_with_fix(sampler, feed, _sample())
            await sampler.start()
            count = len(feed._subscriptions)
            sampler.stop()
            sampler.stop()
            return count, len(feed._subscriptions)

        assert asyncio.run(scenario()) == (1, 0)

    def test_watch_error_is_not_fatal(self):
        async def scenario():
            feed = DeviceFeedProvider()
            errors = ErrorState()
            session = TrackingSession("A1")
            sampler = LocationSampler(feed, session, errors, PositionOptions(timeout=1.0))
            await _start_with_fix(sampler, feed, _sample())
            feed.report_error(PositionUnavailable("Position unavailable"))
            message = errors.message
            feed.feed(_sample(12.6, 77.6))
            watching = sampler.watching
            sampler.stop()
            return message, watching, session.last_sample.latitude

        message, watching, lat = asyncio.run(scenario())
        assert message == "Location tracking error: Position unavailable"
        assert watching
        assert lat == 12.6

    def test_watchdog_reports_silence(self):
        async def scenario():
            feed = DeviceFeedProvider()
            errors = ErrorState()
            sampler = LocationSampler(feed, TrackingSession("A1"), errors, PositionOptions(timeout=0.05))
            await _start_with_fix(sampler, feed, _sample())
            await asyncio.sleep(0.12)
            sampler.stop()
            return errors.message

        assert asyncio.run(scenario()) == "Location tracking error: Timeout expired"
