"""
Replay a recorded courier track against the order service.

Usage:
    python scripts/replay_courier.py --order-id 1042 --track data/track.csv
    python scripts/replay_courier.py --order-id 1042 --track data/track.csv --duration 60 --loop
    python scripts/replay_courier.py --order-id 1042 --pincode 560001 --resolve-only
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.tracking.config import TrackingConfig
from src.tracking.errors import GeocodeError, TrackingError
from src.tracking.geocoding import build_resolver
from src.tracking.order_service import OrderServiceClient
from src.tracking.positioning import ReplayPositionProvider
from src.tracking.reconciler import LocationSourceReconciler
from src.tracking.tracker import LocationTracker

logger = logging.getLogger("replay_courier")


async def replay(args, config: TrackingConfig) -> int:
    provider = ReplayPositionProvider.from_csv(args.track, interval=args.step, loop=args.loop)
    resolver = build_resolver(config)
    client = OrderServiceClient(config.order_service_url, config.http_timeout_seconds)

    pushed = []

    def on_update(record):
        pushed.append(record)
        print(json.dumps(record.to_payload()))

    tracker = LocationTracker(
        args.order_id,
        provider,
        resolver,
        client,
        interval=args.sync_interval or config.sync_interval_seconds,
        on_location_update=on_update,
    )

    try:
        await tracker.start()
    except TrackingError as e:
        logger.error("Could not start tracking: %s", tracker.errors.message or e)
        return 1

    try:
        await asyncio.sleep(args.duration)
    finally:
        tracker.stop()

    status = tracker.status()
    logger.info("Pushed %d record(s) for order %s", len(pushed), args.order_id)
    if status["error"]:
        logger.warning("Last error: %s", status["error"])
    return 0


async def resolve_only(args, config: TrackingConfig) -> int:
    resolver = build_resolver(config)
    client = OrderServiceClient(config.order_service_url, config.http_timeout_seconds)
    reconciler = LocationSourceReconciler(client, resolver, country=config.country)
    try:
        location = await reconciler.resolve(args.pincode, order_id=args.order_id, address=args.address)
    except (ValueError, GeocodeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(json.dumps({
        "lat": location.latitude,
        "lng": location.longitude,
        "address": location.address,
        "pincode": location.pincode,
        "source": location.source.value,
    }, indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Replay a courier track through the location sync loop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Track CSV columns: latitude, longitude[, accuracy, speed, heading]

Examples:
  python scripts/replay_courier.py --order-id 1042 --track track.csv
  python scripts/replay_courier.py --order-id 1042 --pincode 560001 --resolve-only
        """,
    )
    parser.add_argument("--order-id", required=True, help="Order being delivered")
    parser.add_argument("--track", default=None, help="CSV file with the recorded track")
    parser.add_argument(
        "--step", type=float, default=1.0,
        help="Seconds between replayed fixes (default: 1.0)",
    )
    parser.add_argument(
        "--sync-interval", type=float, default=None,
        help="Seconds between pushes (default: SYNC_INTERVAL_SECONDS or 5)",
    )
    parser.add_argument(
        "--duration", type=float, default=30.0,
        help="Seconds to keep tracking before stopping (default: 30)",
    )
    parser.add_argument("--loop", action="store_true", help="Restart the track when it ends")
    parser.add_argument(
        "--resolve-only", action="store_true",
        help="Only resolve the delivery location for --pincode and exit",
    )
    parser.add_argument("--pincode", default=None, help="Delivery PIN code (e.g., 560001)")
    parser.add_argument("--address", default=None, help="Delivery address shown on the map")
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = TrackingConfig.from_env()

    if args.resolve_only:
        if not args.pincode:
            parser.error("--resolve-only requires --pincode")
        sys.exit(asyncio.run(resolve_only(args, config)))

    if not args.track:
        parser.error("--track is required unless --resolve-only is given")
    try:
        code = asyncio.run(replay(args, config))
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
