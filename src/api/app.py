"""
FastAPI application for courier location tracking.

Endpoints:
    POST /tracking/{order_id}/start       — Start tracking (waits for the first fix)
    POST /tracking/{order_id}/stop        — Stop tracking
    POST /tracking/{order_id}/update-now  — One-shot fix-and-push
    POST /tracking/{order_id}/samples     — Device feed: one position fix
    POST /tracking/{order_id}/permission  — Device feed: permission granted/denied
    GET  /tracking/{order_id}             — Session status
    GET  /delivery-location               — Reconciled delivery location (JSON)
    GET  /delivery-map                    — Delivery location map (HTML)
    GET  /metrics                         — Prometheus metrics
    GET  /health                          — Health check
"""

import logging
import sys
import time
import uuid
from datetime import timezone
from pathlib import Path
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.api.schemas import (
    PositionSampleRequest, PermissionRequest, TrackingStatusResponse,
    LocationRecordResponse, DeliveryLocationResponse, HealthResponse,
)
from src.tracking.config import TrackingConfig
from src.tracking.document import Element, HostDocument
from src.tracking.errors import (
    CapabilityUnavailable, GeocodeError, PermissionDenied, PositionUnavailable,
)
from src.tracking.geocoding import build_resolver
from src.tracking.map_provider import FoliumMapProvider
from src.tracking.map_view import MapViewController
from src.tracking.models import PositionSample
from src.tracking.order_service import OrderServiceClient
from src.tracking.positioning import DeviceFeedProvider, PositionOptions
from src.tracking.reconciler import LocationSourceReconciler
from src.tracking.tracker import LocationTracker
from src.tracking.view import DeliveryLocationView, ViewState

logger = logging.getLogger(__name__)

# ---- App setup ----
app = FastAPI(
    title="Courier Tracking API",
    description="Real-time courier location sync and delivery location maps",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---- Prometheus metrics ----
LOCATION_PUSHES = Counter("location_push_total", "Successful location pushes")
LOCATION_PUSH_FAILURES = Counter("location_push_failures_total", "Failed location pushes")
MAP_RENDERS = Counter("delivery_map_render_total", "Delivery map renders", ["state"])

# ---- Global service references ----
config: TrackingConfig = None
resolver = None
order_client: OrderServiceClient = None
reconciler: LocationSourceReconciler = None
document: HostDocument = None
map_controller: MapViewController = None
trackers: Dict[str, LocationTracker] = {}
feeds: Dict[str, DeviceFeedProvider] = {}
last_seen: Dict[str, float] = {}
service_version: str = "1.0.0"


def init_services(cfg: Optional[TrackingConfig] = None):
    """Build the shared clients from configuration."""
    global config, resolver, order_client, reconciler, document, map_controller

    config = cfg or TrackingConfig.from_env()
    resolver = build_resolver(config)
    order_client = OrderServiceClient(config.order_service_url, config.http_timeout_seconds)
    reconciler = LocationSourceReconciler(order_client, resolver, country=config.country)
    document = HostDocument()
    map_controller = MapViewController(
        document, FoliumMapProvider(config.map_script_src, config.http_timeout_seconds),
    )
    trackers.clear()
    feeds.clear()
    last_seen.clear()


@app.on_event("startup")
async def startup_event():
    if config is None:
        init_services()
    map_controller.start()


@app.on_event("shutdown")
async def shutdown_event():
    for tracker in trackers.values():
        tracker.stop()
    if map_controller is not None:
        map_controller.close()


def _count_push(_record):
    LOCATION_PUSHES.inc()


def _count_push_failure(_error):
    LOCATION_PUSH_FAILURES.inc()


def _drop_session(order_id: str) -> None:
    trackers.pop(order_id, None)
    feeds.pop(order_id, None)
    last_seen.pop(order_id, None)


def _evict_idle(keep: str) -> None:
    """Forget sessions that are neither tracking nor starting and have gone quiet."""
    now = time.monotonic()
    for order_id, tracker in list(trackers.items()):
        if order_id == keep or tracker.is_tracking or tracker.starting:
            continue
        if now - last_seen.get(order_id, now) >= config.session_idle_seconds:
            logger.info("Evicting idle tracking session for order %s", order_id)
            _drop_session(order_id)


def _get_tracker(order_id: str) -> LocationTracker:
    _evict_idle(keep=order_id)
    last_seen[order_id] = time.monotonic()
    tracker = trackers.get(order_id)
    if tracker is None:
        feed = DeviceFeedProvider()
        tracker = LocationTracker(
            order_id,
            feed,
            resolver,
            order_client,
            interval=config.sync_interval_seconds,
            options=PositionOptions(
                timeout=config.position_timeout_seconds,
                maximum_age=config.position_max_age_seconds,
            ),
            on_location_update=_count_push,
            on_push_failure=_count_push_failure,
        )
        feeds[order_id] = feed
        trackers[order_id] = tracker
    return tracker


def _existing_tracker(order_id: str) -> LocationTracker:
    tracker = trackers.get(order_id)
    if tracker is None:
        raise HTTPException(status_code=404, detail=f"No tracking session for order {order_id}")
    return tracker


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy" if config is not None and config.api_key else "degraded",
        credential_configured=bool(config is not None and config.api_key),
        active_sessions=sum(1 for t in trackers.values() if t.is_tracking),
        version=service_version,
    )


# ---- Courier tracking ----
@app.post("/tracking/{order_id}/start", response_model=TrackingStatusResponse)
async def start_tracking(order_id: str):
    """
    Start tracking an order's courier. Waits for the device's first fix;
    calling it again while tracking is a no-op.
    """
    tracker = _get_tracker(order_id)
    try:
        await tracker.start()
    except (CapabilityUnavailable, PermissionDenied) as e:
        raise HTTPException(status_code=409, detail=tracker.errors.message or str(e))
    except PositionUnavailable as e:
        raise HTTPException(status_code=504, detail=tracker.errors.message or str(e))
    return tracker.status()


@app.post("/tracking/{order_id}/stop", response_model=TrackingStatusResponse)
async def stop_tracking(order_id: str):
    """Stop tracking and forget the session."""
    tracker = _existing_tracker(order_id)
    tracker.stop()
    status = tracker.status()
    _drop_session(order_id)
    return status


@app.post("/tracking/{order_id}/update-now", response_model=LocationRecordResponse)
async def update_now(order_id: str):
    """One-shot fix and push, whether or not periodic tracking is running."""
    tracker = _get_tracker(order_id)
    record = await tracker.update_now()
    if record is None:
        raise HTTPException(status_code=502, detail=tracker.errors.message or "Location update failed")
    return record.to_payload()


@app.post("/tracking/{order_id}/samples", status_code=202)
async def feed_sample(order_id: str, request: PositionSampleRequest):
    """Accept one position fix from the courier's device."""
    _get_tracker(order_id)
    kwargs = {}
    if request.captured_at is not None:
        captured_at = request.captured_at
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        kwargs["captured_at"] = captured_at
    sample = PositionSample(
        latitude=request.lat,
        longitude=request.lng,
        accuracy_meters=request.accuracy,
        speed_mps=request.speed,
        heading_degrees=request.heading,
        **kwargs,
    )
    feeds[order_id].feed(sample)
    return {"accepted": True}


@app.post("/tracking/{order_id}/permission", status_code=202)
async def set_permission(order_id: str, request: PermissionRequest):
    """The device reports whether the courier allowed position access."""
    _get_tracker(order_id)
    if request.granted:
        feeds[order_id].grant()
    else:
        feeds[order_id].deny()
    return {"granted": request.granted}


@app.get("/tracking/{order_id}", response_model=TrackingStatusResponse)
async def tracking_status(order_id: str):
    return _existing_tracker(order_id).status()


# ---- Delivery location ----
@app.get("/delivery-location", response_model=DeliveryLocationResponse)
async def delivery_location(
    pincode: str = Query(..., description="Delivery PIN code, e.g. 560001"),
    order_id: Optional[str] = Query(None),
    address: Optional[str] = Query(None),
):
    """
    Best known delivery location: the order's tracking data when it has
    coordinates, otherwise the geocoded PIN code.
    """
    try:
        location = await reconciler.resolve(pincode, order_id=order_id, address=address)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except GeocodeError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return DeliveryLocationResponse(
        lat=location.latitude,
        lng=location.longitude,
        address=location.address,
        pincode=location.pincode,
        source=location.source.value,
    )


@app.get("/delivery-map", response_class=HTMLResponse)
async def delivery_map(
    pincode: str = Query(..., description="Delivery PIN code, e.g. 560001"),
    order_id: Optional[str] = Query(None),
    address: Optional[str] = Query(None),
):
    """Render the delivery location map (or its error panel) as HTML."""
    container = document.body.append(Element("div", {"id": f"map-{uuid.uuid4().hex[:8]}"}))
    view = DeliveryLocationView(map_controller, reconciler)
    try:
        await view.render(container, pincode, address=address, order_id=order_id)
        content = view.html()
    finally:
        view.close()
        document.body.remove(container)

    MAP_RENDERS.labels(state=view.state.value).inc()
    status_code = 200 if view.state == ViewState.READY else 503
    return HTMLResponse(content=content, status_code=status_code, headers={"X-Map-State": view.state.value})


# ---- Prometheus metrics endpoint ----
@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
