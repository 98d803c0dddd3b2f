"""
Real-time delivery location tracking for couriers.

Modules:
    models          — Position samples, location records, delivery locations
    errors          — Error kinds and the single current-error slot
    config          — Environment-driven configuration
    geocoding       — Forward/reverse geocoding over pluggable providers
    order_service   — Order service client (tracking fetch, location push)
    positioning     — Device position providers and the location sampler
    scheduler       — Periodic location sync to the order service
    tracker         — Start/stop/update-now facade for one courier session
    reconciler      — Pick the best delivery location to display
    document        — Host page model the map widget lives in
    script_registry — Process-wide map script loading
    map_provider    — folium-backed map widget namespace
    suppression     — Vendor warning overlay scrubber
    map_view        — Map view controller (load, bind, teardown)
    view            — Delivery location view (loading/error/ready)
"""
