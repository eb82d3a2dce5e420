from __future__ import annotations

from typing import Any, Dict

from django.conf import settings

DEFAULTS: Dict[str, Any] = {
    "arcgis_client_id": "",
    "arcgis_client_secret": "",
    "token_url": "https://www.arcgis.com/sharing/rest/oauth2/token/",
    "delivery_service_url": "",
    "simulation_service_url": "",
    "route_solver_url": "https://route.arcgis.com/arcgis/rest/services/World/Route/NAServer/Route_World",
    "service_area_url": "https://route.arcgis.com/arcgis/rest/services/World/ServiceAreas/NAServer/ServiceArea_World",
    "pubnub_publish_key": "",
    "pubnub_subscribe_key": "",
    "pubnub_origin": "https://ps.pndsn.com",
    "timeout_seconds": 10,
    "densify_spacing_m": 5.0,
    "zone_strategy": "drive_time",
    "zone_drive_minutes": 4,
    "zone_buffer_miles": 0.25,
    "simulation_interval_seconds": 1.0,
}

# Layer indexes inside the delivery and simulation feature services.
DELIVERY_LAYERS = {
    "delivery": 0,
    "customer": 1,
    "driver": 2,
    "route": 3,
    "delivery_fence": 4,
}
SIMULATION_LAYERS = {
    "driver": 0,
    "route_cruises": 1,
    "route": 2,
}


def tracking_setting(name: str) -> Any:
    config = getattr(settings, "DELIVERY_TRACKING", {}) or {}
    return config.get(name, DEFAULTS[name])
