"""
Loads simulation routes for a driver from the simulation feature service and
turns them into densified playback segments.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .arcgis import WGS84, FeatureLayer, sql_literal
from .conf import SIMULATION_LAYERS, tracking_setting
from .exceptions import RouteNotFound
from .geometry import LatLng, densify, paths_to_points
from .simulation import CRUISE_ROUTE_ID, is_cruise_route

LOGGER = logging.getLogger(__name__)


def route_where_clause(driver_id: str, route_id: Optional[str]) -> str:
    where = f"DriverID={sql_literal(driver_id)}"
    if is_cruise_route(route_id):
        return f"({where}) AND RouteID IS NULL"
    return f"({where}) AND RouteID={sql_literal(route_id)}"


def split_segments(features: Sequence[Dict[str, Any]]) -> List[List[LatLng]]:
    """
    Concatenate the path records of a route into segments, closing a segment
    after every record flagged ``PauseAfter`` and after the final record.
    """
    segments: List[List[LatLng]] = []
    path_to_stop: List[LatLng] = []
    for index, feature in enumerate(features):
        geometry = feature.get("geometry") or {}
        path_to_stop.extend(paths_to_points(geometry.get("paths") or []))
        attributes = feature.get("attributes") or {}
        if attributes.get("PauseAfter") in (1, True) or index == len(features) - 1:
            segments.append(path_to_stop)
            path_to_stop = []
    return segments


class RouteLoader:
    def __init__(self, cruise_layer: FeatureLayer, route_layer: FeatureLayer, spacing_m: float = 5.0):
        self.cruise_layer = cruise_layer
        self.route_layer = route_layer
        self.spacing_m = spacing_m

    @classmethod
    def from_settings(cls) -> "RouteLoader":
        service_url = tracking_setting("simulation_service_url")
        return cls(
            FeatureLayer(service_url, SIMULATION_LAYERS["route_cruises"]),
            FeatureLayer(service_url, SIMULATION_LAYERS["route"]),
            spacing_m=tracking_setting("densify_spacing_m"),
        )

    def load(self, driver_id: str, route_id: Optional[str] = None) -> Tuple[str, List[List[LatLng]]]:
        if is_cruise_route(route_id):
            route_id = CRUISE_ROUTE_ID
            layer = self.cruise_layer
        else:
            layer = self.route_layer

        features = layer.query(
            where=route_where_clause(driver_id, route_id),
            out_fields="*",
            return_geometry=True,
            order_by="Sequence ASC",
            out_sr=WGS84,
        )
        if not features:
            LOGGER.warning("Route %s not found for driver %s", route_id, driver_id)
            raise RouteNotFound(f"Route {route_id} not found for driver {driver_id}")

        segments = [densify(segment, self.spacing_m) for segment in split_segments(features)]
        LOGGER.info(
            "Loaded route %s for driver %s: %d records in %d segments",
            route_id,
            driver_id,
            len(features),
            len(segments),
        )
        return route_id, segments
