"""
Driver location updates: publish the new position, work out which delivery
geofences the driver entered or left and store the result on the driver
record.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .arcgis import FeatureLayer, sql_literal, update_results
from .conf import DELIVERY_LAYERS, tracking_setting
from .exceptions import DriverNotFound, ExternalServiceError, InvalidLocationUpdate
from .messaging import Publisher

LOGGER = logging.getLogger(__name__)


def diff_fences(old_fences: List[str], current_fences: List[str]):
    entered = [fence for fence in current_fences if fence not in old_fences]
    exited = [fence for fence in old_fences if fence not in current_fences]
    return entered, exited


def parse_fences(value: Optional[str]) -> List[str]:
    return [fence for fence in (value or "").split(",") if fence]


def fence_where_clause(route_id: str, sequence: Optional[Any] = None) -> str:
    where = f"RouteID = {sql_literal(route_id)}"
    if sequence is not None:
        where += f" AND Sequence = {sequence}"
    return where


class LocationUpdater:
    def __init__(self, drivers_layer: FeatureLayer, fences_layer: FeatureLayer, publisher: Publisher):
        self.drivers_layer = drivers_layer
        self.fences_layer = fences_layer
        self.publisher = publisher

    @classmethod
    def from_settings(cls) -> "LocationUpdater":
        service_url = tracking_setting("delivery_service_url")
        return cls(
            FeatureLayer(service_url, DELIVERY_LAYERS["driver"]),
            FeatureLayer(service_url, DELIVERY_LAYERS["delivery_fence"]),
            Publisher.from_settings(),
        )

    def process(self, message: Dict[str, Any]) -> Dict[str, Any]:
        driver_id = message.get("driverId")
        lat = message.get("lat")
        lng = message.get("lng")
        if driver_id is None or lat is None or lng is None:
            raise InvalidLocationUpdate('You must provide "driverId", "lat" and "lng" parameters!')
        route_id = message.get("routeId")
        sequence = message.get("sequence")
        try:
            lat = float(lat)
            lng = float(lng)
            if sequence is not None:
                sequence = int(sequence)
        except (TypeError, ValueError) as error:
            raise InvalidLocationUpdate(f"Invalid location update: {error}") from error

        result = dict(message)

        try:
            self.publisher.publish_driver_location(driver_id, lat, lng, route_id, sequence)
        except ExternalServiceError as error:
            LOGGER.warning("Could not publish location for driver %s: %s", driver_id, error)

        object_id, old_fences = self._last_known_fences(driver_id)
        result["oldFences"] = old_fences

        if route_id is None:
            LOGGER.info("No route for driver %s; updating location only", driver_id)
            result["arcgisObjectId"] = self._update_driver(object_id, lat, lng)
            return result

        current_fences = self._fences_for_location(lat, lng, route_id, sequence)
        entered, exited = diff_fences(old_fences, current_fences)
        result.update(
            {
                "currentFences": current_fences,
                "enteredFences": entered,
                "exitedFences": exited,
            }
        )

        if entered:
            try:
                self.publisher.publish_delivery_imminent(driver_id, route_id, sequence)
            except ExternalServiceError as error:
                LOGGER.warning("Could not publish imminent delivery for route %s: %s", route_id, error)

        result["arcgisObjectId"] = self._update_driver(object_id, lat, lng, current_fences)
        return result

    def _last_known_fences(self, driver_id: str):
        features = self.drivers_layer.query(
            where=f"GlobalID = {sql_literal(driver_id)}",
            out_fields="OBJECTID,GlobalID,Name,Geofences",
            record_count=1,
        )
        if not features:
            LOGGER.warning("Could not find driver %s", driver_id)
            raise DriverNotFound(f"Could not find driver {driver_id}")
        attributes = features[0].get("attributes") or {}
        return attributes.get("OBJECTID"), parse_fences(attributes.get("Geofences"))

    def _fences_for_location(self, lat: float, lng: float, route_id: str, sequence: Optional[Any]) -> List[str]:
        features = self.fences_layer.query(
            where=fence_where_clause(route_id, sequence),
            out_fields="OBJECTID",
            point={"lat": lat, "lng": lng},
        )
        return [str(feature["attributes"]["OBJECTID"]) for feature in features]

    def _update_driver(self, object_id: Any, lat: float, lng: float, fences: Optional[List[str]] = None):
        update: Dict[str, Any] = {
            "geometry": {"x": lng, "y": lat, "spatialReference": {"wkid": 4326}},
            "attributes": {"OBJECTID": object_id},
        }
        if fences is not None:
            update["attributes"]["Geofences"] = ",".join(fences)

        results = update_results(self.drivers_layer.apply_edits(updates=[update]))
        if not results:
            raise ExternalServiceError("No update result returned for the driver record.")
        if not results[0].get("success"):
            raise ExternalServiceError("Updating the driver record failed.")
        return results[0].get("objectId")
