"""
Builds a delivery route for a driver and a set of customers: solves the
optimal stop order, stores the route, its simulation parts, the delivery
records and a geofence around every delivery.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from . import arcgis
from .arcgis import WGS84, FeatureLayer, add_results, sql_literal
from .conf import DELIVERY_LAYERS, SIMULATION_LAYERS, tracking_setting
from .exceptions import ConfigurationError, ExternalServiceError, RecordNotFound
from .geometry import buffer_rings, merge_paths

LOGGER = logging.getLogger(__name__)

METRES_PER_MILE = 1609.344
ZONE_DRIVE_TIME = "drive_time"
ZONE_BUFFER = "buffer"


def stop_feature(feature: Dict[str, Any]) -> Dict[str, Any]:
    attributes = feature.get("attributes") or {}
    return {
        "geometry": feature.get("geometry"),
        "attributes": {"Name": attributes.get("GlobalID") or attributes.get("Name")},
    }


def route_description(route_attributes: Dict[str, Any], stop_count: int) -> str:
    duration = int(math.ceil(route_attributes.get("Total_TravelTime") or 0))
    distance = round(route_attributes.get("Total_Miles") or 0, 2)
    plural = "s" if stop_count > 1 else ""
    return f"Delivery route with {stop_count} stop{plural} ({distance} miles, {duration} mins)"


def stop_description(stop: Dict[str, Any], customer: Dict[str, Any]) -> str:
    attrs = stop["attributes"]
    customer_attrs = customer.get("attributes") or {}
    name = customer_attrs.get("Name")
    address = customer_attrs.get("SingleLineAddress") or ""
    if address:
        address = f" at {address}"
    eta = attrs.get("Cumul_TravelTimeEst") or attrs.get("Cumul_TravelTime")
    return f"Delivery {attrs['Sequence'] - 1} due in about {eta} minutes: {name}{address}"


def join_customers_to_stops(stops: Sequence[Dict[str, Any]], customers: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach each ordered stop to the customer it was generated from."""
    if len(stops) != len(customers):
        LOGGER.warning("Joining %d stops to %d customers", len(stops), len(customers))

    by_id = {customer["attributes"]["GlobalID"]: customer for customer in customers}
    joined = []
    for stop in stops:
        customer_id = stop["attributes"].get("Name")
        customer = by_id.get(customer_id)
        if customer is None:
            LOGGER.warning("Could not find customer %s to attach to ordered stop.", customer_id)
            continue
        attrs = dict(stop["attributes"])
        attrs["Cumul_TravelTimeEst"] = int(math.ceil(attrs.get("Cumul_TravelTime") or 0))
        joined_stop = {"geometry": stop.get("geometry"), "attributes": attrs, "customer": customer}
        attrs["Description"] = stop_description(joined_stop, customer)
        joined.append(joined_stop)
    return joined


def simulation_parts(route_id: str, base_attributes: Dict[str, Any], directions: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    One playback record per direction maneuver. Departures are skipped and a
    stop maneuver flags the part before it so the simulator pauses there.
    """
    parts: List[Dict[str, Any]] = []
    for index, maneuver in enumerate(directions):
        maneuver_type = (maneuver.get("attributes") or {}).get("maneuverType")
        if maneuver_type == "esriDMTDepart":
            continue
        if maneuver_type == "esriDMTStop":
            if parts:
                parts[-1]["attributes"]["PauseAfter"] = 1
            continue

        paths = (maneuver.get("geometry") or {}).get("paths") or []
        attributes = dict(base_attributes)
        attributes.update(
            {
                "RouteID": route_id,
                "NextStop": 0,
                "Sequence": index,
                "Type": maneuver_type,
                "PauseAfter": 0,
            }
        )
        parts.append(
            {
                "geometry": {"paths": [merge_paths(paths)], "spatialReference": {"wkid": WGS84}},
                "attributes": attributes,
            }
        )
    return parts


class RouteBuilder:
    def __init__(
        self,
        layers: Dict[str, FeatureLayer],
        sim_route_layer: Optional[FeatureLayer] = None,
        route_solver_url: str = "",
        service_area_url: str = "",
        zone_strategy: str = ZONE_DRIVE_TIME,
        zone_drive_minutes: float = 4,
        zone_buffer_miles: float = 0.25,
        solver=arcgis.solve,
    ):
        self.layers = layers
        self.sim_route_layer = sim_route_layer
        self.route_solver_url = route_solver_url
        self.service_area_url = service_area_url
        self.zone_strategy = zone_strategy
        self.zone_drive_minutes = zone_drive_minutes
        self.zone_buffer_miles = zone_buffer_miles
        self.solver = solver

    @classmethod
    def from_settings(cls) -> "RouteBuilder":
        service_url = tracking_setting("delivery_service_url")
        layers = {
            name: FeatureLayer(service_url, index)
            for name, index in DELIVERY_LAYERS.items()
        }
        sim_url = tracking_setting("simulation_service_url")
        sim_route_layer = FeatureLayer(sim_url, SIMULATION_LAYERS["route"]) if sim_url else None
        return cls(
            layers,
            sim_route_layer=sim_route_layer,
            route_solver_url=tracking_setting("route_solver_url"),
            service_area_url=tracking_setting("service_area_url"),
            zone_strategy=tracking_setting("zone_strategy"),
            zone_drive_minutes=tracking_setting("zone_drive_minutes"),
            zone_buffer_miles=tracking_setting("zone_buffer_miles"),
        )

    def build(self, driver_id: str, customer_ids: Sequence[str]) -> Dict[str, Any]:
        if not driver_id:
            raise ConfigurationError("You must provide a DriverID")
        if not customer_ids:
            raise ConfigurationError("You must provide an array of customers")

        driver, customers = self._driver_and_customers(driver_id, customer_ids)
        route_result = self._solve_route(driver, customers)

        stops = sorted(
            (route_result.get("stops") or {}).get("features") or [],
            key=lambda stop: stop["attributes"].get("Sequence", 0),
        )
        routes = (route_result.get("routes") or {}).get("features") or []
        if not routes:
            raise ExternalServiceError("Route solver returned no route.")
        route_feature = routes[0]

        route_id = self._save_route(driver, route_feature, stop_count=len(stops) - 1)
        self._save_simulation_parts(driver, route_id, route_feature, route_result, len(stops) - 1)

        customer_stops = join_customers_to_stops(stops[1:], customers)
        self._save_zones(route_id, customer_stops)
        saved, failed = self._save_deliveries(route_id, customer_stops)
        if failed:
            LOGGER.warning("%d deliveries could not be saved!", len(failed))

        return {
            "routeID": route_id,
            "driver": driver,
            "customers": customers,
            "deliveries": saved,
            "failedDeliveries": failed,
        }

    def _driver_and_customers(self, driver_id: str, customer_ids: Sequence[str]):
        drivers = self.layers["driver"].query(
            where=f"GlobalID={sql_literal(driver_id)}",
            out_fields="GlobalID,Name",
            return_geometry=True,
            out_sr=WGS84,
        )
        id_list = ",".join(sql_literal(customer_id) for customer_id in customer_ids)
        customers = self.layers["customer"].query(
            where=f"GlobalID IN ({id_list})",
            out_fields="GlobalID,Name,SingleLineAddress",
            return_geometry=True,
            out_sr=WGS84,
        )
        if not drivers or not customers:
            LOGGER.warning("Could not find driver %s or customers %s", driver_id, customer_ids)
            raise RecordNotFound("Could not find driver or customers")
        return drivers[0], customers

    def _solve_route(self, driver: Dict[str, Any], customers: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        stops = [stop_feature(feature) for feature in [driver] + list(customers)]
        return self.solver(
            self.route_solver_url,
            {
                "stops": {"features": stops, "spatialReference": {"wkid": WGS84}},
                "findBestSequence": True,
                "preserveFirstStop": True,
                "preserveLastStop": False,
                "returnStops": True,
                "returnDirections": True,
                "returnRoutes": True,
                "directionsOutputType": "esriDOTComplete",
                "outSR": WGS84,
            },
        )

    def _save_route(self, driver: Dict[str, Any], route_feature: Dict[str, Any], stop_count: int) -> str:
        attributes = {
            "DriverID": driver["attributes"]["GlobalID"],
            "Description": route_description(route_feature.get("attributes") or {}, stop_count),
        }
        result = self.layers["route"].apply_edits(
            adds=[{"geometry": route_feature.get("geometry"), "attributes": attributes}]
        )
        added = add_results(result)
        if not added or not added[0].get("success"):
            error = added[0].get("error") if added else None
            LOGGER.error("Error saving route: %s", error)
            raise ExternalServiceError(f"Error saving route: {error}")
        return added[0]["globalId"]

    def _save_simulation_parts(self, driver, route_id, route_feature, route_result, stop_count) -> None:
        if self.sim_route_layer is None:
            LOGGER.warning("No simulation layer configured; skipping simulation route.")
            return

        directions = route_result.get("directions") or []
        maneuvers = (directions[0].get("features") or []) if directions else []
        base_attributes = {
            "DriverID": driver["attributes"]["GlobalID"],
            "Description": route_description(route_feature.get("attributes") or {}, stop_count),
        }
        parts = simulation_parts(route_id, base_attributes, maneuvers)
        try:
            result = self.sim_route_layer.apply_edits(adds=parts)
        except ExternalServiceError as error:
            LOGGER.error("Error saving route simulation: %s", error)
            return
        for added in add_results(result):
            if not added.get("success"):
                LOGGER.warning("Error saving simulation part: %s", added.get("error"))

    def _zone_geometries(self, stops: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self.zone_strategy == ZONE_BUFFER:
            radius = self.zone_buffer_miles * METRES_PER_MILE
            return [
                {
                    "rings": buffer_rings(stop["geometry"]["y"], stop["geometry"]["x"], radius),
                    "spatialReference": {"wkid": WGS84},
                }
                for stop in stops
            ]

        result = self.solver(
            self.service_area_url,
            {
                "facilities": {
                    "features": [stop_feature(stop["customer"]) for stop in stops],
                    "spatialReference": {"wkid": WGS84},
                },
                "defaultBreaks": str(self.zone_drive_minutes),
                "travelDirection": "esriNATravelDirectionToFacility",
                "outSR": WGS84,
                "returnFacilities": True,
                "trimOuterPolygon": True,
                "trimPolygonDistance": 10,
                "trimPolygonDistanceUnits": "esriMeters",
                "overlapPolygons": True,
            },
        )
        polygons = sorted(
            (result.get("saPolygons") or {}).get("features") or [],
            key=lambda polygon: polygon["attributes"].get("FacilityID", 0),
        )
        return [polygon["geometry"] for polygon in polygons]

    def _save_zones(self, route_id: str, stops: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self.zone_strategy == ZONE_BUFFER:
            zone_range, unit = self.zone_buffer_miles, "mile"
        else:
            zone_range, unit = self.zone_drive_minutes, "minute"

        zones = []
        for stop, geometry in zip(stops, self._zone_geometries(stops)):
            sequence = stop["attributes"]["Sequence"] - 1
            customer_id = stop["attributes"]["Name"]
            zones.append(
                {
                    "geometry": geometry,
                    "attributes": {
                        "CustomerID": customer_id,
                        "Range": zone_range,
                        "RouteID": route_id,
                        "Sequence": sequence,
                        "Description": (
                            f"{zone_range} {unit} range around customer {customer_id}. "
                            f"Delivery {sequence} on route {route_id}."
                        ),
                    },
                }
            )
        return add_results(self.layers["delivery_fence"].apply_edits(adds=zones))

    def _save_deliveries(self, route_id: str, stops: Sequence[Dict[str, Any]]):
        deliveries = [
            {
                "geometry": stop.get("geometry"),
                "attributes": {
                    "RouteID": route_id,
                    "Sequence": stop["attributes"]["Sequence"] - 1,
                    "CustomerID": stop["attributes"]["Name"],
                    "ETA": stop["attributes"].get("Cumul_TravelTimeEst") or stop["attributes"].get("Cumul_TravelTime"),
                    "Description": stop["attributes"]["Description"],
                },
            }
            for stop in stops
        ]
        additions = add_results(self.layers["delivery"].apply_edits(adds=deliveries))

        saved, failed = [], []
        for index, delivery in enumerate(deliveries):
            addition = additions[index] if index < len(additions) else {}
            if addition.get("success"):
                delivery["attributes"]["GlobalID"] = addition.get("globalId")
                saved.append(delivery)
            else:
                error = addition.get("error") or {"message": "No add result returned"}
                LOGGER.warning("Could not write delivery %d: %s", index, error.get("message"))
                delivery["attributes"]["saveError"] = error
                failed.append(delivery)

        if not saved:
            LOGGER.error("Error saving deliveries!")
            raise ExternalServiceError("Could not write any deliveries")
        return saved, failed
