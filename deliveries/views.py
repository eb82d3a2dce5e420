from __future__ import annotations

import json
import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from .conf import tracking_setting
from .exceptions import ConfigurationError, ExternalServiceError, NotFound
from .location import LocationUpdater
from .messaging import Publisher
from .planner import RouteBuilder
from .playback import SIMULATOR
from .simulation import CRUISE_ROUTE_ID

logger = logging.getLogger(__name__)


def publish_simulated_location(point, state, arrived_at_stop):
    if point is None:
        return
    if arrived_at_stop:
        logger.info(f"Simulated driver {state.entity_id} arrived at stop {state.sequence}")
    route_id = None if state.route_id == CRUISE_ROUTE_ID else state.route_id
    try:
        Publisher.from_settings().publish_driver_location(
            state.entity_id, point[0], point[1], route_id, state.sequence
        )
    except (ConfigurationError, ExternalServiceError) as e:
        logger.warning(f"Could not publish simulated location for {state.entity_id}: {e}")


def _error_response(error):
    if isinstance(error, NotFound):
        status = 404
    elif isinstance(error, ConfigurationError):
        status = 400
    else:
        status = 502
    return JsonResponse({"error": str(error)}, status=status)


class JsonPostView(View):
    def parse_body(self, request):
        if not request.body:
            return {}
        data = json.loads(request.body)
        if not isinstance(data, dict):
            raise ValueError("Expected a JSON object")
        return data


@method_decorator(csrf_exempt, name="dispatch")
class LocationUpdateView(JsonPostView):
    def post(self, request, *args, **kwargs):
        try:
            message = self.parse_body(request)
        except ValueError:
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        try:
            result = LocationUpdater.from_settings().process(message)
        except (ConfigurationError, NotFound, ExternalServiceError) as e:
            logger.error(f"Location update failed: {e}")
            return _error_response(e)
        return JsonResponse(result)


@method_decorator(csrf_exempt, name="dispatch")
class BuildRouteView(JsonPostView):
    def post(self, request, *args, **kwargs):
        try:
            data = self.parse_body(request)
        except ValueError:
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        driver_id = data.get("driverId")
        customer_ids = data.get("customerIds") or []
        logger.info(f"Building route for driver {driver_id} with {len(customer_ids)} customers")

        try:
            result = RouteBuilder.from_settings().build(driver_id, customer_ids)
        except (ConfigurationError, NotFound, ExternalServiceError) as e:
            logger.error(f"Building route failed: {e}")
            return _error_response(e)
        return JsonResponse(result, status=201)


@method_decorator(csrf_exempt, name="dispatch")
class SimulationView(JsonPostView):
    def get(self, request, driver_id, *args, **kwargs):
        state = SIMULATOR.state(driver_id)
        if state is None:
            return JsonResponse({"error": "Simulation not found"}, status=404)
        return JsonResponse(state.as_dict())

    def post(self, request, driver_id, *args, **kwargs):
        try:
            data = self.parse_body(request)
            interval = data.get("intervalSeconds")
            if interval is None:
                interval = tracking_setting("simulation_interval_seconds")
            interval = float(interval)
            pause = data.get("pauseSeconds")
            pause = float(pause) if pause is not None else None
        except (TypeError, ValueError):
            return JsonResponse({"error": "Invalid simulation parameters"}, status=400)

        try:
            handle = SIMULATOR.simulate_drive(
                driver_id,
                data.get("routeId"),
                publish_simulated_location,
                interval=interval,
                pause_seconds=pause,
            )
        except (ConfigurationError, NotFound, ExternalServiceError) as e:
            logger.error(f"Starting simulation for {driver_id} failed: {e}")
            return _error_response(e)
        return JsonResponse(handle.state.as_dict(), status=201)


@method_decorator(csrf_exempt, name="dispatch")
class SimulationControlView(View):
    actions = ("pause", "resume", "abort")

    def post(self, request, driver_id, action, *args, **kwargs):
        if action not in self.actions:
            return JsonResponse({"error": f"Unknown action {action}"}, status=400)

        # Controls are no-ops in states where they do not apply; report the
        # resulting state so callers can tell.
        getattr(SIMULATOR, action)(driver_id)
        state = SIMULATOR.state(driver_id)
        if state is None:
            return JsonResponse({"error": "Simulation not found"}, status=404)
        return JsonResponse(state.as_dict())
