"""
Drives simulation states on a timer and exposes pause/resume/abort controls
keyed by driver id.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional, Sequence

from .exceptions import ConfigurationError
from .simulation import (
    CRUISE_ROUTE_ID,
    STATUS_ENDED,
    STATUS_PAUSED,
    STATUS_RUNNING,
    STATUS_STARTING,
    SimulationState,
    Waypoint,
    advance,
    is_cruise_route,
)
from .scheduling import ThreadingScheduler

LOGGER = logging.getLogger(__name__)

LocationCallback = Callable[[Optional[Waypoint], SimulationState, bool], None]


class SimulationHandle:
    def __init__(self, simulator: "PlaybackSimulator", entity_id: str):
        self.simulator = simulator
        self.entity_id = entity_id

    @property
    def state(self) -> Optional[SimulationState]:
        return self.simulator.state(self.entity_id)

    def pause(self) -> None:
        self.simulator.pause(self.entity_id)

    def resume(self) -> None:
        self.simulator.resume(self.entity_id)

    def abort(self) -> None:
        self.simulator.abort(self.entity_id)


class PlaybackSimulator:
    def __init__(self, scheduler=None, clock: Callable[[], float] = time.monotonic, route_loader=None):
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock
        self._route_loader = route_loader
        self._lock = threading.RLock()
        self._states: Dict[str, SimulationState] = {}
        self._callbacks: Dict[str, LocationCallback] = {}
        self._timers: Dict[str, object] = {}
        self._tickets: Dict[str, object] = {}

    @property
    def route_loader(self):
        if self._route_loader is None:
            from .route_loader import RouteLoader

            self._route_loader = RouteLoader.from_settings()
        return self._route_loader

    def start(
        self,
        entity_id: str,
        segments: Sequence[Sequence[Waypoint]],
        callback: LocationCallback,
        interval: float = 1.0,
        pause_seconds: Optional[float] = None,
        repeat: bool = False,
        route_id: Optional[str] = None,
        speed_factor: float = 1,
    ) -> SimulationHandle:
        if interval <= 0:
            raise ConfigurationError("Tick interval must be positive.")
        if speed_factor <= 0:
            raise ConfigurationError("Speed factor must be positive.")
        if pause_seconds is not None and pause_seconds < 0:
            raise ConfigurationError("Pause duration cannot be negative.")

        state = SimulationState(
            entity_id,
            segments,
            interval=interval,
            pause_seconds=pause_seconds,
            repeat=repeat,
            route_id=route_id,
            speed_factor=speed_factor,
        )

        with self._lock:
            previous = self._states.get(entity_id)
            if previous is not None and previous.status != STATUS_ENDED:
                LOGGER.info("Replacing active simulation for driver %s", entity_id)
                self._cancel(entity_id)
                previous.status = STATUS_ENDED
            self._states[entity_id] = state
            self._callbacks[entity_id] = callback
            self.resume(entity_id)

        LOGGER.info(
            "Started simulation for driver %s on route %s (%d segments)",
            entity_id,
            route_id,
            len(state.segments),
        )
        return SimulationHandle(self, entity_id)

    def simulate_drive(
        self,
        entity_id: str,
        route_id: Optional[str],
        callback: LocationCallback,
        interval: float = 1.0,
        pause_seconds: Optional[float] = None,
    ) -> SimulationHandle:
        if is_cruise_route(route_id):
            route_id = CRUISE_ROUTE_ID
        route_id, segments = self.route_loader.load(entity_id, route_id)
        return self.start(
            entity_id,
            segments,
            callback,
            interval=interval,
            pause_seconds=pause_seconds,
            repeat=route_id == CRUISE_ROUTE_ID,
            route_id=route_id,
        )

    def simulate_cruise(self, entity_id: str, callback: LocationCallback, interval: float = 1.0) -> SimulationHandle:
        return self.simulate_drive(entity_id, CRUISE_ROUTE_ID, callback, interval)

    def state(self, entity_id: str) -> Optional[SimulationState]:
        return self._states.get(entity_id)

    def pause(self, entity_id: str) -> None:
        with self._lock:
            state = self._states.get(entity_id)
            if state is None or state.status != STATUS_RUNNING:
                return
            self._cancel(entity_id)
            state.status = STATUS_PAUSED
            state.paused_at = self.clock()

    def resume(self, entity_id: str) -> None:
        with self._lock:
            state = self._states.get(entity_id)
            if state is None or state.status not in (STATUS_STARTING, STATUS_PAUSED):
                return
            if state.paused_at is not None:
                # A stop's dwell only counts time spent running.
                if state.pause_deadline is not None:
                    state.pause_deadline += self.clock() - state.paused_at
                state.paused_at = None
            ticket = object()
            self._tickets[entity_id] = ticket
            self._timers[entity_id] = self.scheduler.schedule(
                state.interval, lambda: self._tick(entity_id, ticket)
            )
            state.status = STATUS_RUNNING

    def abort(self, entity_id: str) -> None:
        with self._lock:
            state = self._states.get(entity_id)
            if state is None or state.status != STATUS_RUNNING:
                return
            self._cancel(entity_id)
            state.status = STATUS_ENDED

    def evict(self, entity_id: str) -> bool:
        with self._lock:
            state = self._states.get(entity_id)
            if state is None or state.status != STATUS_ENDED:
                return False
            del self._states[entity_id]
            self._callbacks.pop(entity_id, None)
            return True

    def _cancel(self, entity_id: str) -> None:
        self._tickets.pop(entity_id, None)
        timer = self._timers.pop(entity_id, None)
        if timer is not None:
            timer.cancel()

    def _tick(self, entity_id: str, ticket: object) -> None:
        with self._lock:
            if self._tickets.get(entity_id) is not ticket:
                return
            state = self._states[entity_id]
            if state.status != STATUS_RUNNING:
                return

            was_at_stop = state.at_stop
            point = advance(state, self.clock())
            arrived_at_stop = state.at_stop and not was_at_stop

            if point is None:
                self._cancel(entity_id)
                LOGGER.info("Simulation for driver %s reached the end of its route", entity_id)
            else:
                state.last_emitted_point = point
            callback = self._callbacks[entity_id]

        # Runs unlocked; the callback may block on network I/O.
        try:
            callback(point, state, arrived_at_stop)
        except Exception:
            LOGGER.exception("Location callback failed for driver %s", entity_id)


SIMULATOR = PlaybackSimulator()
