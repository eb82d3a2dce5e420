"""
Route playback state machine.

A simulated driver is stepped along a densified route one waypoint per tick.
Routes are split into segments at scheduled stops; the driver may dwell at
the end of each segment and the fallback cruise route loops forever.
"""
from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

from .exceptions import ConfigurationError

STATUS_STARTING = "starting"
STATUS_RUNNING = "running"
STATUS_PAUSED = "paused"
STATUS_ENDED = "ended"

CRUISE_ROUTE_ID = "JUSTCRUISING"

Waypoint = Tuple[float, float]
Segments = Tuple[Tuple[Waypoint, ...], ...]


def is_cruise_route(route_id: Optional[str]) -> bool:
    return route_id is None or route_id == "" or route_id == CRUISE_ROUTE_ID


def validate_route(segments: Sequence[Sequence[Waypoint]]) -> Segments:
    if not segments:
        raise ConfigurationError("A route needs at least one segment.")
    frozen = tuple(tuple(tuple(point) for point in segment) for segment in segments)
    for index, segment in enumerate(frozen):
        if not segment:
            raise ConfigurationError(f"Route segment {index} has no waypoints.")
    return frozen


class SimulationState:
    """Playback position of one simulated driver."""

    def __init__(
        self,
        entity_id: str,
        segments: Sequence[Sequence[Waypoint]],
        interval: float = 1.0,
        pause_seconds: Optional[float] = None,
        repeat: bool = False,
        route_id: Optional[str] = None,
        speed_factor: float = 1,
    ):
        self.entity_id = entity_id
        self.route_id = route_id
        self.segments: Segments = validate_route(segments)
        self.current_segment = 0
        self.cursor = 0
        self.sequence = 1
        self.speed_factor = speed_factor
        self.status = STATUS_STARTING
        self.interval = interval
        self.pause_seconds = pause_seconds
        self.pause_deadline: Optional[float] = None
        self.paused_at: Optional[float] = None
        self.at_stop = False
        self.repeat = repeat
        self.last_emitted_point: Optional[Waypoint] = None

    @property
    def step(self) -> int:
        # Half rounds up; a zero step would freeze the driver in place.
        return max(int(math.floor(self.speed_factor + 0.5)), 1)

    def as_dict(self) -> dict:
        point = self.last_emitted_point
        return {
            "driverId": self.entity_id,
            "routeId": self.route_id,
            "status": self.status,
            "sequence": self.sequence,
            "segment": self.current_segment,
            "segmentCount": len(self.segments),
            "cursor": self.cursor,
            "atStop": self.at_stop,
            "repeat": self.repeat,
            "intervalSeconds": self.interval,
            "pauseSeconds": self.pause_seconds,
            "location": None if point is None else {"lat": point[0], "lng": point[1]},
        }


def advance(state: SimulationState, now: float) -> Optional[Waypoint]:
    """
    Return the next waypoint for ``state``, or ``None`` once the route is
    exhausted. ``now`` is a monotonic clock reading in seconds and is only
    consulted while dwelling at a stop.
    """
    if state.status == STATUS_ENDED:
        return None

    segment = state.segments[state.current_segment]
    if state.cursor >= len(segment):
        if state.pause_seconds:
            last_point = segment[-1]
            if state.pause_deadline is None:
                state.pause_deadline = now + state.pause_seconds
                state.at_stop = True
                return last_point
            if now < state.pause_deadline:
                return last_point
            state.pause_deadline = None
            state.at_stop = False

        if state.current_segment >= len(state.segments) - 1:
            if not state.repeat:
                state.current_segment = len(state.segments)
                state.status = STATUS_ENDED
                return None
            state.current_segment = 0
        else:
            state.current_segment += 1
        state.cursor = 0
        segment = state.segments[state.current_segment]

    state.sequence = state.current_segment + 1
    point = segment[state.cursor]
    state.cursor += state.step
    return point
