"""
Geometry helpers for turning feature-service polylines into playback
waypoints and delivery zones.
"""
from __future__ import annotations

import math
from typing import Iterable, List, Sequence, Tuple

from shapely import affinity
from shapely.geometry import LineString, Point

EARTH_RADIUS_M = 6371008.8

LatLng = Tuple[float, float]


def haversine_m(start: LatLng, end: LatLng) -> float:
    """
    Compute the great-circle distance between two (lat, lng) coordinates in metres.
    """
    lat1, lng1 = map(math.radians, start)
    lat2, lng2 = map(math.radians, end)
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def densify(points: Sequence[LatLng], spacing_m: float) -> List[LatLng]:
    """
    Insert interpolated vertices so that no two consecutive points are more
    than ``spacing_m`` apart. Original vertices are kept, so gaps next to them
    may be shorter than the spacing.
    """
    if spacing_m <= 0:
        raise ValueError("Densify spacing must be positive.")
    if len(points) < 2:
        return [tuple(point) for point in points]

    dense: List[LatLng] = [tuple(points[0])]
    for start, end in zip(points[:-1], points[1:]):
        distance = haversine_m(start, end)
        steps = max(int(math.ceil(distance / spacing_m)), 1)
        if steps > 1:
            segment = LineString([start, end])
            for step in range(1, steps):
                inserted = segment.interpolate(step / steps, normalized=True)
                dense.append((inserted.x, inserted.y))
        dense.append(tuple(end))
    return dense


def merge_paths(paths: Iterable[Sequence[Sequence[float]]]) -> List[List[float]]:
    """Reduce a multi-path polyline into one continuous path."""
    merged: List[List[float]] = []
    for path in paths:
        merged.extend(list(vertex) for vertex in path)
    return merged


def paths_to_points(paths: Iterable[Sequence[Sequence[float]]]) -> List[LatLng]:
    # Feature service vertices are [x, y] == [lng, lat].
    return [(float(vertex[1]), float(vertex[0])) for vertex in merge_paths(paths)]


def points_to_path(points: Iterable[LatLng]) -> List[List[float]]:
    return [[lng, lat] for lat, lng in points]


def buffer_rings(lat: float, lng: float, radius_m: float, resolution: int = 16) -> List[List[List[float]]]:
    """
    Approximate a circle of ``radius_m`` metres around a point as polygon rings
    in [lng, lat] order, suitable for a feature-service polygon geometry.
    """
    metres_per_deg_lat = math.pi * EARTH_RADIUS_M / 180.0
    metres_per_deg_lng = metres_per_deg_lat * max(math.cos(math.radians(lat)), 1e-6)

    circle = Point(0.0, 0.0).buffer(radius_m, resolution)
    scaled = affinity.scale(
        circle,
        xfact=1.0 / metres_per_deg_lng,
        yfact=1.0 / metres_per_deg_lat,
        origin=(0.0, 0.0),
    )
    zone = affinity.translate(scaled, xoff=lng, yoff=lat)
    return [[[x, y] for x, y in zone.exterior.coords]]
