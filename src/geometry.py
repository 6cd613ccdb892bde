"""
geometry.py

Shared coordinate math for the dispatch simulation. Positions are plain
`(lat, lng)` pairs in degrees; distances on the synthetic road network are
measured in degree units, while radius queries use the haversine distance in
kilometres.

Classes:
    - LatLng: Immutable latitude/longitude pair.
    - TurnType: Classification of the turn between two consecutive road segments.

Functions:
    - haversine_km, euclidean_distance, polyline_length
    - classify_turn, turn_angle
    - bezier_route, nearest_index, point_at

Dependencies:
    - numpy: Vectorised distance scans and curve sampling.
"""

import math
from enum import Enum
from typing import NamedTuple, Sequence

import numpy as np

EARTH_RADIUS_KM = 6371.0


class LatLng(NamedTuple):
    """A position on the map in decimal degrees."""

    lat: float
    lng: float


class TurnType(Enum):
    STRAIGHT = "straight"
    LEFT = "left"
    RIGHT = "right"
    U_TURN = "u-turn"


def haversine_km(a: Sequence[float], b: Sequence[float]) -> float:
    """Great-circle distance between two positions in kilometres."""
    lat1, lng1 = math.radians(a[0]), math.radians(a[1])
    lat2, lng2 = math.radians(b[0]), math.radians(b[1])
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Straight-line distance in degree units."""
    return math.hypot(b[0] - a[0], b[1] - a[1])


def polyline_length(points: Sequence[Sequence[float]]) -> float:
    if len(points) < 2:
        return 0.0
    arr = np.asarray(points, dtype=float)
    return float(np.linalg.norm(np.diff(arr, axis=0), axis=1).sum())


def _unit(vector: np.ndarray) -> np.ndarray | None:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return None
    return vector / norm


def classify_turn(
    previous_from: Sequence[float],
    previous_to: Sequence[float],
    next_to: Sequence[float],
) -> TurnType:
    """Classifies the turn made at `previous_to` when continuing to `next_to`.

    Both direction vectors are normalised and expressed as (east, north), so
    the thresholds are independent of segment length. A positive cross product
    is a counter-clockwise (left) turn.

    Args:
        previous_from (Sequence[float]): Start of the segment the vehicle arrived on.
        previous_to (Sequence[float]): The intersection where the turn happens.
        next_to (Sequence[float]): End of the candidate outgoing segment.

    Returns:
        TurnType: The turn class. Degenerate (zero-length) vectors count as straight.
    """
    prev_dir = _unit(
        np.array(
            [previous_to[1] - previous_from[1], previous_to[0] - previous_from[0]],
            dtype=float,
        )
    )
    next_dir = _unit(
        np.array(
            [next_to[1] - previous_to[1], next_to[0] - previous_to[0]], dtype=float
        )
    )
    if prev_dir is None or next_dir is None:
        return TurnType.STRAIGHT

    cross = prev_dir[0] * next_dir[1] - prev_dir[1] * next_dir[0]
    dot = float(np.dot(prev_dir, next_dir))

    if dot < -0.99:
        return TurnType.U_TURN
    if cross > 0.1:
        return TurnType.LEFT
    if cross < -0.1:
        return TurnType.RIGHT
    return TurnType.STRAIGHT


def turn_angle(
    a: Sequence[float], b: Sequence[float], c: Sequence[float]
) -> float:
    """Absolute heading change in radians at `b` along the path a -> b -> c."""
    heading_in = math.atan2(b[0] - a[0], b[1] - a[1])
    heading_out = math.atan2(c[0] - b[0], c[1] - b[1])
    diff = abs(heading_out - heading_in)
    if diff > math.pi:
        diff = 2 * math.pi - diff
    return diff


def bezier_route(
    start: Sequence[float],
    end: Sequence[float],
    steps: int = 24,
    curvature: float = 0.015,
) -> list[LatLng]:
    """Samples a quadratic Bézier curve between two positions.

    The control point sits on the perpendicular bisector of the chord at
    `curvature * chord_length` from the midpoint, so the curve bends the same
    way for the same inputs. The first and last samples are exactly `start`
    and `end`.

    Args:
        start (Sequence[float]): Route origin.
        end (Sequence[float]): Route destination.
        steps (int, optional): Number of segments; `steps + 1` points are returned.
        curvature (float, optional): Control point offset relative to chord length.

    Returns:
        list[LatLng]: The sampled curve.
    """
    p0 = np.array(start, dtype=float)
    p2 = np.array(end, dtype=float)
    chord = p2 - p0
    length = float(np.linalg.norm(chord)) or 0.001
    perpendicular = np.array([-chord[1], chord[0]]) / length
    control = (p0 + p2) / 2 + perpendicular * length * curvature

    t = np.linspace(0.0, 1.0, steps + 1)[:, None]
    curve = (1 - t) ** 2 * p0 + 2 * (1 - t) * t * control + t**2 * p2

    points = [LatLng(float(lat), float(lng)) for lat, lng in curve]
    points[0] = LatLng(float(start[0]), float(start[1]))
    points[-1] = LatLng(float(end[0]), float(end[1]))
    return points


def nearest_index(points: Sequence[Sequence[float]], position: Sequence[float]) -> int:
    """Index of the point closest to `position` by squared distance."""
    arr = np.asarray(points, dtype=float)
    deltas = arr - np.asarray(position, dtype=float)
    return int(np.argmin((deltas**2).sum(axis=1)))


def point_at(points: Sequence[Sequence[float]], cursor: float) -> LatLng:
    """Interpolates a position at a fractional index along a polyline."""
    last = len(points) - 1
    cursor = min(max(cursor, 0.0), float(last))
    index = int(math.floor(cursor))
    if index >= last:
        return LatLng(float(points[last][0]), float(points[last][1]))
    t = cursor - index
    a, b = points[index], points[index + 1]
    return LatLng(a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)
