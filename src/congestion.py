"""
congestion.py

Congestion tracking and rerouting decisions for vehicles driving on a
`RoadGraph`.

`CongestionMonitor` counts the vehicles whose routes use each segment, keeps a
bounded occupancy history per segment and writes the latest count back into
the graph. `ReroutingEngine` uses those densities to decide when a vehicle's
route is bad enough to replace, and how to recover a vehicle that is stuck.

Classes:
    - CongestionLevel: Four-bucket density classification.
    - IncidentType: Kind of traffic incident.
    - TrafficIncident: A time-limited incident on a segment.
    - FlowReport: Summary produced by `CongestionMonitor.analyze_flow`.
    - CongestionMonitor: Occupancy history and congestion queries.
    - ReroutingEngine: Reroute decisions with per-vehicle cooldown.

Dependencies:
    - collections.deque: Bounded occupancy history.
    - pathfinder: Alternative route search.
    - road_graph: Occupancy storage and density.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Iterable

from geometry import haversine_km, nearest_index, polyline_length
from pathfinder import Pathfinder, Route
from road_graph import RoadGraph, RoadSegment

logger = logging.getLogger(__name__)

HISTORY_LENGTH = 60
STUCK_SEARCH_RADIUS_KM = 0.5


class CongestionLevel(Enum):
    CLEAR = "clear"
    MODERATE = "moderate"
    HEAVY = "heavy"
    GRIDLOCK = "gridlock"

    @property
    def value_estimate(self) -> float:
        return {
            CongestionLevel.CLEAR: 0.1,
            CongestionLevel.MODERATE: 0.45,
            CongestionLevel.HEAVY: 0.725,
            CongestionLevel.GRIDLOCK: 0.925,
        }[self]

    @classmethod
    def from_density(cls, density: float) -> "CongestionLevel":
        if density < 0.3:
            return cls.CLEAR
        if density < 0.6:
            return cls.MODERATE
        if density < 0.85:
            return cls.HEAVY
        return cls.GRIDLOCK


class IncidentType(Enum):
    ACCIDENT = "accident"
    CONSTRUCTION = "construction"
    HAZARD = "hazard"
    CONGESTION = "congestion"


@dataclass(frozen=True)
class TrafficIncident:
    """An incident affecting one segment for a limited time.

    Attributes:
        id (str): Incident id.
        segment_id (str): Affected segment.
        type (IncidentType): Incident kind.
        severity (float): Severity in [0, 1].
        created_at (float): Clock reading when the incident was reported.
        duration (float): Seconds the incident stays active.
        affected_lanes (int): Lanes closed by the incident.
    """

    id: str
    segment_id: str
    type: IncidentType
    severity: float
    created_at: float
    duration: float
    affected_lanes: int = 1

    def is_active(self, now: float) -> bool:
        return now - self.created_at < self.duration


@dataclass
class FlowReport:
    overall_congestion: float
    critical_segments: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


class CongestionMonitor:
    """Tracks per-segment occupancy and derives congestion levels.

    Attributes:
        graph (RoadGraph): The network whose occupancy is maintained.
        history (dict[str, deque]): Occupancy samples per segment id, newest last.
        incidents (dict[str, TrafficIncident]): Known incidents by id.
        clock (Callable[[], float]): Time source for incident expiry, in seconds.
    """

    def __init__(
        self,
        graph: RoadGraph,
        history_length: int = HISTORY_LENGTH,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.graph = graph
        self.history_length = history_length
        self.history: dict[str, deque] = {}
        self.incidents: dict[str, TrafficIncident] = {}
        self.clock = clock

    def update_congestion(self, vehicles: Iterable) -> dict[str, int]:
        """Counts vehicles per segment from their routes and stores the counts.

        Every segment of the graph is updated, so a segment that emptied since
        the last update drops back to zero occupancy.

        Args:
            vehicles (Iterable): Objects exposing a `route` attribute (`Route` or None).

        Returns:
            dict[str, int]: The vehicle count of every segment with traffic.
        """
        counts: dict[str, int] = {}
        for vehicle in vehicles:
            route = getattr(vehicle, "route", None)
            if route is None:
                continue
            for segment_id in set(route.segment_ids):
                counts[segment_id] = counts.get(segment_id, 0) + 1

        for segment_id in self.graph.segments:
            count = counts.get(segment_id, 0)
            samples = self.history.setdefault(
                segment_id, deque(maxlen=self.history_length)
            )
            samples.append(count)
            self.graph.update_segment_occupancy(segment_id, count)

        return counts

    def get_history(self, segment_id: str) -> list[int]:
        return list(self.history.get(segment_id, ()))

    def get_congestion_level(self, segment_id: str) -> CongestionLevel:
        return CongestionLevel.from_density(self.graph.get_segment_density(segment_id))

    def predict_congestion(self, route: Route) -> float:
        """Mean congestion estimate over the route's segments, 0 for non-graph routes."""
        if not route.segment_ids:
            return 0.0
        total = sum(
            self.get_congestion_level(segment_id).value_estimate
            for segment_id in route.segment_ids
        )
        return total / len(route.segment_ids)

    def add_incident(self, incident: TrafficIncident) -> None:
        self.incidents[incident.id] = incident
        logger.info(
            f"Incident {incident.id} ({incident.type.value}) on segment {incident.segment_id}"
        )

    def resolve_incident(self, incident_id: str) -> None:
        self.incidents.pop(incident_id, None)

    def clean_expired_incidents(self) -> int:
        now = self.clock()
        expired = [i.id for i in self.incidents.values() if not i.is_active(now)]
        for incident_id in expired:
            del self.incidents[incident_id]
        return len(expired)

    def get_segment_incidents(self, segment_id: str) -> list[TrafficIncident]:
        now = self.clock()
        return [
            incident
            for incident in self.incidents.values()
            if incident.segment_id == segment_id and incident.is_active(now)
        ]

    def get_blocked_segments(self) -> list[RoadSegment]:
        now = self.clock()
        blocked = []
        for incident in self.incidents.values():
            segment = self.graph.get_segment(incident.segment_id)
            if incident.is_active(now) and segment is not None:
                blocked.append(segment)
        return blocked

    def get_network_congestion(self) -> float:
        segment_ids = list(self.graph.segments)
        if not segment_ids:
            return 0.0
        return sum(self.graph.get_segment_density(s) for s in segment_ids) / len(
            segment_ids
        )

    def count_gridlocked(self) -> int:
        return sum(
            1
            for segment_id in self.graph.segments
            if self.get_congestion_level(segment_id) == CongestionLevel.GRIDLOCK
        )

    def analyze_flow(self) -> FlowReport:
        """Summarises network state into a report with plain-text recommendations."""
        report = FlowReport(
            overall_congestion=self.get_network_congestion(),
            critical_segments=[s.id for s in self.get_blocked_segments()],
        )
        if report.overall_congestion > 0.8:
            report.recommendations.append(
                "Network approaching gridlock - consider activating traffic management"
            )
        elif report.overall_congestion > 0.6:
            report.recommendations.append(
                "Heavy traffic detected - consider dynamic signal timing"
            )
        if len(report.critical_segments) > 3:
            report.recommendations.append(
                "Multiple blocked segments - consider alternative routes"
            )
        return report


class ReroutingEngine:
    """Decides when a vehicle's route should be replaced.

    A vehicle is considered at most once per `min_reroute_interval` seconds:
    a positive `should_reroute` answer, an accepted alternative and a stuck
    recovery all start a new cooldown window for that vehicle.

    Attributes:
        pathfinder (Pathfinder): Search used for alternatives.
        monitor (CongestionMonitor): Source of congestion estimates.
        reroute_threshold (float): Predicted congestion above which to reroute.
        min_reroute_interval (float): Cooldown per vehicle, in seconds.
        last_reroute (dict): Vehicle id -> clock reading of its last reroute.
    """

    def __init__(
        self,
        pathfinder: Pathfinder,
        monitor: CongestionMonitor,
        reroute_threshold: float = 0.7,
        min_reroute_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pathfinder = pathfinder
        self.monitor = monitor
        self.reroute_threshold = 0.0
        self.set_reroute_threshold(reroute_threshold)
        self.min_reroute_interval = min_reroute_interval
        self.clock = clock
        self.last_reroute: dict = {}

    def set_reroute_threshold(self, threshold: float) -> None:
        self.reroute_threshold = max(0.0, min(1.0, threshold))

    def _in_cooldown(self, vehicle_id, now: float) -> bool:
        last = self.last_reroute.get(vehicle_id)
        return last is not None and now - last < self.min_reroute_interval

    def should_reroute(self, vehicle_id, route: Route | None) -> bool:
        """Checks whether a route is congested enough to replace.

        Args:
            vehicle_id: Id of the vehicle driving the route.
            route (Route | None): The vehicle's current route.

        Returns:
            bool: True when the vehicle is outside its cooldown and either the
                  predicted congestion exceeds the threshold or the third
                  segment ahead is gridlocked.
        """
        if route is None or not route.segment_ids:
            return False

        now = self.clock()
        if self._in_cooldown(vehicle_id, now):
            return False

        trigger = self.monitor.predict_congestion(route) > self.reroute_threshold
        if not trigger:
            ahead = route.segment_ids[min(2, len(route.segment_ids) - 1)]
            trigger = (
                self.monitor.get_congestion_level(ahead) == CongestionLevel.GRIDLOCK
            )

        if trigger:
            self.last_reroute[vehicle_id] = now
            logger.debug(f"Vehicle {vehicle_id} flagged for reroute")
        return trigger

    def remaining_route(self, route: Route, position) -> Route:
        """The part of a graph route still ahead of `position`.

        The vehicle is placed at the route node closest to it. Non-graph
        routes are cut at the nearest waypoint instead.
        """
        graph = self.pathfinder.graph
        if not route.node_ids:
            index = nearest_index(route.waypoints, position)
            waypoints = route.waypoints[index:]
            return replace(route, waypoints=waypoints, distance=polyline_length(waypoints))

        positions = [graph.get_node(node_id).position for node_id in route.node_ids]
        index = nearest_index(positions, position)
        segment_ids = route.segment_ids[index:]
        return replace(
            route,
            waypoints=tuple(positions[index:]),
            node_ids=route.node_ids[index:],
            segment_ids=segment_ids,
            distance=sum(graph.get_segment(s).distance for s in segment_ids),
        )

    def calculate_alternative_route(
        self, vehicle_id, position, current_route: Route, is_emergency: bool = False
    ) -> Route | None:
        """Searches for a materially better route to the same destination.

        The candidate is measured against what is left of the current route,
        so the unchanged tail of that route never qualifies.

        Returns:
            Route | None: The alternative when it has at least 20% lower
                          predicted congestion or is at least 10% shorter
                          than the remaining route, otherwise None.
        """
        if not current_route.waypoints:
            return None

        candidate = self.pathfinder.find_path(position, current_route.end, is_emergency)
        if candidate is None or len(candidate.waypoints) < 2:
            return None

        remaining = self.remaining_route(current_route, position)
        old_congestion = self.monitor.predict_congestion(remaining)
        new_congestion = self.monitor.predict_congestion(candidate)
        if (
            new_congestion < old_congestion * 0.8
            or candidate.distance < remaining.distance * 0.9
        ):
            self.last_reroute[vehicle_id] = self.clock()
            return candidate
        return None

    def _route_to_nearby_node(self, position, is_emergency: bool) -> Route | None:
        """Routes to the closest intersection, other than the one the vehicle
        is on, that can be reached from it."""
        graph = self.pathfinder.graph
        here = graph.get_nearest_node(position, STUCK_SEARCH_RADIUS_KM)
        if here is None:
            return None
        neighbours = sorted(
            (node for node in graph.get_road_nodes() if node.id != here.id),
            key=lambda node: haversine_km(position, node.position),
        )
        for node in neighbours:
            if haversine_km(position, node.position) >= STUCK_SEARCH_RADIUS_KM:
                break
            route = self.pathfinder.find_path_between_nodes(here.id, node.id, is_emergency)
            if route is not None and len(route.waypoints) >= 2:
                return route
        return None

    def handle_stuck_vehicle(
        self, vehicle_id, position, current_route: Route | None, is_emergency: bool = False
    ) -> Route | None:
        """Recovers a vehicle that has stopped making progress.

        First forces a fresh search from the live position to the route's
        destination. If that fails, routes to the nearest reachable
        intersection instead. Routes with fewer than two waypoints are never
        returned.
        """
        if current_route is None or not current_route.waypoints:
            return None

        route = self.pathfinder.find_path(position, current_route.end, is_emergency)
        if route is None or len(route.waypoints) < 2:
            route = self._route_to_nearby_node(position, is_emergency)

        if route is None:
            logger.warning(f"No recovery route for stuck vehicle {vehicle_id}")
            return None
        self.last_reroute[vehicle_id] = self.clock()
        logger.info(f"Recovered stuck vehicle {vehicle_id}")
        return route

    def forget(self, vehicle_id) -> None:
        self.last_reroute.pop(vehicle_id, None)
