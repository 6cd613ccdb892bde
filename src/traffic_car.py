"""
traffic_car.py

This module defines the `TrafficCarAgent` class, an ambient (non-player) car
that drives random trips over the road graph. Traffic cars obey traffic
lights and turn restrictions, replan around heavy congestion at every
intersection and ask the rerouting engine for help when they are stuck.
Their routes feed the congestion monitor, and their positions determine the
ambient traffic density that slows dispatch vehicles.

Classes:
    - TrafficCarAgent: An ambient car.
"""

import logging

import mesa

from geometry import LatLng, point_at
from pathfinder import Route
from traffic_light import direction_of

logger = logging.getLogger(__name__)

STUCK_AFTER_MS = 90_000


class TrafficCarAgent(mesa.Agent):
    """An ambient car on the road graph.

    The car is always either at the node `route.node_ids[node_index]`
    (`progress == 0`) or on the segment leaving it.

    Attributes:
        route (Route | None): Current graph route.
        node_index (int): Index of the last node passed.
        progress (float): Fraction of the current segment driven, in [0, 1).
        position (LatLng): Current position.
        waited_ms (float): Real time spent waiting without moving.
        trips (int): Completed trips.
    """

    def __init__(self, model: mesa.Model, start_node_id: str):
        super().__init__(model)
        node = model.graph.get_node(start_node_id)
        self.position: LatLng = node.position
        self.route: Route | None = None
        self.node_index = 0
        self.progress = 0.0
        self.waited_ms = 0.0
        self.trips = 0
        self.plan_trip(start_node_id)

    @property
    def is_emergency(self) -> bool:
        return False

    @property
    def current_node_id(self) -> str | None:
        if self.route is None:
            return None
        return self.route.node_ids[self.node_index]

    def plan_trip(self, from_node_id: str) -> None:
        """Picks a random destination and routes to it; None if unreachable."""
        candidates = [n for n in self.model.graph.nodes if n != from_node_id]
        goal = self.model.random.choice(candidates)
        self.route = self.model.pathfinder.find_path_between_nodes(from_node_id, goal)
        self.node_index = 0
        self.progress = 0.0
        self.waited_ms = 0.0

    def step(self) -> None:
        if self.route is None or self.node_index >= len(self.route.node_ids) - 1:
            if self.route is not None:
                self.trips += 1
            node = self.model.graph.get_nearest_node(self.position)
            if node is not None:
                self.plan_trip(node.id)
            return

        if self.progress == 0.0 and not self._may_enter_segment():
            self.waited_ms += self.model.real_delta_ms
            if self.waited_ms >= STUCK_AFTER_MS:
                self._recover()
            return

        self.waited_ms = 0.0
        self.drive(self.model.real_delta_ms / 1000 * self.model.game_speed)

    def _may_enter_segment(self) -> bool:
        node_id = self.route.node_ids[self.node_index]
        next_node = self.model.graph.get_node(self.route.node_ids[self.node_index + 1])
        direction = direction_of(self.position, next_node.position)
        return self.model.lights.can_proceed(node_id, direction)

    def drive(self, seconds: float) -> None:
        segment = self.model.graph.get_segment(self.route.segment_ids[self.node_index])
        self.progress += segment.speed_limit * seconds / segment.distance

        if self.progress >= 1.0:
            self.node_index += 1
            self.progress = 0.0
            self.position = self.route.waypoints[self.node_index]
            self._replan_at_intersection()
        else:
            self.position = point_at(self.route.waypoints, self.node_index + self.progress)

    def _replan_at_intersection(self) -> None:
        if self.node_index >= len(self.route.node_ids) - 1:
            return
        remaining = Route(
            waypoints=self.route.waypoints[self.node_index:],
            node_ids=self.route.node_ids[self.node_index:],
            segment_ids=self.route.segment_ids[self.node_index:],
            distance=sum(
                self.model.graph.get_segment(s).distance
                for s in self.route.segment_ids[self.node_index:]
            ),
        )
        replanned = self.model.pathfinder.recalculate_path(
            remaining, self.position, self.route.end
        )
        if replanned is not remaining and len(replanned.node_ids) > 1:
            logger.debug(f"Traffic car {self.unique_id} replanned around congestion")
            self.route = replanned
            self.node_index = 0

    def _recover(self) -> None:
        route = self.model.rerouting.handle_stuck_vehicle(
            self.unique_id, self.position, self.route
        )
        self.waited_ms = 0.0
        if route is not None and len(route.node_ids) > 1:
            self.route = route
            self.node_index = 0
            self.progress = 0.0
