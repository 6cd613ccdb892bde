"""
pathfinder.py

A* search over a `RoadGraph`, supporting regular traffic and emergency
vehicles. Regular vehicles pay for congestion and obey turn restrictions;
emergency vehicles ignore both and use a more aggressive heuristic.

Classes:
    - RouteSource: Where a route's geometry came from.
    - Route: Immutable planned path.
    - Pathfinder: The A* implementation.

Dependencies:
    - heapq: Open set priority queue.
    - geometry: Turn classification and straight-line distance.
    - road_graph: The network being searched.
"""

import heapq
import itertools
import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from geometry import LatLng, TurnType, classify_turn, euclidean_distance
from road_graph import RoadGraph, RoadSegment, RoadType

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 1000
REROUTE_DENSITY = 0.8

ROAD_TYPE_FACTORS = {
    RoadType.MAIN_STREET: 1.0,
    RoadType.RESIDENTIAL: 1.1,
    RoadType.SMALL_STREET: 1.3,
}


class RouteSource(Enum):
    GRAPH = "graph"
    NETWORK = "network"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Route:
    """A planned path. Routes are replaced wholesale, never edited in place.

    Attributes:
        waypoints (tuple[LatLng, ...]): Ordered positions to drive through.
        node_ids (tuple[str, ...]): Graph nodes visited, empty for non-graph routes.
        segment_ids (tuple[str, ...]): Graph segments used, empty for non-graph routes.
        distance (float): Total length in degree units.
        is_emergency (bool): Whether the route was planned in emergency mode.
        source (RouteSource): Origin of the geometry.
    """

    waypoints: tuple[LatLng, ...]
    node_ids: tuple[str, ...] = field(default_factory=tuple)
    segment_ids: tuple[str, ...] = field(default_factory=tuple)
    distance: float = 0.0
    is_emergency: bool = False
    source: RouteSource = RouteSource.GRAPH

    def __len__(self) -> int:
        return len(self.waypoints)

    @property
    def start(self) -> LatLng:
        return self.waypoints[0]

    @property
    def end(self) -> LatLng:
        return self.waypoints[-1]

    def with_endpoints(self, start: LatLng, end: LatLng) -> "Route":
        """Returns a copy that begins at `start` and ends at `end`.

        Used to join a snapped graph route to the exact requested positions.
        Endpoints already present are not duplicated.
        """
        waypoints = list(self.waypoints)
        distance = self.distance
        start, end = LatLng(*start), LatLng(*end)
        if waypoints[0] != start:
            distance += euclidean_distance(start, waypoints[0])
            waypoints.insert(0, start)
        if waypoints[-1] != end:
            distance += euclidean_distance(waypoints[-1], end)
            waypoints.append(end)
        return replace(self, waypoints=tuple(waypoints), distance=distance)


class Pathfinder:
    """A* pathfinder for the road network.

    Search states are `(node, arrival segment)` pairs, so a node reached by a
    turn that is illegal onward can still be reached through another approach.

    Attributes:
        graph (RoadGraph): The network to search.
        max_iterations (int): Expansions before the search gives up.
        snap_radius_km (float): Radius for snapping positions onto nodes.
    """

    def __init__(
        self,
        graph: RoadGraph,
        max_iterations: int = MAX_ITERATIONS,
        snap_radius_km: float = 1.0,
    ):
        self.graph = graph
        self.max_iterations = max_iterations
        self.snap_radius_km = snap_radius_km

    def find_path(
        self, start: LatLng, goal: LatLng, is_emergency: bool = False
    ) -> Route | None:
        """Snaps both positions onto the network and searches between them.

        Args:
            start (LatLng): Origin position.
            goal (LatLng): Destination position.
            is_emergency (bool, optional): Plan in emergency mode.

        Returns:
            Route | None: The route between the snapped nodes, or None when
                          either endpoint cannot be snapped or no path exists.
        """
        start_node = self.graph.get_nearest_node(start, self.snap_radius_km)
        goal_node = self.graph.get_nearest_node(goal, self.snap_radius_km)
        if start_node is None or goal_node is None:
            logger.warning("Could not snap to road network")
            return None
        return self.find_path_between_nodes(start_node.id, goal_node.id, is_emergency)

    def find_path_between_nodes(
        self, start_node_id: str, goal_node_id: str, is_emergency: bool = False
    ) -> Route | None:
        start_node = self.graph.get_node(start_node_id)
        goal_node = self.graph.get_node(goal_node_id)
        if start_node is None or goal_node is None:
            return None

        if start_node_id == goal_node_id:
            return Route(
                waypoints=(start_node.position,),
                node_ids=(start_node_id,),
                distance=0.0,
                is_emergency=is_emergency,
            )

        counter = itertools.count()
        start_state = (start_node_id, None)
        g_costs = {start_state: 0.0}
        parents: dict[tuple, tuple | None] = {start_state: None}
        open_set = [
            (
                self.heuristic(start_node.position, goal_node.position, is_emergency),
                next(counter),
                start_state,
            )
        ]
        closed = set()
        iterations = 0

        while open_set and iterations < self.max_iterations:
            _, _, state = heapq.heappop(open_set)
            if state in closed:
                continue
            iterations += 1

            node_id, via_segment_id = state
            if node_id == goal_node_id:
                return self._reconstruct(state, parents, is_emergency)
            closed.add(state)

            previous = self.graph.get_segment(via_segment_id) if via_segment_id else None
            for segment in self.graph.get_outgoing_segments(node_id):
                next_state = (segment.to_node_id, segment.id)
                if next_state in closed:
                    continue
                if not self.is_valid_turn(previous, segment, is_emergency):
                    continue

                g_cost = g_costs[state] + self.segment_cost(segment, is_emergency)
                if g_cost < g_costs.get(next_state, float("inf")):
                    g_costs[next_state] = g_cost
                    parents[next_state] = state
                    neighbour = self.graph.get_node(segment.to_node_id)
                    f_cost = g_cost + self.heuristic(
                        neighbour.position, goal_node.position, is_emergency
                    )
                    heapq.heappush(open_set, (f_cost, next(counter), next_state))

        logger.warning(
            f"No path found from {start_node_id} to {goal_node_id} after {iterations} iterations"
        )
        return None

    @staticmethod
    def heuristic(position: LatLng, goal: LatLng, is_emergency: bool) -> float:
        distance = euclidean_distance(position, goal)
        return distance * 0.8 if is_emergency else distance

    def segment_cost(self, segment: RoadSegment, is_emergency: bool) -> float:
        cost = segment.distance / max(0.00001, segment.speed_limit)

        if not is_emergency:
            cost *= 1 + self.graph.get_segment_density(segment.id) * 3

        if segment.road_type == RoadType.HIGHWAY:
            cost *= 0.7 if is_emergency else 0.9
        else:
            cost *= ROAD_TYPE_FACTORS[segment.road_type]
        return cost

    def is_valid_turn(
        self,
        previous: RoadSegment | None,
        candidate: RoadSegment,
        is_emergency: bool,
    ) -> bool:
        """Checks the turn from `previous` onto `candidate` against its restrictions.

        The first move out of the start node and every move of an emergency
        vehicle are always allowed.
        """
        if is_emergency or previous is None:
            return True

        turn = classify_turn(
            self.graph.get_node(previous.from_node_id).position,
            self.graph.get_node(previous.to_node_id).position,
            self.graph.get_node(candidate.to_node_id).position,
        )
        restrictions = candidate.turn_restrictions
        if turn == TurnType.U_TURN:
            return restrictions.allow_u_turn
        if turn == TurnType.LEFT:
            return restrictions.allow_left
        if turn == TurnType.RIGHT:
            return restrictions.allow_right
        return restrictions.allow_straight

    def _reconstruct(self, state: tuple, parents: dict, is_emergency: bool) -> Route:
        node_ids = []
        segment_ids = []
        distance = 0.0

        while state is not None:
            node_id, via_segment_id = state
            node_ids.append(node_id)
            if via_segment_id is not None:
                segment_ids.append(via_segment_id)
                distance += self.graph.get_segment(via_segment_id).distance
            state = parents[state]

        node_ids.reverse()
        segment_ids.reverse()
        return Route(
            waypoints=tuple(self.graph.get_node(n).position for n in node_ids),
            node_ids=tuple(node_ids),
            segment_ids=tuple(segment_ids),
            distance=distance,
            is_emergency=is_emergency,
        )

    def recalculate_path(
        self,
        current_route: Route,
        current_position: LatLng,
        goal: LatLng,
        is_emergency: bool = False,
    ) -> Route:
        """Replans only when a segment of the current route is badly congested.

        Returns:
            Route: A new route when any segment has density above 0.8 and a
                   replacement was found, otherwise `current_route` itself.
        """
        congested = any(
            self.graph.get_segment_density(segment_id) > REROUTE_DENSITY
            for segment_id in current_route.segment_ids
        )
        if not congested:
            return current_route

        new_route = self.find_path(current_position, goal, is_emergency)
        return new_route if new_route is not None else current_route
