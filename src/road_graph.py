"""
road_graph.py

This module provides the `RoadGraph` class, an extension of `networkx.DiGraph`,
representing the road network the dispatch simulation drives on. Nodes are
intersections and directed edges are road segments carrying capacity and
live occupancy.

Classes:
    - RoadType: Road classification used for routing cost factors.
    - IntersectionType: Kind of intersection at a node.
    - TurnRestrictions: Turn classes allowed when entering a segment.
    - RoadNode: Intersection payload stored on each graph node.
    - RoadSegment: Directed road payload stored on each graph edge.
    - RoadGraph: The road network.

Functions:
    - create_sample_network: Builds the synthetic grid city used by the engine.

Dependencies:
    - networkx: Graph storage and adjacency queries.
    - geometry: Position type and distance functions.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

import networkx as nx

from geometry import LatLng, euclidean_distance, haversine_km

logger = logging.getLogger(__name__)


class RoadType(Enum):
    HIGHWAY = "highway"
    MAIN_STREET = "main-street"
    RESIDENTIAL = "residential"
    SMALL_STREET = "small-street"


class IntersectionType(Enum):
    FOUR_WAY = "four-way"
    THREE_WAY = "three-way"
    ROUNDABOUT = "roundabout"
    TRAFFIC_LIGHT = "traffic-light"
    STOP_SIGN = "stop-sign"


@dataclass(frozen=True)
class TurnRestrictions:
    """Turn classes a vehicle may use to enter the segment carrying these flags."""

    allow_left: bool = True
    allow_right: bool = True
    allow_straight: bool = True
    allow_u_turn: bool = False


@dataclass
class RoadNode:
    """An intersection.

    Attributes:
        id (str): Unique node id.
        position (LatLng): Location of the intersection.
        type (IntersectionType): Intersection kind.
        incoming_edges (list[str]): Ids of segments ending here.
        outgoing_edges (list[str]): Ids of segments starting here.
        traffic_light_id (str | None): Id of the light controlling this node.
    """

    id: str
    position: LatLng
    type: IntersectionType = IntersectionType.FOUR_WAY
    incoming_edges: list[str] = field(default_factory=list)
    outgoing_edges: list[str] = field(default_factory=list)
    traffic_light_id: str | None = None


@dataclass
class RoadSegment:
    """A directed road between two intersections.

    Attributes:
        id (str): Unique segment id.
        from_node_id (str): Id of the start intersection.
        to_node_id (str): Id of the end intersection.
        distance (float): Length in degree units. Must be positive.
        road_type (RoadType): Road classification.
        speed_limit (float): Degree units per second.
        lanes (int): Number of lanes.
        occupancy (int): Vehicles currently assigned to the segment.
        max_capacity (int): Vehicles at which the segment counts as full.
        turn_restrictions (TurnRestrictions): Turns allowed into this segment.
    """

    id: str
    from_node_id: str
    to_node_id: str
    distance: float
    road_type: RoadType = RoadType.RESIDENTIAL
    speed_limit: float = 0.00005
    lanes: int = 2
    occupancy: int = 0
    max_capacity: int = 4
    turn_restrictions: TurnRestrictions = field(default_factory=TurnRestrictions)

    def __post_init__(self):
        if self.distance <= 0:
            raise ValueError(
                f"Segment {self.id} must have a positive distance, got {self.distance}"
            )


class RoadGraph(nx.DiGraph):
    """Represents the road network as a directed graph.

    Each graph node stores its `RoadNode` under the `node` attribute and each
    edge stores its `RoadSegment` under the `segment` attribute. A segment-id
    index allows O(1) lookup by id, and a rounded position index allows exact
    position lookups.

    Topology is fixed once the network is built; only segment occupancy
    changes at runtime.

    Attributes:
        segments (dict[str, RoadSegment]): Segment lookup by id.
        nodes_by_position (dict[str, str]): Rounded position key -> node id.

    Methods:
        add_road_node(node): Add an intersection.
        add_segment(segment): Add a directed road segment.
        get_node(node_id): Return the `RoadNode` for an id, or None.
        get_segment(segment_id): Return the `RoadSegment` for an id, or None.
        get_nearest_node(position, max_distance_km): Nearest node within a radius.
        get_outgoing_segments(node_id): Segments leaving a node.
        get_incoming_segments(node_id): Segments entering a node.
        update_segment_occupancy(segment_id, vehicle_count): Set occupancy.
        get_segment_density(segment_id): Occupancy ratio clamped to [0, 1].
    """

    def __init__(self, incoming_graph_data=None, **attr):
        super().__init__(incoming_graph_data, **attr)
        self.segments: dict[str, RoadSegment] = {}
        self.nodes_by_position: dict[str, str] = {}

    @staticmethod
    def position_key(position: LatLng) -> str:
        return f"{round(position[0] * 10000)},{round(position[1] * 10000)}"

    def add_road_node(self, node: RoadNode) -> None:
        self.add_node(node.id, node=node)
        self.nodes_by_position[self.position_key(node.position)] = node.id

    def add_segment(self, segment: RoadSegment) -> None:
        """Adds a directed segment between two existing intersections.

        Args:
            segment (RoadSegment): The segment to add.

        Raises:
            KeyError: If either endpoint is not a node of the graph.
        """
        from_node = self.get_node(segment.from_node_id)
        to_node = self.get_node(segment.to_node_id)
        if from_node is None or to_node is None:
            raise KeyError(
                f"Segment {segment.id} references unknown node "
                f"{segment.from_node_id if from_node is None else segment.to_node_id}"
            )

        self.add_edge(segment.from_node_id, segment.to_node_id, segment=segment)
        self.segments[segment.id] = segment

        if segment.id not in from_node.outgoing_edges:
            from_node.outgoing_edges.append(segment.id)
        if segment.id not in to_node.incoming_edges:
            to_node.incoming_edges.append(segment.id)

    def get_node(self, node_id: str) -> RoadNode | None:
        if node_id not in self:
            return None
        return self.nodes[node_id]["node"]

    def get_segment(self, segment_id: str) -> RoadSegment | None:
        return self.segments.get(segment_id)

    def get_segment_between(self, from_node_id: str, to_node_id: str) -> RoadSegment | None:
        if not self.has_edge(from_node_id, to_node_id):
            return None
        return self[from_node_id][to_node_id]["segment"]

    def get_node_at(self, position: LatLng) -> RoadNode | None:
        node_id = self.nodes_by_position.get(self.position_key(position))
        return self.get_node(node_id) if node_id else None

    def get_road_nodes(self) -> list[RoadNode]:
        return [data["node"] for _, data in self.nodes(data=True)]

    def get_segments(self) -> list[RoadSegment]:
        return list(self.segments.values())

    def get_nearest_node(
        self, position: LatLng, max_distance_km: float = 1.0
    ) -> RoadNode | None:
        """Finds the intersection closest to a position.

        Performs a linear scan with the haversine distance.

        Args:
            position (LatLng): The query position.
            max_distance_km (float, optional): Search radius in kilometres.

        Returns:
            RoadNode | None: The nearest node strictly inside the radius, or None
                             when nothing is close enough. Callers treat None as
                             "cannot route".
        """
        nearest = None
        nearest_distance = max_distance_km
        for node in self.get_road_nodes():
            distance = haversine_km(position, node.position)
            if distance < nearest_distance:
                nearest_distance = distance
                nearest = node
        return nearest

    def get_outgoing_segments(self, node_id: str) -> list[RoadSegment]:
        if node_id not in self:
            return []
        return [data["segment"] for _, _, data in self.out_edges(node_id, data=True)]

    def get_incoming_segments(self, node_id: str) -> list[RoadSegment]:
        if node_id not in self:
            return []
        return [data["segment"] for _, _, data in self.in_edges(node_id, data=True)]

    def update_segment_occupancy(self, segment_id: str, vehicle_count: int) -> None:
        segment = self.segments.get(segment_id)
        if segment is not None:
            segment.occupancy = vehicle_count

    def get_segment_density(self, segment_id: str) -> float:
        """Returns `occupancy / max_capacity` clamped to [0, 1].

        Unknown segments and segments without capacity report 0.
        """
        segment = self.segments.get(segment_id)
        if segment is None or segment.max_capacity == 0:
            return 0.0
        return min(1.0, max(0.0, segment.occupancy / segment.max_capacity))


def create_sample_network(
    grid_size: int = 5,
    spacing: float = 0.005,
    origin: LatLng = LatLng(59.915, 10.748),
) -> RoadGraph:
    """Builds a square grid city of signalled intersections.

    Nodes are named `node_<row>_<col>`; row grows northwards and column
    eastwards. Every neighbouring pair is joined in both directions. Rows and
    columns 0 and `grid_size - 2` are main streets, the rest residential.
    U-turns are forbidden everywhere.

    Args:
        grid_size (int, optional): Intersections per side. Defaults to 5.
        spacing (float, optional): Degrees between neighbours. Defaults to 0.005.
        origin (LatLng, optional): Position of `node_0_0`.

    Returns:
        RoadGraph: The populated network.
    """
    if grid_size < 2:
        raise ValueError(f"grid_size must be at least 2, got {grid_size}")

    graph = RoadGraph()
    for i in range(grid_size):
        for j in range(grid_size):
            graph.add_road_node(
                RoadNode(
                    id=f"node_{i}_{j}",
                    position=LatLng(origin[0] + i * spacing, origin[1] + j * spacing),
                    type=IntersectionType.TRAFFIC_LIGHT,
                )
            )

    restrictions = TurnRestrictions()
    edge_id = 0

    def connect(current_id: str, neighbour_id: str, index: int) -> None:
        nonlocal edge_id
        main = index == 0 or index == grid_size - 2
        distance = euclidean_distance(
            graph.get_node(current_id).position, graph.get_node(neighbour_id).position
        )
        for from_id, to_id in ((current_id, neighbour_id), (neighbour_id, current_id)):
            graph.add_segment(
                RoadSegment(
                    id=f"edge_{edge_id}",
                    from_node_id=from_id,
                    to_node_id=to_id,
                    distance=distance,
                    road_type=RoadType.MAIN_STREET if main else RoadType.RESIDENTIAL,
                    speed_limit=0.00005,
                    lanes=3 if main else 2,
                    max_capacity=6 if main else 4,
                    turn_restrictions=restrictions,
                )
            )
            edge_id += 1

    for i in range(grid_size):
        for j in range(grid_size):
            if j < grid_size - 1:
                connect(f"node_{i}_{j}", f"node_{i}_{j + 1}", j)
            if i < grid_size - 1:
                connect(f"node_{i}_{j}", f"node_{i + 1}_{j}", i)

    logger.info(
        f"Built sample network: {graph.number_of_nodes()} nodes, {len(graph.segments)} segments"
    )
    return graph
