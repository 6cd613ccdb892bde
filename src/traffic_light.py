"""
traffic_light.py

This module defines the `TrafficLightAgent` class, representing the signal at
a traffic-light intersection, and the `TrafficLightManager`, which creates the
agents for a road network and answers right-of-way queries.

A light runs a fixed cycle split into two halves: north-south traffic gets
green, yellow and red in the first half, east-west in the second. The phase
is derived purely from `(elapsed_time + offset) % cycle_time`.

Classes:
    - LightPhase: Red, yellow or green.
    - LightDirection: The two approach axes.
    - TrafficLightAgent: A single signal.
    - TrafficLightManager: All signals of a network.

Dependencies:
    - mesa: Lights are agents of the dispatch model.
    - road_graph: Intersections that get a light.
"""

import logging
from enum import Enum

import mesa

from geometry import LatLng
from road_graph import IntersectionType, RoadGraph

logger = logging.getLogger(__name__)

CYCLE_TIME_MS = 60_000
GREEN_MS = 25_000
YELLOW_MS = 3_000
RED_MS = 32_000
MAX_RANDOM_OFFSET_MS = 10_000


class LightPhase(Enum):
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class LightDirection(Enum):
    NS = "ns"
    EW = "ew"


def direction_of(origin: LatLng, target: LatLng) -> LightDirection:
    """Approach axis of a move from `origin` towards `target`."""
    if abs(target[0] - origin[0]) >= abs(target[1] - origin[1]):
        return LightDirection.NS
    return LightDirection.EW


class TrafficLightAgent(mesa.Agent):
    """A signal at one intersection.

    Exactly one direction is active at any time. The active direction has
    green, then yellow, then red for the remainder of its half-cycle; the
    other direction is red throughout.

    Attributes:
        intersection_id (str): Node id of the controlled intersection.
        light_id (str): Readable id, `light_<intersection_id>`.
        cycle_time (float): Total cycle length in ms.
        green_duration (float): Green time per half-cycle in ms.
        yellow_duration (float): Yellow time per half-cycle in ms.
        red_duration (float): Red time per direction and cycle in ms.
        offset (float): Phase offset in ms for coordination.
        elapsed_time (float): Time into the current cycle in ms.
        phase (LightPhase): Current phase of the active direction.
        direction (LightDirection): Currently active direction.
        emergency_override (bool): Set while an emergency vehicle is being let through.
        emergency_direction (LightDirection | None): Direction that requested the override.
    """

    def __init__(
        self,
        model: mesa.Model,
        intersection_id: str,
        offset: float = 0.0,
        cycle_time: float = CYCLE_TIME_MS,
        green_duration: float = GREEN_MS,
        yellow_duration: float = YELLOW_MS,
        red_duration: float = RED_MS,
    ):
        super().__init__(model)
        if green_duration + yellow_duration > cycle_time / 2:
            raise ValueError("Green and yellow must fit into half a cycle")

        self.intersection_id = intersection_id
        self.light_id = f"light_{intersection_id}"
        self.cycle_time = cycle_time
        self.green_duration = green_duration
        self.yellow_duration = yellow_duration
        self.red_duration = red_duration
        self.offset = offset
        self.elapsed_time = 0.0
        self.phase = LightPhase.RED
        self.direction = LightDirection.NS
        self.emergency_override = False
        self.emergency_direction: LightDirection | None = None
        self.refresh_phase()

    @property
    def half_cycle(self) -> float:
        return self.cycle_time / 2

    @property
    def cycle_progress(self) -> float:
        return (self.elapsed_time + self.offset) % self.cycle_time

    def advance(self, delta_ms: float) -> None:
        """Advances the light by `delta_ms` of scaled time.

        Completing a cycle resets the elapsed time and clears any emergency
        override.
        """
        self.elapsed_time += delta_ms
        if self.elapsed_time >= self.cycle_time:
            self.elapsed_time = 0.0
            self.emergency_override = False
            self.emergency_direction = None
        self.refresh_phase()

    def refresh_phase(self) -> None:
        progress = self.cycle_progress
        if progress < self.half_cycle:
            self.direction = LightDirection.NS
        else:
            self.direction = LightDirection.EW
            progress -= self.half_cycle

        if progress < self.green_duration:
            self.phase = LightPhase.GREEN
        elif progress < self.green_duration + self.yellow_duration:
            self.phase = LightPhase.YELLOW
        else:
            self.phase = LightPhase.RED

    def can_proceed(self, direction: LightDirection) -> bool:
        return self.direction == direction and self.phase in (
            LightPhase.GREEN,
            LightPhase.YELLOW,
        )

    def signal_emergency(self, direction: LightDirection) -> None:
        """Preempts the light for an emergency vehicle approaching on `direction`.

        If traffic on `direction` may not proceed, the light jumps straight to
        the start of that direction's green.
        """
        self.emergency_override = True
        self.emergency_direction = direction
        if not self.can_proceed(direction):
            target = 0.0 if direction == LightDirection.NS else self.half_cycle
            self.elapsed_time = (target - self.offset) % self.cycle_time
            self.refresh_phase()
            logger.debug(f"{self.light_id} preempted for {direction.value}")

    def time_to_green(self, direction: LightDirection) -> float:
        """Unscaled ms until `direction` next turns green, 0 if it is green now."""
        if self.direction == direction and self.phase == LightPhase.GREEN:
            return 0.0
        target = 0.0 if direction == LightDirection.NS else self.half_cycle
        return (target - self.cycle_progress) % self.cycle_time

    def time_to_phase_change(self) -> float:
        """Unscaled ms until the current phase ends."""
        progress = self.cycle_progress % self.half_cycle
        for boundary in (
            self.green_duration,
            self.green_duration + self.yellow_duration,
            self.half_cycle,
        ):
            if progress < boundary:
                return boundary - progress
        return 0.0


class TrafficLightManager:
    """Creates and updates the traffic lights of a road network.

    Attributes:
        model (mesa.Model): Model the light agents belong to.
        lights (dict[str, TrafficLightAgent]): Lights by intersection id.
        time_scale (float): Multiplier applied to elapsed time, in [0.1, 10].

    Methods:
        create_lights(graph): One light per traffic-light intersection.
        update_all_lights(delta_ms): Advance every light.
        can_proceed(intersection_id, direction): Right-of-way query.
        signal_emergency(intersection_id, direction): Preempt a light.
    """

    def __init__(self, model: mesa.Model, time_scale: float = 1.0, **timings):
        self.model = model
        self.lights: dict[str, TrafficLightAgent] = {}
        self.timings = timings
        self.time_scale = 1.0
        self.set_time_scale(time_scale)

    def create_traffic_light(
        self, intersection_id: str, node_type: IntersectionType
    ) -> TrafficLightAgent | None:
        if node_type != IntersectionType.TRAFFIC_LIGHT:
            return None
        light = TrafficLightAgent(
            self.model,
            intersection_id=intersection_id,
            offset=self.model.random.random() * MAX_RANDOM_OFFSET_MS,
            **self.timings,
        )
        self.lights[intersection_id] = light
        return light

    def create_lights(self, graph: RoadGraph) -> list[TrafficLightAgent]:
        created = []
        for node in graph.get_road_nodes():
            light = self.create_traffic_light(node.id, node.type)
            if light is not None:
                node.traffic_light_id = light.light_id
                created.append(light)
        logger.info(f"Created {len(created)} traffic lights")
        return created

    def setup_coordinated_timing(self, grid_width: int) -> None:
        """Replaces random offsets with a green-wave pattern across grid columns."""
        for index, light in enumerate(self.lights.values()):
            light.offset = (index % grid_width) * 0.25 * light.cycle_time
            light.refresh_phase()

    def get_traffic_light(self, intersection_id: str) -> TrafficLightAgent | None:
        return self.lights.get(intersection_id)

    def get_all_lights(self) -> list[TrafficLightAgent]:
        return list(self.lights.values())

    def set_time_scale(self, scale: float) -> None:
        self.time_scale = max(0.1, min(10.0, scale))

    def update_all_lights(self, delta_ms: float) -> None:
        scaled = delta_ms * self.time_scale
        for light in self.lights.values():
            light.advance(scaled)

    def can_proceed(self, intersection_id: str, direction: LightDirection) -> bool:
        light = self.lights.get(intersection_id)
        if light is None:
            return True
        return light.can_proceed(direction)

    def signal_emergency(self, intersection_id: str, direction: LightDirection) -> None:
        light = self.lights.get(intersection_id)
        if light is not None:
            light.signal_emergency(direction)

    def clear_emergency(self, intersection_id: str) -> None:
        light = self.lights.get(intersection_id)
        if light is not None:
            light.emergency_override = False
            light.emergency_direction = None

    def get_time_to_green(self, intersection_id: str, direction: LightDirection) -> float:
        light = self.lights.get(intersection_id)
        if light is None:
            return 0.0
        return light.time_to_green(direction) / self.time_scale

    def get_time_to_phase_change(self, intersection_id: str) -> float:
        light = self.lights.get(intersection_id)
        if light is None:
            return 0.0
        return light.time_to_phase_change() / self.time_scale

    def reset(self) -> None:
        for light in self.lights.values():
            light.remove()
        self.lights.clear()
