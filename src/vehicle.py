"""
vehicle.py

This module defines the `VehicleAgent` class, a dispatch unit owned by a
station, together with its explicit status state machine.

A vehicle cycles through idle -> preparing -> dispatched -> working ->
returning -> idle. Movement along a route is fractional-index interpolation
between adjacent waypoints; per-tick progress combines a base speed with
road-geometry, random-variation, braking and ambient-traffic factors.

Classes:
    - VehicleStatus: Status values.
    - VehicleAgent: A dispatch unit.
    - VehicleView: Immutable snapshot of a vehicle for state consumers.

Dependencies:
    - mesa: Vehicles are agents of the dispatch model.
    - geometry: Interpolation and turn angles.
    - mission: `InvalidTransition`.
    - pathfinder: `Route`.
    - station: `RosterEntry`.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum

import mesa

from geometry import LatLng, euclidean_distance, point_at, turn_angle
from mission import InvalidTransition
from pathfinder import Route
from station import RosterEntry

logger = logging.getLogger(__name__)

BRAKING_POINTS = 15
PARK_DISTANCE = 0.00025


class VehicleStatus(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    DISPATCHED = "dispatched"
    WORKING = "working"
    RETURNING = "returning"

    @property
    def is_moving(self) -> bool:
        return self in (VehicleStatus.DISPATCHED, VehicleStatus.RETURNING)


VEHICLE_TRANSITIONS = {
    VehicleStatus.IDLE: {VehicleStatus.PREPARING},
    VehicleStatus.PREPARING: {
        VehicleStatus.DISPATCHED,
        VehicleStatus.RETURNING,
        VehicleStatus.IDLE,
    },
    VehicleStatus.DISPATCHED: {VehicleStatus.WORKING, VehicleStatus.RETURNING},
    VehicleStatus.WORKING: {VehicleStatus.RETURNING, VehicleStatus.IDLE},
    VehicleStatus.RETURNING: {VehicleStatus.IDLE},
}


def road_factor(waypoints, index: int) -> float:
    """Speed multiplier for the road geometry at waypoint `index`.

    Sharp turns (more than 45 degrees) slow the vehicle to 35%, moderate
    turns (more than 22.5 degrees) to 60%. Otherwise long segments allow 120%
    and short ones 85%.
    """
    last = len(waypoints) - 1
    if index >= last:
        return 1.0
    if 0 < index:
        angle = turn_angle(waypoints[index - 1], waypoints[index], waypoints[index + 1])
        if angle > math.pi / 4:
            return 0.35
        if angle > math.pi / 8:
            return 0.6
    if euclidean_distance(waypoints[index], waypoints[index + 1]) > 0.0005:
        return 1.2
    return 0.85


def braking_factor(remaining_points: float) -> float:
    if remaining_points >= BRAKING_POINTS:
        return 1.0
    return 0.25 + (remaining_points / BRAKING_POINTS) * 0.75


class VehicleAgent(mesa.Agent):
    """A dispatch unit belonging to a station.

    The agent only changes status through `transition`, which rejects any
    move not listed in `VEHICLE_TRANSITIONS`.

    Attributes:
        vehicle_type (str): Display type, e.g. "Fire Truck".
        station_id (str): Owning building.
        home (LatLng): Position of the owning building.
        status (VehicleStatus): Current status.
        position (LatLng): Current position.
        route (Route | None): Route being driven.
        route_cursor (float): Fractional index into `route.waypoints`.
        mission_id (str | None): Assigned mission.
        work_time_remaining (float): Game minutes of on-site work left.
        route_request_id (int | None): Id of the outstanding route request.

    Methods:
        step(): Advance one tick according to the current status.
        transition(status): Change status.
        assign_route(route, cursor): Replace the route.
        advance(): Move along the route.
    """

    def __init__(
        self,
        model: mesa.Model,
        vehicle_type: str,
        station_id: str,
        home: LatLng,
    ):
        super().__init__(model)
        self.vehicle_type = vehicle_type
        self.station_id = station_id
        self.home = LatLng(*home)
        self.status = VehicleStatus.IDLE
        self.position = self.home
        self.route: Route | None = None
        self.route_cursor = 0.0
        self.mission_id: str | None = None
        self.work_time_remaining = 0.0
        self.route_request_id: int | None = None

    @property
    def is_emergency(self) -> bool:
        return self.status in (VehicleStatus.PREPARING, VehicleStatus.DISPATCHED)

    @property
    def route_length(self) -> int:
        return len(self.route) if self.route is not None else 0

    @property
    def has_arrived(self) -> bool:
        return self.route is not None and self.route_cursor >= self.route_length - 1

    def transition(self, status: VehicleStatus) -> None:
        if status not in VEHICLE_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Vehicle {self.unique_id} cannot move from {self.status.value} to {status.value}"
            )
        logger.debug(f"Vehicle {self.unique_id}: {self.status.value} -> {status.value}")
        self.status = status

    def assign_route(self, route: Route | None, cursor: float = 0.0) -> None:
        self.route = route
        if route is None:
            self.route_cursor = 0.0
            return
        self.route_cursor = min(max(cursor, 0.0), float(len(route) - 1))
        self.position = point_at(route.waypoints, self.route_cursor)

    def clear_route(self) -> None:
        self.route = None
        self.route_cursor = 0.0
        self.route_request_id = None

    def step(self) -> None:
        if self.status == VehicleStatus.PREPARING:
            if self.route is not None:
                self.transition(VehicleStatus.DISPATCHED)
        elif self.status == VehicleStatus.DISPATCHED:
            self.advance()
            self.model.preempt_light_for(self)
            if self.has_arrived:
                self.start_work()
        elif self.status == VehicleStatus.WORKING:
            self.work_time_remaining -= self.model.game_minutes_delta
            if self.work_time_remaining <= 0:
                self.work_time_remaining = 0.0
                self.model.send_home(self)
        elif self.status == VehicleStatus.RETURNING:
            self.advance()
            if self.has_arrived:
                self.arrive_home()

    def movement_for_tick(self) -> float:
        """Waypoints to advance this tick.

        Returns:
            float: Base movement scaled by road geometry, a +/-3% random
                   variation, braking near the end and ambient traffic,
                   capped at 130% of base.
        """
        waypoints = self.route.waypoints
        speed = self.model.game_speed
        base = max(0.5, len(waypoints) / self.model.game_config.target_ticks_to_complete)

        index = int(math.floor(self.route_cursor))
        remaining = (len(waypoints) - 1) - self.route_cursor
        density = self.model.ambient_density(self.position)

        movement = (
            base
            * speed
            * road_factor(waypoints, index)
            * (0.97 + self.model.random.random() * 0.06)
            * braking_factor(remaining)
            * (1 - density * 0.4)
        )
        return min(movement, base * 1.3 * speed)

    def advance(self) -> None:
        if self.route is None or self.has_arrived:
            return
        last = float(self.route_length - 1)
        self.route_cursor = min(self.route_cursor + self.movement_for_tick(), last)
        self.position = point_at(self.route.waypoints, self.route_cursor)

    def start_work(self) -> None:
        mission = self.model.missions.get(self.mission_id)
        self.transition(VehicleStatus.WORKING)
        self.clear_route()
        if mission is None:
            self.work_time_remaining = 0.0
            return

        self.work_time_remaining = mission.work_duration
        n = (
            mission.dispatched_vehicles.index(self.unique_id)
            if self.unique_id in mission.dispatched_vehicles
            else 0
        )
        angle = n * math.pi * 0.6 + math.pi / 4
        self.position = LatLng(
            mission.position[0] + math.cos(angle) * PARK_DISTANCE,
            mission.position[1] + math.sin(angle) * PARK_DISTANCE,
        )
        logger.info(f"Vehicle {self.unique_id} working on mission {mission.id}")

    def arrive_home(self) -> None:
        self.transition(VehicleStatus.IDLE)
        self.position = self.home
        self.mission_id = None
        self.clear_route()

    def roster_entry(self) -> RosterEntry:
        return RosterEntry(
            vehicle_id=self.unique_id,
            vehicle_type=self.vehicle_type,
            status=self.status.value,
            mission_id=self.mission_id,
        )

    def view(self) -> "VehicleView":
        return VehicleView(
            id=self.unique_id,
            vehicle_type=self.vehicle_type,
            station_id=self.station_id,
            status=self.status,
            position=self.position,
            route=self.route,
            route_cursor=self.route_cursor,
            mission_id=self.mission_id,
            work_time_remaining=self.work_time_remaining,
        )


@dataclass(frozen=True)
class VehicleView:
    id: int
    vehicle_type: str
    station_id: str
    status: VehicleStatus
    position: LatLng
    route: Route | None
    route_cursor: float
    mission_id: str | None
    work_time_remaining: float
