"""
dispatch_model.py

This module defines the `DispatchModel` class, the Mesa model at the heart of
the emergency dispatch simulation. It owns the road network, traffic lights,
ambient traffic, stations, vehicles and missions, and advances all of them on
a single serialized tick.

Route lookups against the external routing service are the only operations
that run off the tick. Their results come back as `RouteResolved` events on a
thread-safe queue, and the next tick applies them, but only if the requesting
vehicle still owns that request.

Classes:
    - DispatchModel: The Mesa model.
    - RouteResolved: Event carrying a finished route lookup.
    - EngineState: Immutable snapshot published to subscribers.

Dependencies:
    - mesa: Model base class, RNG and agent registry.
    - congestion, pathfinder, road_graph, traffic_light: Road network subsystems.
    - route_service: Optional network routing with offline fallback.
    - sim_data: Polars records of the run.
"""

import functools
import itertools
import logging
import math
import queue
import time
from dataclasses import dataclass, replace
from typing import Callable

import mesa

from congestion import CongestionMonitor, ReroutingEngine
from dispatch_config import GameConfig, TrafficConfig
from geometry import LatLng, euclidean_distance, nearest_index
from mission import MISSION_CONFIGS, Mission, MissionStatus, MissionType
from pathfinder import Pathfinder, Route, RouteSource
from road_graph import create_sample_network
from route_service import RouteService, fallback_route
from sim_data import Finances, MissionLog, NetworkCongestion
from station import BUILDING_CONFIGS, Building, BuildingSize, BuildingType
from traffic_car import TrafficCarAgent
from traffic_light import TrafficLightManager, direction_of
from vehicle import VehicleAgent, VehicleStatus, VehicleView

logger = logging.getLogger(__name__)

GAME_SPEEDS = (1, 2, 3)
PREEMPT_RADIUS_KM = 0.15


@dataclass(frozen=True)
class RouteResolved:
    vehicle_id: int
    request_id: int
    purpose: VehicleStatus
    route: Route


@dataclass(frozen=True)
class EngineState:
    """Read-only view of the engine after a tick or command."""

    step: int
    game_time: float
    money: int
    game_speed: int
    is_paused: bool
    is_game_over: bool
    missions_completed: int
    missions_failed: int
    vehicles: tuple[VehicleView, ...]
    missions: tuple[Mission, ...]
    buildings: tuple[Building, ...]


class DispatchModel(mesa.Model):
    """A Mesa model simulating emergency dispatch on a synthetic city.

    Time is driven from outside through `tick(real_delta_ms)`. One real second
    at game speed 1 equals one game minute; game speed multiplies both the
    game clock and vehicle movement.

    Attributes:
        graph (RoadGraph): The road network.
        pathfinder (Pathfinder): A* search over `graph`.
        congestion (CongestionMonitor): Segment occupancy tracking.
        rerouting (ReroutingEngine): Mid-route replanning decisions.
        lights (TrafficLightManager): Signals at every intersection.
        route_service (RouteService | None): Network routing, None when offline.
        buildings (dict[str, Building]): Stations by id, in placement order.
        vehicles (dict[int, VehicleAgent]): Dispatch units by id, in creation order.
        missions (dict[str, Mission]): Live and recently resolved missions by id.
        money (int): Player funds.
        game_time (float): Simulated time in ms since start.
        game_speed (int): Speed multiplier, one of 1, 2 or 3.
        is_paused (bool): Ticks are ignored while paused.
        is_game_over (bool): Set once money drops below zero.
        real_delta_ms (float): Real time covered by the current tick.
        game_minutes_delta (float): Game minutes covered by the current tick.
        route_events (queue.SimpleQueue): Resolved route lookups awaiting the next tick.
        roster_syncs (int): How often station rosters were rebuilt.
        finances (Finances), network_congestion (NetworkCongestion),
        mission_log (MissionLog): Polars records of the run.

    Methods:
        tick(real_delta_ms): Advance the simulation.
        dispatch_vehicle(mission_id): Send idle units to a mission.
        place_building / upgrade_building / sell_building / hire_staff /
        purchase_vehicle: Station management.
        set_game_speed(speed), pause(), resume(): Clock control.
        spawn_mission(...): Create a mission.
        get_state(), subscribe(callback): Read-only state access.
    """

    def __init__(
        self,
        seed: int = 42,
        game_config: GameConfig = GameConfig(),
        traffic_config: TrafficConfig = TrafficConfig(),
        route_service: RouteService | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(seed=seed)
        self.game_config = game_config
        self.traffic_config = traffic_config
        self.route_service = route_service
        self.clock = clock

        self.graph = create_sample_network(
            grid_size=traffic_config.grid_size,
            spacing=traffic_config.grid_spacing,
            origin=traffic_config.grid_origin,
        )
        self.pathfinder = Pathfinder(self.graph, snap_radius_km=traffic_config.snap_radius_km)
        self.congestion = CongestionMonitor(self.graph, clock=clock)
        self.rerouting = ReroutingEngine(
            self.pathfinder,
            self.congestion,
            reroute_threshold=traffic_config.reroute_threshold,
            min_reroute_interval=traffic_config.min_reroute_interval,
            clock=clock,
        )
        self.lights = TrafficLightManager(self)
        self.lights.create_lights(self.graph)
        if traffic_config.coordinated_lights:
            self.lights.setup_coordinated_timing(traffic_config.grid_size)

        self.buildings: dict[str, Building] = {}
        self.vehicles: dict[int, VehicleAgent] = {}
        self.missions: dict[str, Mission] = {}

        self.money = game_config.starting_money
        self.game_time = 0.0
        self.game_speed = 1
        self.is_paused = game_config.start_paused
        self.is_game_over = False
        self.missions_completed = 0
        self.missions_failed = 0

        self.real_delta_ms = 0.0
        self.game_minutes_delta = 0.0
        self._last_tick = clock()

        self.route_events: queue.SimpleQueue = queue.SimpleQueue()
        self._request_ids = itertools.count(1)
        self._building_ids = itertools.count(1)
        self._mission_ids = itertools.count(1)
        self._roster_signatures: dict[int, tuple] = {}
        self.roster_syncs = 0
        self._subscribers: list[Callable[[EngineState], None]] = []
        self._spawn_countdown_ms = self._next_spawn_delay()

        self.finances = Finances()
        self.network_congestion = NetworkCongestion()
        self.mission_log = MissionLog()

        self.create_traffic_cars(traffic_config.num_traffic_cars)

    def get_agents_by_type(self, agent_type: type) -> list[mesa.Agent]:
        """Returns all active agents of a class, empty if there are none."""
        agents = self.agents_by_type.get(agent_type)
        return list(agents) if agents is not None else []

    def create_traffic_cars(self, num_cars: int) -> None:
        node_ids = list(self.graph.nodes)
        for _ in range(num_cars):
            TrafficCarAgent(self, start_node_id=self.random.choice(node_ids))

    def tick(self, real_delta_ms: float | None = None) -> bool:
        """Advances the simulation by the real time elapsed since the last tick.

        Args:
            real_delta_ms (float | None, optional): Real milliseconds to advance.
                Measured from the model clock when omitted.

        Returns:
            bool: False when the tick was ignored (paused or game over).
        """
        now = self.clock()
        if real_delta_ms is None:
            real_delta_ms = (now - self._last_tick) * 1000
        self._last_tick = now

        if self.is_paused or self.is_game_over:
            return False

        self.real_delta_ms = max(0.0, real_delta_ms)
        self.game_minutes_delta = self.real_delta_ms / 1000 * self.game_speed
        self.step()
        return True

    def step(self) -> None:
        """Runs one serialized update.

        Executes the following actions in order:
        1. Applies route lookups that resolved since the previous tick.
        2. Advances the game clock and the traffic lights.
        3. Steps the ambient traffic cars and refreshes segment congestion.
        4. Steps every dispatch vehicle, then checks moving vehicles for reroutes.
        5. Updates missions (completion before timeout) and prunes old ones.
        6. Rebuilds station rosters if any vehicle assignment changed.
        7. Spawns missions, checks for game over, records data and publishes state.
        """
        self._drain_route_events()

        self.game_time += self.game_minutes_delta * 60_000
        self.lights.update_all_lights(self.real_delta_ms)

        traffic_cars = self.get_agents_by_type(TrafficCarAgent)
        for car in traffic_cars:
            car.step()
        self.congestion.update_congestion(
            traffic_cars + [v for v in self.vehicles.values() if v.status.is_moving]
        )

        for vehicle in list(self.vehicles.values()):
            vehicle.step()
        self._check_reroutes()

        self._update_missions()
        self._prune_missions()
        self.sync_rosters()

        if self.game_config.auto_spawn:
            self._run_spawn_timer()

        if self.money < 0:
            self.is_game_over = True
            self.running = False
            logger.info(f"Game over at step {self.steps}: money {self.money}")

        self.collect_data(len(traffic_cars))
        self._publish()

    def collect_data(self, traffic_cars: int) -> None:
        self.finances.update_data(step=self.steps, game_time=self.game_time, money=self.money)
        self.network_congestion.update_data(
            step=self.steps,
            mean_density=self.congestion.get_network_congestion(),
            gridlocked=self.congestion.count_gridlocked(),
            traffic_cars=traffic_cars,
        )

    def plan_local_route(self, start: LatLng, end: LatLng, is_emergency: bool) -> Route:
        """Routes on the road graph, falling back to a curved path.

        A graph route is joined to the exact endpoints. When an endpoint
        cannot be snapped, no path exists, or both ends snap to the same
        intersection, the fallback generator is used instead.
        """
        route = self.pathfinder.find_path(start, end, is_emergency)
        if route is None or len(route.node_ids) < 2:
            return fallback_route(start, end, is_emergency)
        return route.with_endpoints(start, end)

    def request_route(self, vehicle: VehicleAgent, destination: LatLng) -> None:
        """Gives a vehicle an immediate local route and, when online, asks the
        routing service for a better one."""
        vehicle.assign_route(
            self.plan_local_route(vehicle.position, destination, vehicle.is_emergency)
        )
        vehicle.route_request_id = None
        if self.route_service is None:
            return

        request_id = next(self._request_ids)
        vehicle.route_request_id = request_id
        purpose = (
            VehicleStatus.RETURNING
            if vehicle.status == VehicleStatus.RETURNING
            else VehicleStatus.DISPATCHED
        )
        future = self.route_service.get_route_async(vehicle.position, destination)
        future.add_done_callback(
            functools.partial(self._enqueue_route, vehicle.unique_id, request_id, purpose)
        )

    def _enqueue_route(self, vehicle_id: int, request_id: int, purpose: VehicleStatus, future) -> None:
        if future.cancelled():
            return
        self.route_events.put(RouteResolved(vehicle_id, request_id, purpose, future.result()))

    def _drain_route_events(self) -> None:
        while True:
            try:
                event = self.route_events.get_nowait()
            except queue.Empty:
                break
            self.apply_route_event(event)

    def apply_route_event(self, event: RouteResolved) -> bool:
        """Applies a resolved route if the vehicle is still waiting for it.

        The live vehicle must still hold `event.request_id` and be in a state
        that can use the route. Only network routes replace the current one;
        the vehicle keeps its progress by snapping onto the nearest point of
        the new geometry.

        Returns:
            bool: Whether the route was applied.
        """
        vehicle = self.vehicles.get(event.vehicle_id)
        if vehicle is None or vehicle.route_request_id != event.request_id:
            return False

        if event.purpose == VehicleStatus.RETURNING:
            usable = vehicle.status == VehicleStatus.RETURNING
        else:
            usable = vehicle.status in (VehicleStatus.PREPARING, VehicleStatus.DISPATCHED)
        vehicle.route_request_id = None
        if not usable or event.route.source != RouteSource.NETWORK:
            logger.debug(f"Discarded route {event.request_id} for vehicle {vehicle.unique_id}")
            return False

        cursor = nearest_index(event.route.waypoints, vehicle.position)
        vehicle.assign_route(event.route, cursor=float(cursor))
        logger.debug(f"Vehicle {vehicle.unique_id} upgraded to network route at index {cursor}")
        return True

    def _check_reroutes(self) -> None:
        for vehicle in self.vehicles.values():
            route = vehicle.route
            if not vehicle.status.is_moving or route is None or not route.segment_ids:
                continue
            if not self.rerouting.should_reroute(vehicle.unique_id, route):
                continue
            alternative = self.rerouting.calculate_alternative_route(
                vehicle.unique_id, vehicle.position, route, vehicle.is_emergency
            )
            if alternative is not None and len(alternative.node_ids) > 1:
                vehicle.assign_route(alternative.with_endpoints(vehicle.position, route.end))
                logger.debug(f"Vehicle {vehicle.unique_id} rerouted around congestion")

    def preempt_light_for(self, vehicle: VehicleAgent) -> None:
        """Turns the light ahead of an emergency vehicle green for its approach."""
        if vehicle.route is None or vehicle.has_arrived:
            return
        index = min(int(math.floor(vehicle.route_cursor)) + 1, vehicle.route_length - 1)
        next_waypoint = vehicle.route.waypoints[index]
        node = self.graph.get_nearest_node(next_waypoint, PREEMPT_RADIUS_KM)
        if node is not None:
            self.lights.signal_emergency(node.id, direction_of(vehicle.position, next_waypoint))

    def ambient_density(self, position: LatLng) -> float:
        radius = self.traffic_config.ambient_density_radius
        nearby = sum(
            1
            for car in self.get_agents_by_type(TrafficCarAgent)
            if euclidean_distance(car.position, position) < radius
        )
        return min(1.0, nearby / self.traffic_config.ambient_density_cars)

    def send_home(self, vehicle: VehicleAgent) -> None:
        vehicle.transition(VehicleStatus.RETURNING)
        vehicle.work_time_remaining = 0.0
        self.request_route(vehicle, vehicle.home)

    def recall(self, vehicle: VehicleAgent) -> None:
        """Aborts a vehicle's mission in place and sends it back to its station."""
        if vehicle.status == VehicleStatus.PREPARING:
            vehicle.transition(VehicleStatus.IDLE)
            vehicle.mission_id = None
            vehicle.clear_route()
            vehicle.position = vehicle.home
        elif vehicle.status in (VehicleStatus.DISPATCHED, VehicleStatus.WORKING):
            self.send_home(vehicle)

    def _add_vehicle(self, building: Building) -> VehicleAgent:
        vehicle = VehicleAgent(
            self,
            vehicle_type=building.config.vehicle_type,
            station_id=building.id,
            home=building.position,
        )
        self.vehicles[vehicle.unique_id] = vehicle
        building.vehicle_ids.append(vehicle.unique_id)
        return vehicle

    def sync_rosters(self, force: bool = False) -> bool:
        """Rebuilds station rosters when any vehicle's status, mission or
        station changed. Position-only changes never trigger a rebuild."""
        signatures = {
            v.unique_id: (v.status, v.mission_id, v.station_id)
            for v in self.vehicles.values()
        }
        if not force and signatures == self._roster_signatures:
            return False
        self._roster_signatures = signatures
        for building in self.buildings.values():
            building.roster = tuple(
                self.vehicles[vid].roster_entry()
                for vid in building.vehicle_ids
                if vid in self.vehicles
            )
        self.roster_syncs += 1
        return True

    def _update_missions(self) -> None:
        for mission in list(self.missions.values()):
            if not mission.is_active:
                continue
            remaining = mission.count_down(self.game_minutes_delta)

            if mission.status == MissionStatus.DISPATCHED:
                assigned = self._assigned_vehicles(mission)
                if assigned and all(
                    v.status in (VehicleStatus.RETURNING, VehicleStatus.IDLE) for v in assigned
                ):
                    self._resolve(mission, MissionStatus.COMPLETED)
                    continue

            if remaining <= 0:
                self._resolve(mission, MissionStatus.FAILED)
                for vehicle in self._assigned_vehicles(mission):
                    self.recall(vehicle)

    def _assigned_vehicles(self, mission: Mission) -> list[VehicleAgent]:
        return [
            self.vehicles[vid]
            for vid in mission.dispatched_vehicles
            if vid in self.vehicles and self.vehicles[vid].mission_id == mission.id
        ]

    def _resolve(self, mission: Mission, status: MissionStatus) -> None:
        mission.transition(status)
        mission.resolved_at = self.game_time
        if status == MissionStatus.COMPLETED:
            self.money += mission.reward
            self.missions_completed += 1
            logger.info(f"Mission {mission.id} completed: +{mission.reward}")
        else:
            mission.time_remaining = 0.0
            self.money -= mission.penalty
            self.missions_failed += 1
            logger.info(f"Mission {mission.id} failed: -{mission.penalty}")
        self.mission_log.update_data(mission)

    def _prune_missions(self) -> None:
        grace = self.game_config.mission_grace_minutes
        for mission_id, mission in list(self.missions.items()):
            if mission.is_active:
                continue
            if mission.age_minutes(self.game_time) >= mission.time_limit + grace:
                del self.missions[mission_id]

    def active_missions(self) -> list[Mission]:
        return [m for m in self.missions.values() if m.is_active]

    def _next_spawn_delay(self) -> float:
        low, high = self.game_config.spawn_interval
        return self.random.uniform(low, high) / self.game_speed

    def _run_spawn_timer(self) -> None:
        self._spawn_countdown_ms -= self.real_delta_ms
        if self._spawn_countdown_ms <= 0:
            self.spawn_mission()
            self._spawn_countdown_ms = self._next_spawn_delay()

    def _mission_position(self) -> LatLng:
        center = self.game_config.city_center
        lat_span, lng_span = self.game_config.city_span
        buildings = list(self.buildings.values())

        if buildings and self.random.random() < 0.8:
            anchor = self.random.choice(buildings).position
            lat = anchor[0] + (self.random.random() - 0.5) * 0.02
            lng = anchor[1] + (self.random.random() - 0.5) * 0.025
        else:
            lat = center[0] + (self.random.random() - 0.5) * lat_span * 1.2
            lng = center[1] + (self.random.random() - 0.5) * lng_span * 1.2

        return LatLng(
            max(center[0] - lat_span, min(center[0] + lat_span, lat)),
            max(center[1] - lng_span, min(center[1] + lng_span, lng)),
        )

    def spawn_mission(
        self,
        mission_type: MissionType | None = None,
        position: LatLng | None = None,
        reward: int | None = None,
        penalty: int | None = None,
        time_limit: float | None = None,
    ) -> Mission | None:
        """Creates a pending mission.

        Unspecified fields are drawn like the spawn scheduler does: a random
        type, a position near a station or the city centre, and the type's
        base reward and penalty plus a random bonus.

        Returns:
            Mission | None: The new mission, or None when the game is over or
                            the active-mission cap is reached.
        """
        if self.is_game_over:
            return None
        if len(self.active_missions()) >= self.game_config.max_active_missions:
            logger.info("Mission cap reached, not spawning")
            return None

        if mission_type is None:
            mission_type = self.random.choice(list(MissionType))
        config = MISSION_CONFIGS[mission_type]
        title_index = self.random.randrange(len(config.titles))
        if time_limit is None:
            time_limit = config.base_time_limit

        mission = Mission(
            id=f"msn-{next(self._mission_ids)}",
            type=mission_type,
            title=config.titles[title_index],
            description=config.descriptions[title_index],
            position=LatLng(*position) if position is not None else self._mission_position(),
            reward=reward if reward is not None else config.base_reward + self.random.randrange(500),
            penalty=penalty if penalty is not None else config.base_penalty + self.random.randrange(200),
            time_limit=time_limit,
            time_remaining=time_limit,
            required_buildings=config.required_buildings,
            work_duration=config.work_duration,
            created_at=self.game_time,
        )
        self.missions[mission.id] = mission
        logger.info(f"Spawned {mission_type.value} mission {mission.id} at {mission.position}")
        self._publish()
        return mission

    def dispatch_vehicle(self, mission_id: str) -> list[int]:
        """Sends idle vehicles to a pending mission, first fit.

        For each required station type, the first idle vehicle of the first
        station of that type that has one is taken. Missing types are
        skipped, so a mission can be dispatched under-resourced.

        Args:
            mission_id (str): The mission to respond to.

        Returns:
            list[int]: Ids of the dispatched vehicles; empty when nothing was sent.
        """
        mission = self.missions.get(mission_id)
        if self.is_game_over or mission is None or mission.status != MissionStatus.PENDING:
            logger.info(f"Cannot dispatch to mission {mission_id}")
            return []

        selected: list[VehicleAgent] = []
        for building_type in mission.required_buildings:
            for building in self.buildings.values():
                if building.type != building_type:
                    continue
                idle = next(
                    (
                        self.vehicles[vid]
                        for vid in building.vehicle_ids
                        if self.vehicles[vid].status == VehicleStatus.IDLE
                        and self.vehicles[vid] not in selected
                    ),
                    None,
                )
                if idle is not None:
                    selected.append(idle)
                    break

        if not selected:
            logger.info(f"No idle vehicles available for mission {mission_id}")
            return []

        mission.transition(MissionStatus.DISPATCHED)
        mission.dispatched_vehicles = [v.unique_id for v in selected]
        for vehicle in selected:
            vehicle.transition(VehicleStatus.PREPARING)
            vehicle.mission_id = mission.id
            self.request_route(vehicle, mission.position)

        logger.info(f"Dispatched {mission.dispatched_vehicles} to mission {mission.id}")
        self._publish()
        return list(mission.dispatched_vehicles)

    def place_building(
        self,
        building_type: BuildingType,
        position: LatLng,
        size: BuildingSize = BuildingSize.SMALL,
    ) -> Building | None:
        config = BUILDING_CONFIGS[building_type]
        cost = config.cost_for(size)
        if self.is_game_over or self.money < cost:
            logger.info(f"Cannot afford {config.name} ({cost})")
            return None

        same_type = sum(1 for b in self.buildings.values() if b.type == building_type)
        building = Building(
            id=f"bldg-{next(self._building_ids)}",
            type=building_type,
            size=size,
            name=f"{config.name} {same_type + 1}",
            position=LatLng(*position),
            cost=cost,
        )
        self.money -= cost
        self.buildings[building.id] = building
        for _ in range(config.vehicles_for(size)):
            self._add_vehicle(building)

        logger.info(f"Placed {building.name} for {cost}")
        self._publish()
        return building

    def upgrade_building(self, building_id: str) -> bool:
        building = self.buildings.get(building_id)
        if self.is_game_over or building is None:
            return False
        config = building.config
        cost = config.upgrade_cost * building.level
        if building.level >= config.max_level or self.money < cost:
            logger.info(f"Cannot upgrade {building_id}")
            return False

        self.money -= cost
        building.apply_upgrade()
        self._add_vehicle(building)
        self._publish()
        return True

    def hire_staff(self, building_id: str) -> bool:
        building = self.buildings.get(building_id)
        if self.is_game_over or building is None:
            return False
        if self.money < building.config.staff_cost or not building.hire():
            return False
        self.money -= building.config.staff_cost
        self._publish()
        return True

    def purchase_vehicle(self, building_id: str) -> VehicleAgent | None:
        building = self.buildings.get(building_id)
        if self.is_game_over or building is None:
            return None
        if self.money < building.config.vehicle_cost:
            return None
        self.money -= building.config.vehicle_cost
        vehicle = self._add_vehicle(building)
        self._publish()
        return vehicle

    def sell_building(self, building_id: str) -> int | None:
        """Sells a building for half its price, destroying its vehicles.

        Returns:
            int | None: The refund, or None for an unknown building or after
                        game over.
        """
        if self.is_game_over:
            return None
        building = self.buildings.pop(building_id, None)
        if building is None:
            return None

        refund = math.floor(building.cost * 0.5)
        for vehicle_id in building.vehicle_ids:
            vehicle = self.vehicles.pop(vehicle_id, None)
            if vehicle is None:
                continue
            mission = self.missions.get(vehicle.mission_id)
            if mission is not None and vehicle_id in mission.dispatched_vehicles:
                mission.dispatched_vehicles.remove(vehicle_id)
            self.rerouting.forget(vehicle_id)
            vehicle.remove()

        self.money += refund
        logger.info(f"Sold {building.name} for {refund}")
        self._publish()
        return refund

    def set_game_speed(self, speed: int) -> None:
        if speed not in GAME_SPEEDS:
            raise ValueError(f"Game speed must be one of {GAME_SPEEDS}, got {speed}")
        if self.is_game_over:
            return
        self.game_speed = speed
        self.lights.set_time_scale(speed)
        self._publish()

    def pause(self) -> None:
        if self.is_game_over:
            return
        self.is_paused = True
        self._publish()

    def resume(self) -> None:
        if self.is_game_over:
            return
        self.is_paused = False
        self._last_tick = self.clock()
        self._publish()

    def get_state(self) -> EngineState:
        return EngineState(
            step=self.steps,
            game_time=self.game_time,
            money=self.money,
            game_speed=self.game_speed,
            is_paused=self.is_paused,
            is_game_over=self.is_game_over,
            missions_completed=self.missions_completed,
            missions_failed=self.missions_failed,
            vehicles=tuple(v.view() for v in self.vehicles.values()),
            missions=tuple(
                replace(m, dispatched_vehicles=list(m.dispatched_vehicles))
                for m in self.missions.values()
            ),
            buildings=tuple(
                replace(b, vehicle_ids=list(b.vehicle_ids)) for b in self.buildings.values()
            ),
        )

    def subscribe(self, callback: Callable[[EngineState], None]) -> Callable[[], None]:
        """Registers a listener called with a fresh snapshot after every change.

        Returns:
            Callable[[], None]: Removes the listener again.
        """
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def _publish(self) -> None:
        if not self._subscribers:
            return
        state = self.get_state()
        for callback in list(self._subscribers):
            callback(state)
