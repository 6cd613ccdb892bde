"""
dispatch_config.py

Plain configuration values for the dispatch engine, grouped by concern.
None of these are protocol surface; they can be overridden per model.

Classes:
    - RouteServiceConfig: External routing client settings.
    - TrafficConfig: Road network, lights, ambient traffic and rerouting.
    - GameConfig: Economy, clock, mission spawning and movement.
"""

from dataclasses import dataclass, field

from geometry import LatLng


@dataclass(frozen=True)
class RouteServiceConfig:
    """Settings for `RouteService`. Durations are in seconds.

    Attributes:
        host (str): Base URL of the routing API.
        profile (str): Routing profile path segment.
        max_concurrency (int): Simultaneous requests to the API.
        timeout (float): Per-request timeout.
        max_retries (int): Retries after the first attempt.
        cache_ttl (float): Lifetime of a cached route.
        cache_precision (int): Decimals kept when building cache keys.
        breaker_threshold (int): Consecutive failures that open the breaker.
        breaker_cooldown (float): How long the breaker stays open.
        min_request_interval (float): Minimum spacing between request starts.
        backoff_base (float): First retry delay, doubled per attempt.
        backoff_jitter (float): Upper bound of the random delay added to each retry.
        rate_limit_backoff (float): Delay per attempt after an HTTP 429.
    """

    host: str = "https://router.project-osrm.org"
    profile: str = "driving"
    max_concurrency: int = 2
    timeout: float = 6.5
    max_retries: int = 2
    cache_ttl: float = 5 * 60
    cache_precision: int = 5
    breaker_threshold: int = 6
    breaker_cooldown: float = 60.0
    min_request_interval: float = 0.5
    backoff_base: float = 0.45
    backoff_jitter: float = 0.25
    rate_limit_backoff: float = 2.0


@dataclass(frozen=True)
class TrafficConfig:
    grid_size: int = 5
    grid_spacing: float = 0.005
    grid_origin: LatLng = LatLng(59.915, 10.748)
    snap_radius_km: float = 1.0
    coordinated_lights: bool = False
    num_traffic_cars: int = 0
    reroute_threshold: float = 0.7
    min_reroute_interval: float = 5.0
    ambient_density_radius: float = 0.002
    ambient_density_cars: int = 8


@dataclass(frozen=True)
class GameConfig:
    """Economy and simulation pacing.

    One real second at speed 1 is one game minute.

    Attributes:
        starting_money (int): Money at game start.
        target_ticks_to_complete (int): Ticks a route takes at base speed.
        max_active_missions (int): Spawn cap for pending plus dispatched missions.
        spawn_interval (tuple[float, float]): Real ms between spawns at speed 1.
        mission_grace_minutes (float): Minutes past the time limit before a
                                       resolved mission is pruned.
        auto_spawn (bool): Spawn missions on a timer.
        start_paused (bool): Create the model paused.
        city_center (LatLng): Centre of the playable area.
        city_span (tuple[float, float]): Half-extent of the area in lat and lng.
    """

    starting_money: int = 50_000
    target_ticks_to_complete: int = 120
    max_active_missions: int = 5
    spawn_interval: tuple[float, float] = (8_000.0, 15_000.0)
    mission_grace_minutes: float = 20.0
    auto_spawn: bool = False
    start_paused: bool = False
    city_center: LatLng = LatLng(59.925, 10.758)
    city_span: tuple[float, float] = field(default=(0.015, 0.02))
