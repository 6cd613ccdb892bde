"""
route_service.py

Client for an external OSRM-compatible road-routing HTTP API.

Every request goes through a cache keyed by rounded coordinates, an in-flight
table that lets concurrent callers share one pending lookup, and a small
worker pool that limits concurrency and spaces out request starts. Failed
attempts are retried with exponential backoff and jitter (longer after an HTTP
429). Repeated failures open a circuit breaker, during which no request is
sent at all. Whatever happens, the caller gets a `Route`: when the network
cannot provide one, a deterministic curved fallback is returned instead.

Classes:
    - RoutingError: Unusable response or transport failure.
    - RateLimited: The API answered HTTP 429.
    - CircuitOpen: The breaker refused the request.
    - CircuitBreaker: Consecutive-failure breaker with an open-until deadline.
    - RouteCache: TTL cache keyed by quantised coordinate pairs.
    - RouteService: The client.

Functions:
    - fallback_route: Offline curved route between two positions.

Dependencies:
    - requests: HTTP session.
    - concurrent.futures: Worker pool and shared pending results.
    - geometry, pathfinder: Route geometry and the `Route` type.
"""

import logging
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

import requests

from dispatch_config import RouteServiceConfig
from geometry import LatLng, bezier_route, polyline_length
from pathfinder import Route, RouteSource

logger = logging.getLogger(__name__)


class RoutingError(Exception):
    """Raised when a routing attempt does not produce a usable route."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self):
        return self.message


class RateLimited(RoutingError):
    pass


class CircuitOpen(RoutingError):
    pass


def fallback_route(start: LatLng, end: LatLng, is_emergency: bool = False) -> Route:
    """Builds the offline route used whenever no real route is available."""
    waypoints = bezier_route(start, end)
    return Route(
        waypoints=tuple(waypoints),
        distance=polyline_length(waypoints),
        is_emergency=is_emergency,
        source=RouteSource.FALLBACK,
    )


@dataclass
class CircuitBreaker:
    """Stops calling the routing API for a while after repeated failures.

    The breaker is open while `clock() < open_until`. Reaching `threshold`
    consecutive failures opens it for `cooldown` seconds and resets the
    failure count; any success resets the count.
    """

    threshold: int = 6
    cooldown: float = 60.0
    clock: Callable[[], float] = time.monotonic
    failures: int = 0
    open_until: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def is_open(self) -> bool:
        return self.clock() < self.open_until

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            if self.failures >= self.threshold:
                self.open_until = self.clock() + self.cooldown
                self.failures = 0
                logger.warning(
                    f"Routing circuit breaker open for {self.cooldown:.0f}s"
                )

    def record_success(self) -> None:
        with self._lock:
            self.failures = 0


class RouteCache:
    """Thread-safe route cache with per-entry expiry.

    Attributes:
        ttl (float): Entry lifetime in seconds.
        precision (int): Decimals kept when quantising coordinates.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        precision: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.precision = precision
        self.clock = clock
        self._entries: dict[str, tuple[float, Route]] = {}
        self._lock = threading.Lock()

    def key_for(self, start: LatLng, end: LatLng) -> str:
        p = self.precision
        return (
            f"{round(start[0], p)},{round(start[1], p)}"
            f"|{round(end[0], p)},{round(end[1], p)}"
        )

    def get(self, key: str) -> Route | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, route = entry
            if self.clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return route

    def put(self, key: str, route: Route) -> None:
        with self._lock:
            self._entries[key] = (self.clock(), route)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RouteService:
    """Client for the external routing API.

    `get_route_async` never raises and its future always resolves to a
    `Route`, either from the network or from `fallback_route`.

    Attributes:
        config (RouteServiceConfig): Client settings.
        session (requests.Session): HTTP session shared by all workers.
        breaker (CircuitBreaker): Failure tracking.
        cache (RouteCache): Resolved network routes.
        attempts (int): HTTP requests sent so far.

    Methods:
        get_route(start, end): Blocking lookup.
        get_route_async(start, end): Lookup returning a `Future[Route]`.
        fetch_route(start, end): One HTTP attempt, raising `RoutingError`.
        close(): Shut down the worker pool and session.
    """

    def __init__(
        self,
        config: RouteServiceConfig = RouteServiceConfig(),
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.breaker = CircuitBreaker(
            threshold=config.breaker_threshold,
            cooldown=config.breaker_cooldown,
            clock=clock,
        )
        self.cache = RouteCache(
            ttl=config.cache_ttl, precision=config.cache_precision, clock=clock
        )
        self.executor = ThreadPoolExecutor(
            max_workers=config.max_concurrency, thread_name_prefix="route-service"
        )
        self.attempts = 0
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._spacing_lock = threading.Lock()
        self._last_request_at: float | None = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.session.close()

    def build_url(self, start: LatLng, end: LatLng) -> str:
        return (
            f"{self.config.host}/route/v1/{self.config.profile}/"
            f"{start[1]},{start[0]};{end[1]},{end[0]}"
        )

    def get_route(self, start: LatLng, end: LatLng) -> Route:
        return self.get_route_async(start, end).result()

    def get_route_async(self, start: LatLng, end: LatLng) -> Future:
        """Starts a route lookup.

        Args:
            start (LatLng): Origin.
            end (LatLng): Destination.

        Returns:
            Future: Resolves to a `Route`. Already resolved for cache hits and
                    while the breaker is open; shared between callers asking
                    for the same cache key at the same time.
        """
        start, end = LatLng(*start), LatLng(*end)
        key = self.cache.key_for(start, end)

        cached = self.cache.get(key)
        if cached is not None:
            return self._resolved(cached)

        if self.breaker.is_open():
            logger.debug(f"Breaker open, using fallback for {key}")
            return self._resolved(fallback_route(start, end))

        with self._lock:
            pending = self._in_flight.get(key)
            if pending is not None:
                return pending
            future = self.executor.submit(self._resolve, key, start, end)
            self._in_flight[key] = future
        return future

    @staticmethod
    def _resolved(route: Route) -> Future:
        future = Future()
        future.set_result(route)
        return future

    def _resolve(self, key: str, start: LatLng, end: LatLng) -> Route:
        try:
            route = self.fetch_with_retry(start, end)
        except RoutingError as e:
            self.breaker.record_failure()
            logger.warning(f"Routing failed for {key}, using fallback: {e}")
            return fallback_route(start, end)
        else:
            self.breaker.record_success()
            self.cache.put(key, route)
            return route
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    def retry_delay(self, attempt: int, error: RoutingError) -> float:
        if isinstance(error, RateLimited):
            return self.config.rate_limit_backoff * (attempt + 1)
        return (
            self.config.backoff_base * 2**attempt
            + self.rng.random() * self.config.backoff_jitter
        )

    def fetch_with_retry(self, start: LatLng, end: LatLng) -> Route:
        """Runs up to `max_retries + 1` attempts, sleeping between them.

        Raises:
            RoutingError: The last attempt's error when every attempt failed.
        """
        for attempt in range(self.config.max_retries + 1):
            if self.breaker.is_open():
                raise CircuitOpen("Circuit breaker opened during retries")
            try:
                return self.fetch_route(start, end)
            except RoutingError as e:
                if attempt == self.config.max_retries:
                    raise
                delay = self.retry_delay(attempt, e)
                logger.debug(f"Attempt {attempt + 1} failed ({e}), retrying in {delay:.2f}s")
                self.sleep(delay)
        raise RoutingError("No routing attempts were made")

    def _wait_for_slot(self) -> None:
        with self._spacing_lock:
            if self._last_request_at is not None:
                wait = self._last_request_at + self.config.min_request_interval - self.clock()
                if wait > 0:
                    self.sleep(wait)
            self._last_request_at = self.clock()

    def fetch_route(self, start: LatLng, end: LatLng) -> Route:
        """Performs a single request against the routing API.

        Raises:
            RateLimited: On HTTP 429.
            RoutingError: On transport errors, other non-2xx statuses, invalid
                          JSON, a code other than "Ok" or fewer than two coordinates.
        """
        self._wait_for_slot()
        self.attempts += 1
        try:
            response = self.session.get(
                self.build_url(start, end),
                params={"overview": "full", "geometries": "geojson"},
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise RoutingError(f"Request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimited("HTTP 429")
        if not response.ok:
            raise RoutingError(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise RoutingError("Response is not valid JSON") from e

        if not isinstance(data, dict) or data.get("code") != "Ok":
            code = data.get("code") if isinstance(data, dict) else None
            raise RoutingError(f"Unexpected response code {code!r}")
        try:
            coordinates = data["routes"][0]["geometry"]["coordinates"]
            waypoints = tuple(LatLng(float(lat), float(lng)) for lng, lat in coordinates)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RoutingError(f"Malformed route geometry: {e}") from e
        if len(waypoints) < 2:
            raise RoutingError("Route has fewer than two coordinates")

        return Route(
            waypoints=waypoints,
            distance=polyline_length(waypoints),
            source=RouteSource.NETWORK,
        )
