import os
import random
import threading
import unittest
import sys
from log_config import setup_logging

import requests

sys.path.insert(
    0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
)

from dispatch_config import RouteServiceConfig
from geometry import LatLng
from pathfinder import RouteSource
from route_service import RateLimited, RouteService, RoutingError, fallback_route

logger = setup_logging("test_route_service")

START = LatLng(59.92, 10.75)
END = LatLng(59.93, 10.76)

OK_BODY = {
    "code": "Ok",
    "routes": [
        {"geometry": {"coordinates": [[10.75, 59.92], [10.755, 59.925], [10.76, 59.93]]}}
    ],
}


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None):
        self.status_code = status_code
        self.body = body

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    """Stands in for `requests.Session`, replaying queued responses.

    Once the queue is empty the last response is repeated. Queued exceptions
    are raised instead of returned.
    """

    def __init__(self, *responses, gate: threading.Event | None = None):
        self.responses = list(responses)
        self.calls = []
        self.gate = gate
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class TestRouteService(unittest.TestCase):
    """Unit tests for the RouteService client.

    Time and sleeping are faked, so retries and breaker cooldowns run instantly.

    Attributes:
        clock (FakeClock): Shared time source.
        sleeps (list[float]): Delays the client asked to sleep for.
    """

    def setUp(self):
        self.clock = FakeClock()
        self.sleeps = []
        logger.info("Setup complete")

    def make_service(self, session, **overrides) -> RouteService:
        settings = {"max_retries": 0, "min_request_interval": 0.0}
        settings.update(overrides)
        service = RouteService(
            RouteServiceConfig(**settings),
            session=session,
            clock=self.clock,
            sleep=self.sleeps.append,
            rng=random.Random(0),
        )
        self.addCleanup(service.close)
        return service

    def test_parse_success(self):
        """Test a successful lookup.

        - Test if coordinates are sent as lng,lat and geojson geometry is requested.
        - Test if the geometry is converted back to lat/lng waypoints.
        """
        logger.info("Test parse_success")
        try:
            session = FakeSession(FakeResponse(200, OK_BODY))
            service = self.make_service(session)
            route = service.get_route(START, END)

            url, params, timeout = session.calls[0]
            self.assertEqual(
                url, "https://router.project-osrm.org/route/v1/driving/10.75,59.92;10.76,59.93"
            )
            self.assertEqual(params, {"overview": "full", "geometries": "geojson"})
            self.assertEqual(timeout, 6.5)
            self.assertEqual(route.source, RouteSource.NETWORK)
            self.assertEqual(route.waypoints[0], START)
            self.assertEqual(route.waypoints[-1], END)
            self.assertEqual(len(route), 3)
            self.assertGreater(route.distance, 0)
            logger.info("Passed test_parse_success")
        except AssertionError as e:
            logger.error(f"Failed test_parse_success: {e}")
            raise

    def test_cache(self):
        """Test if a cached route is served without a request until its TTL passes."""
        logger.info("Test cache")
        try:
            service = self.make_service(FakeSession(FakeResponse(200, OK_BODY)))
            first = service.get_route(START, END)
            # Rounding to 5 decimals maps both to the same key
            second = service.get_route(LatLng(59.920001, 10.750001), END)
            self.assertIs(first, second)
            self.assertEqual(service.attempts, 1)

            self.clock.now += 300
            service.get_route(START, END)
            self.assertEqual(service.attempts, 2)
            logger.info("Passed test_cache")
        except AssertionError as e:
            logger.error(f"Failed test_cache: {e}")
            raise

    def test_circuit_breaker(self):
        """Test the breaker.

        - Test if six failed lookups open it.
        - Test if the seventh lookup returns the fallback without a request.
        - Test if requests resume after the cooldown.
        """
        logger.info("Test circuit_breaker")
        try:
            service = self.make_service(FakeSession(FakeResponse(500)))
            for _ in range(6):
                route = service.get_route(START, END)
                self.assertEqual(route.source, RouteSource.FALLBACK)
            self.assertEqual(service.attempts, 6)
            self.assertTrue(service.breaker.is_open())

            route = service.get_route(START, END)
            self.assertEqual(route.source, RouteSource.FALLBACK)
            self.assertEqual(service.attempts, 6)

            self.clock.now += 60
            self.assertFalse(service.breaker.is_open())
            service.get_route(START, END)
            self.assertEqual(service.attempts, 7)
            logger.info("Passed test_circuit_breaker")
        except AssertionError as e:
            logger.error(f"Failed test_circuit_breaker: {e}")
            raise

    def test_fallback_not_cached(self):
        logger.info("Test fallback_not_cached")
        session = FakeSession(FakeResponse(503), FakeResponse(200, OK_BODY))
        service = self.make_service(session)
        self.assertEqual(service.get_route(START, END).source, RouteSource.FALLBACK)
        self.assertEqual(len(service.cache), 0)
        self.assertEqual(service.get_route(START, END).source, RouteSource.NETWORK)
        self.assertEqual(service.breaker.failures, 0)
        logger.info("Passed test_fallback_not_cached")

    def test_rate_limit_backoff(self):
        """Test if HTTP 429 waits 2 s, then 4 s, before the successful retry."""
        logger.info("Test rate_limit_backoff")
        try:
            session = FakeSession(
                FakeResponse(429), FakeResponse(429), FakeResponse(200, OK_BODY)
            )
            service = self.make_service(session, max_retries=2)
            route = service.get_route(START, END)
            self.assertEqual(route.source, RouteSource.NETWORK)
            self.assertEqual(self.sleeps, [2.0, 4.0])
            self.assertEqual(service.attempts, 3)
            logger.info("Passed test_rate_limit_backoff")
        except AssertionError as e:
            logger.error(f"Failed test_rate_limit_backoff: {e}")
            raise

    def test_exponential_backoff(self):
        logger.info("Test exponential_backoff")
        try:
            session = FakeSession(FakeResponse(500), FakeResponse(502), FakeResponse(500))
            service = self.make_service(session, max_retries=2)
            route = service.get_route(START, END)
            self.assertEqual(route.source, RouteSource.FALLBACK)
            self.assertEqual(len(self.sleeps), 2)
            self.assertTrue(0.45 <= self.sleeps[0] <= 0.7)
            self.assertTrue(0.9 <= self.sleeps[1] <= 1.15)
            # One failed lookup counts once towards the breaker
            self.assertEqual(service.breaker.failures, 1)
            logger.info("Passed test_exponential_backoff")
        except AssertionError as e:
            logger.error(f"Failed test_exponential_backoff: {e}")
            raise

    def test_request_spacing(self):
        logger.info("Test request_spacing")
        service = self.make_service(
            FakeSession(FakeResponse(200, OK_BODY)), min_request_interval=0.5
        )
        service.get_route(START, END)
        service.get_route(END, START)
        self.assertEqual(self.sleeps, [0.5])
        logger.info("Passed test_request_spacing")

    def test_malformed_responses(self):
        """Test if every unusable response is reported as a RoutingError."""
        logger.info("Test malformed_responses")
        try:
            cases = [
                FakeResponse(200, ValueError("not json")),
                FakeResponse(200, {"code": "NoRoute"}),
                FakeResponse(200, ["Ok"]),
                FakeResponse(200, {"code": "Ok", "routes": []}),
                FakeResponse(200, {"code": "Ok", "routes": [{"geometry": {"coordinates": [[10.75, 59.92]]}}]}),
                FakeResponse(404),
                requests.ConnectionError("refused"),
            ]
            for response in cases:
                service = self.make_service(FakeSession(response))
                with self.assertRaises(RoutingError):
                    service.fetch_route(START, END)

            service = self.make_service(FakeSession(FakeResponse(429)))
            with self.assertRaises(RateLimited):
                service.fetch_route(START, END)
            logger.info("Passed test_malformed_responses")
        except AssertionError as e:
            logger.error(f"Failed test_malformed_responses: {e}")
            raise

    def test_shared_in_flight_request(self):
        """Test if concurrent lookups of the same pair share one request."""
        logger.info("Test shared_in_flight_request")
        try:
            gate = threading.Event()
            session = FakeSession(FakeResponse(200, OK_BODY), gate=gate)
            service = self.make_service(session)
            first = service.get_route_async(START, END)
            second = service.get_route_async(START, END)
            self.assertIs(first, second)
            gate.set()
            self.assertEqual(first.result(timeout=5).source, RouteSource.NETWORK)
            self.assertEqual(service.attempts, 1)
            logger.info("Passed test_shared_in_flight_request")
        except AssertionError as e:
            logger.error(f"Failed test_shared_in_flight_request: {e}")
            raise

    def test_fallback_route(self):
        logger.info("Test fallback_route")
        route = fallback_route(START, END, is_emergency=True)
        self.assertEqual(route.source, RouteSource.FALLBACK)
        self.assertTrue(route.is_emergency)
        self.assertEqual(route.start, START)
        self.assertEqual(route.end, END)
        self.assertEqual(route.segment_ids, ())
        logger.info("Passed test_fallback_route")


def suite():
    suite = unittest.TestSuite()
    suite.addTest(TestRouteService("test_parse_success"))
    suite.addTest(TestRouteService("test_cache"))
    suite.addTest(TestRouteService("test_circuit_breaker"))
    suite.addTest(TestRouteService("test_fallback_not_cached"))
    suite.addTest(TestRouteService("test_rate_limit_backoff"))
    suite.addTest(TestRouteService("test_exponential_backoff"))
    suite.addTest(TestRouteService("test_request_spacing"))
    suite.addTest(TestRouteService("test_malformed_responses"))
    suite.addTest(TestRouteService("test_shared_in_flight_request"))
    suite.addTest(TestRouteService("test_fallback_route"))
    return suite


if __name__ == "__main__":
    runner = unittest.TextTestRunner()
    runner.run(suite())
