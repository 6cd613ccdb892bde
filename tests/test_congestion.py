import os
import unittest
import sys
from types import SimpleNamespace
from log_config import setup_logging

sys.path.insert(
    0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
)

from congestion import (
    CongestionLevel,
    CongestionMonitor,
    IncidentType,
    ReroutingEngine,
    TrafficIncident,
)
from geometry import LatLng
from pathfinder import Pathfinder, Route
from road_graph import RoadGraph, RoadNode, RoadSegment, create_sample_network
from route_service import fallback_route

logger = setup_logging("test_congestion")


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def build_one_way_graph() -> RoadGraph:
    """a and b are joined only by the one-way road b -> a."""
    graph = RoadGraph()
    graph.add_road_node(RoadNode(id="a", position=LatLng(0.0, 0.0)))
    graph.add_road_node(RoadNode(id="b", position=LatLng(0.001, 0.0)))
    graph.add_segment(RoadSegment(id="ba", from_node_id="b", to_node_id="a", distance=0.001))
    return graph


class TestCongestionMonitor(unittest.TestCase):
    """Unit tests for the CongestionMonitor class.

    Attributes:
        graph (RoadGraph): A 5x5 sample network.
        clock (FakeClock): Controllable time source.
        monitor (CongestionMonitor): Monitor under test.
    """

    def setUp(self):
        self.graph = create_sample_network()
        self.pathfinder = Pathfinder(self.graph)
        self.clock = FakeClock()
        self.monitor = CongestionMonitor(self.graph, clock=self.clock)
        logger.info("Setup complete: CongestionMonitor initialized")

    def fill(self, segment_id: str) -> None:
        segment = self.graph.get_segment(segment_id)
        self.graph.update_segment_occupancy(segment_id, segment.max_capacity)

    def test_levels(self):
        """Test the density thresholds of each congestion level."""
        logger.info("Test levels")
        try:
            self.assertEqual(CongestionLevel.from_density(0.0), CongestionLevel.CLEAR)
            self.assertEqual(CongestionLevel.from_density(0.3), CongestionLevel.MODERATE)
            self.assertEqual(CongestionLevel.from_density(0.6), CongestionLevel.HEAVY)
            self.assertEqual(CongestionLevel.from_density(0.85), CongestionLevel.GRIDLOCK)
            self.assertEqual(CongestionLevel.GRIDLOCK.value_estimate, 0.925)
            logger.info("Passed test_levels")
        except AssertionError as e:
            logger.error(f"Failed test_levels: {e}")
            raise

    def test_update_congestion(self):
        """Test counting vehicles per segment.

        - Test if every vehicle whose route uses a segment is counted once.
        - Test if occupancy and history follow the counts.
        - Test if a segment that empties drops back to zero.
        """
        logger.info("Test update_congestion")
        try:
            route = self.pathfinder.find_path_between_nodes("node_0_0", "node_0_2")
            vehicles = [SimpleNamespace(route=route) for _ in range(3)]
            vehicles.append(SimpleNamespace(route=None))

            counts = self.monitor.update_congestion(vehicles)
            first = route.segment_ids[0]
            self.assertEqual(counts[first], 3)
            self.assertEqual(self.graph.get_segment(first).occupancy, 3)

            self.monitor.update_congestion([])
            self.assertEqual(self.graph.get_segment(first).occupancy, 0)
            self.assertEqual(self.monitor.get_history(first), [3, 0])
            logger.info("Passed test_update_congestion")
        except AssertionError as e:
            logger.error(f"Failed test_update_congestion: {e}")
            raise

    def test_predict_congestion(self):
        logger.info("Test predict_congestion")
        try:
            route = self.pathfinder.find_path_between_nodes("node_0_0", "node_0_2")
            self.assertAlmostEqual(self.monitor.predict_congestion(route), 0.1)
            self.fill(route.segment_ids[1])
            self.assertAlmostEqual(self.monitor.predict_congestion(route), (0.1 + 0.925) / 2)
            offline = fallback_route(LatLng(59.92, 10.75), LatLng(59.93, 10.76))
            self.assertEqual(self.monitor.predict_congestion(offline), 0.0)
            logger.info("Passed test_predict_congestion")
        except AssertionError as e:
            logger.error(f"Failed test_predict_congestion: {e}")
            raise

    def test_incidents(self):
        """Test incident bookkeeping and expiry."""
        logger.info("Test incidents")
        try:
            for index in range(4):
                self.monitor.add_incident(
                    TrafficIncident(
                        id=f"inc-{index}",
                        segment_id=f"edge_{index}",
                        type=IncidentType.ACCIDENT,
                        severity=0.8,
                        created_at=self.clock(),
                        duration=30.0,
                    )
                )
            self.assertEqual(len(self.monitor.get_segment_incidents("edge_0")), 1)
            self.assertEqual(len(self.monitor.get_blocked_segments()), 4)
            report = self.monitor.analyze_flow()
            self.assertEqual(len(report.critical_segments), 4)
            self.assertEqual(len(report.recommendations), 1)

            self.monitor.resolve_incident("inc-0")
            self.assertEqual(self.monitor.get_segment_incidents("edge_0"), [])

            self.clock.now += 30.0
            self.assertEqual(self.monitor.get_blocked_segments(), [])
            self.assertEqual(self.monitor.clean_expired_incidents(), 3)
            self.assertEqual(self.monitor.incidents, {})
            logger.info("Passed test_incidents")
        except AssertionError as e:
            logger.error(f"Failed test_incidents: {e}")
            raise

    def test_network_summary(self):
        logger.info("Test network_summary")
        try:
            self.assertEqual(self.monitor.get_network_congestion(), 0.0)
            for segment_id in self.graph.segments:
                self.fill(segment_id)
            self.assertEqual(self.monitor.get_network_congestion(), 1.0)
            self.assertEqual(self.monitor.count_gridlocked(), len(self.graph.segments))
            self.assertIn("gridlock", self.monitor.analyze_flow().recommendations[0])
            logger.info("Passed test_network_summary")
        except AssertionError as e:
            logger.error(f"Failed test_network_summary: {e}")
            raise


class TestReroutingEngine(unittest.TestCase):
    """Unit tests for the ReroutingEngine class."""

    def setUp(self):
        self.graph = create_sample_network()
        self.pathfinder = Pathfinder(self.graph)
        self.clock = FakeClock()
        self.monitor = CongestionMonitor(self.graph, clock=self.clock)
        self.engine = ReroutingEngine(self.pathfinder, self.monitor, clock=self.clock)
        self.route = self.pathfinder.find_path_between_nodes("node_0_0", "node_0_4")
        logger.info("Setup complete: ReroutingEngine initialized")

    def fill(self, segment_id: str) -> None:
        segment = self.graph.get_segment(segment_id)
        self.graph.update_segment_occupancy(segment_id, segment.max_capacity)

    def test_cooldown(self):
        """Test if a congested route triggers at most once per cooldown window."""
        logger.info("Test cooldown")
        try:
            for segment_id in self.route.segment_ids:
                self.fill(segment_id)
            self.assertTrue(self.engine.should_reroute(1, self.route))
            self.assertFalse(self.engine.should_reroute(1, self.route))
            self.clock.now += 4.9
            self.assertFalse(self.engine.should_reroute(1, self.route))
            self.assertTrue(self.engine.should_reroute(2, self.route))
            self.clock.now += 0.2
            self.assertTrue(self.engine.should_reroute(1, self.route))
            logger.info("Passed test_cooldown")
        except AssertionError as e:
            logger.error(f"Failed test_cooldown: {e}")
            raise

    def test_gridlock_ahead(self):
        """Test if gridlock on the third segment ahead triggers a reroute on its own."""
        logger.info("Test gridlock_ahead")
        try:
            self.assertFalse(self.engine.should_reroute(1, self.route))
            self.fill(self.route.segment_ids[2])
            self.assertLess(self.monitor.predict_congestion(self.route), 0.7)
            self.assertTrue(self.engine.should_reroute(1, self.route))
            logger.info("Passed test_gridlock_ahead")
        except AssertionError as e:
            logger.error(f"Failed test_gridlock_ahead: {e}")
            raise

    def test_threshold(self):
        """Test the threshold clamp and that heavy traffic only triggers below it."""
        logger.info("Test threshold")
        try:
            self.engine.set_reroute_threshold(1.5)
            self.assertEqual(self.engine.reroute_threshold, 1.0)
            self.engine.set_reroute_threshold(-1)
            self.assertEqual(self.engine.reroute_threshold, 0.0)

            for segment_id in self.route.segment_ids:
                segment = self.graph.get_segment(segment_id)
                self.graph.update_segment_occupancy(segment_id, round(segment.max_capacity * 0.75))
            self.engine.set_reroute_threshold(0.8)
            self.assertFalse(self.engine.should_reroute(1, self.route))
            self.engine.set_reroute_threshold(0.7)
            self.assertTrue(self.engine.should_reroute(1, self.route))
            logger.info("Passed test_threshold")
        except AssertionError as e:
            logger.error(f"Failed test_threshold: {e}")
            raise

    def test_no_route(self):
        logger.info("Test no_route")
        self.assertFalse(self.engine.should_reroute(1, None))
        offline = fallback_route(LatLng(59.92, 10.75), LatLng(59.93, 10.76))
        self.assertFalse(self.engine.should_reroute(1, offline))
        self.assertIsNone(self.engine.handle_stuck_vehicle(1, LatLng(59.92, 10.75), None))
        logger.info("Passed test_no_route")

    def test_alternative_route(self):
        """Test if an alternative avoiding a gridlocked segment is accepted."""
        logger.info("Test alternative_route")
        try:
            route = self.pathfinder.find_path_between_nodes("node_0_0", "node_0_2")
            self.fill(route.segment_ids[1])
            start = self.graph.get_node("node_0_0").position
            alternative = self.engine.calculate_alternative_route(1, start, route)
            self.assertIsNotNone(alternative)
            self.assertNotIn(route.segment_ids[1], alternative.segment_ids)
            self.assertIn(1, self.engine.last_reroute)

            self.engine.forget(1)
            self.assertNotIn(1, self.engine.last_reroute)
            logger.info("Passed test_alternative_route")
        except AssertionError as e:
            logger.error(f"Failed test_alternative_route: {e}")
            raise

    def test_stuck_vehicle(self):
        """Test if a stuck vehicle gets a fresh route to its destination."""
        logger.info("Test stuck_vehicle")
        try:
            position = self.graph.get_node("node_1_1").position
            recovered = self.engine.handle_stuck_vehicle(7, position, self.route)
            self.assertIsNotNone(recovered)
            self.assertEqual(recovered.node_ids[0], "node_1_1")
            self.assertEqual(recovered.node_ids[-1], "node_0_4")
            self.assertEqual(self.engine.last_reroute[7], self.clock())
            logger.info("Passed test_stuck_vehicle")
        except AssertionError as e:
            logger.error(f"Failed test_stuck_vehicle: {e}")
            raise

    def test_no_better_road_mid_route(self):
        """Test if a vehicle halfway along its route keeps it when the only
        candidate is the route's own remaining tail."""
        logger.info("Test no_better_road_mid_route")
        try:
            position = self.graph.get_node("node_0_2").position
            remaining = self.engine.remaining_route(self.route, position)
            self.assertEqual(remaining.node_ids, ("node_0_2", "node_0_3", "node_0_4"))
            self.assertAlmostEqual(remaining.distance, self.route.distance / 2)

            alternative = self.engine.calculate_alternative_route(1, position, self.route)
            self.assertIsNone(alternative)
            self.assertNotIn(1, self.engine.last_reroute)
            logger.info("Passed test_no_better_road_mid_route")
        except AssertionError as e:
            logger.error(f"Failed test_no_better_road_mid_route: {e}")
            raise

    def test_alternative_mid_route(self):
        """Test if gridlock on the remaining part of the route is detoured from the live position."""
        logger.info("Test alternative_mid_route")
        try:
            self.fill(self.route.segment_ids[3])
            position = self.graph.get_node("node_0_2").position
            alternative = self.engine.calculate_alternative_route(1, position, self.route)
            self.assertIsNotNone(alternative)
            self.assertEqual(alternative.node_ids[0], "node_0_2")
            self.assertEqual(alternative.node_ids[-1], "node_0_4")
            self.assertNotIn(self.route.segment_ids[3], alternative.segment_ids)
            logger.info("Passed test_alternative_mid_route")
        except AssertionError as e:
            logger.error(f"Failed test_alternative_mid_route: {e}")
            raise

    def test_stuck_vehicle_unreachable_destination(self):
        """Test the last-resort recovery on a graph where the destination cannot be reached.

        - Test if no route is returned and no cooldown starts when nothing is reachable.
        - Test if a reachable neighbouring intersection is used once a road leads there.
        """
        logger.info("Test stuck_vehicle_unreachable_destination")
        try:
            graph = build_one_way_graph()
            engine = ReroutingEngine(
                Pathfinder(graph), CongestionMonitor(graph, clock=self.clock), clock=self.clock
            )
            a, b = graph.get_node("a").position, graph.get_node("b").position
            route = Route(waypoints=(a, b), node_ids=("a", "b"), distance=0.001)

            self.assertIsNone(engine.handle_stuck_vehicle(1, a, route))
            self.assertNotIn(1, engine.last_reroute)

            graph.add_road_node(RoadNode(id="c", position=LatLng(0.0, 0.001)))
            graph.add_segment(RoadSegment(id="ac", from_node_id="a", to_node_id="c", distance=0.001))
            recovered = engine.handle_stuck_vehicle(1, a, route)
            self.assertIsNotNone(recovered)
            self.assertEqual(recovered.node_ids, ("a", "c"))
            self.assertGreaterEqual(len(recovered.waypoints), 2)
            self.assertIn(1, engine.last_reroute)
            logger.info("Passed test_stuck_vehicle_unreachable_destination")
        except AssertionError as e:
            logger.error(f"Failed test_stuck_vehicle_unreachable_destination: {e}")
            raise


def suite():
    suite = unittest.TestSuite()
    suite.addTest(TestCongestionMonitor("test_levels"))
    suite.addTest(TestCongestionMonitor("test_update_congestion"))
    suite.addTest(TestCongestionMonitor("test_predict_congestion"))
    suite.addTest(TestCongestionMonitor("test_incidents"))
    suite.addTest(TestCongestionMonitor("test_network_summary"))
    suite.addTest(TestReroutingEngine("test_cooldown"))
    suite.addTest(TestReroutingEngine("test_gridlock_ahead"))
    suite.addTest(TestReroutingEngine("test_threshold"))
    suite.addTest(TestReroutingEngine("test_no_route"))
    suite.addTest(TestReroutingEngine("test_alternative_route"))
    suite.addTest(TestReroutingEngine("test_stuck_vehicle"))
    suite.addTest(TestReroutingEngine("test_no_better_road_mid_route"))
    suite.addTest(TestReroutingEngine("test_alternative_mid_route"))
    suite.addTest(TestReroutingEngine("test_stuck_vehicle_unreachable_destination"))
    return suite


if __name__ == "__main__":
    runner = unittest.TextTestRunner()
    runner.run(suite())
