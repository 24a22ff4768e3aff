import unittest
from datetime import timedelta
from unittest import mock

from flowtrace.errors import ParameterError
from flowtrace.graph_builder import build_graph
from flowtrace.models import Direction, TimeWindow
from flowtrace.traversal import deep_trace

from _ledger import BASE, chain, tx


class DeepTraceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.graph = build_graph(
            chain(["A", "B", "C", "D"], [100.0, 90.0, 80.0])
            + [tx("x1", "A", "B", 50.0, 0.5), tx("x2", "E", "B", 5.0, 4)]
        )

    def test_depth_zero_returns_only_start(self) -> None:
        result = deep_trace(self.graph, "A", max_depth=0)
        self.assertEqual(list(result.nodes), ["A"])
        self.assertEqual(result.edges, [])
        self.assertEqual(result.statistics.total_nodes, 1)
        self.assertEqual(result.statistics.max_depth_reached, 0)

    def test_outflow_respects_depth(self) -> None:
        result = deep_trace(self.graph, "A", direction=Direction.OUTFLOW, max_depth=2)
        depths = {a: n.min_depth for a, n in result.nodes.items()}
        self.assertEqual(depths, {"A": 0, "B": 1, "C": 2})
        pairs = {(e.from_address, e.to_address) for e in result.edges}
        self.assertEqual(pairs, {("A", "B"), ("B", "C")})

    def test_parallel_transfers_aggregate(self) -> None:
        result = deep_trace(self.graph, "A", direction=Direction.OUTFLOW, max_depth=1)
        node = result.nodes["B"]
        self.assertAlmostEqual(node.aggregated_volume, 150.0)
        self.assertEqual(node.transaction_count, 2)
        self.assertEqual(node.first_seen, BASE)
        edge = result.edges[0]
        self.assertEqual(edge.count, 2)
        self.assertAlmostEqual(edge.amount, 150.0)

    def test_inflow_walks_backwards(self) -> None:
        result = deep_trace(self.graph, "D", direction=Direction.INFLOW, max_depth=3)
        depths = {a: n.min_depth for a, n in result.nodes.items()}
        self.assertEqual(depths, {"D": 0, "C": 1, "B": 2, "A": 3, "E": 3})

    def test_both_directions(self) -> None:
        result = deep_trace(self.graph, "B", direction=Direction.BOTH, max_depth=1)
        self.assertEqual(set(result.nodes), {"A", "B", "C", "E"})
        self.assertEqual(result.statistics.max_depth_reached, 1)

    def test_min_amount_and_time_window_filter(self) -> None:
        result = deep_trace(self.graph, "B", direction=Direction.INFLOW, max_depth=1, min_amount=10.0)
        self.assertEqual(set(result.nodes), {"A", "B"})

        window = TimeWindow(start=BASE + timedelta(minutes=10), end=BASE + timedelta(hours=5))
        result = deep_trace(self.graph, "B", direction=Direction.INFLOW, max_depth=1, time_window=window)
        self.assertAlmostEqual(result.nodes["A"].aggregated_volume, 50.0)
        self.assertIn("E", result.nodes)

    def test_unknown_start_is_empty(self) -> None:
        result = deep_trace(self.graph, "nobody", max_depth=3)
        self.assertEqual(result.nodes, {})
        self.assertEqual(result.edges, [])
        self.assertFalse(result.statistics.truncated)

    def test_depth_is_clamped_and_negative_rejected(self) -> None:
        result = deep_trace(self.graph, "A", max_depth=500)
        self.assertEqual(result.max_depth, 20)
        with self.assertRaises(ParameterError):
            deep_trace(self.graph, "A", max_depth=-1)

    def test_cycles_do_not_loop(self) -> None:
        graph = build_graph(chain(["X", "Y", "Z", "X"], [10.0, 10.0, 10.0]))
        result = deep_trace(graph, "X", direction=Direction.OUTFLOW, max_depth=10)
        self.assertEqual({a: n.min_depth for a, n in result.nodes.items()}, {"X": 0, "Y": 1, "Z": 2})
        self.assertEqual(len(result.edges), 3)

    def test_node_cap_returns_partial_result(self) -> None:
        graph = build_graph([tx(f"s{i}", "HUB", f"L{i}", 10.0, i) for i in range(5)])
        with mock.patch("flowtrace.traversal.DEEP_TRACE_MAX_NODES", 3):
            with self.assertLogs("flowtrace.traversal", level="WARNING"):
                result = deep_trace(graph, "HUB", direction=Direction.OUTFLOW, max_depth=1)

        self.assertTrue(result.statistics.truncated)
        self.assertEqual(set(result.nodes), {"HUB", "L0", "L1"})
        self.assertEqual({e.to_address for e in result.edges}, {"L0", "L1"})

        full = deep_trace(graph, "HUB", direction=Direction.OUTFLOW, max_depth=1)
        self.assertFalse(full.statistics.truncated)
        self.assertEqual(full.statistics.total_nodes, 6)


if __name__ == "__main__":
    unittest.main()
