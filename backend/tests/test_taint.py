import unittest
from unittest import mock

from flowtrace.errors import ParameterError
from flowtrace.graph_builder import build_graph
from flowtrace.taint import taint_analysis

from _ledger import chain, tx


class TaintAnalysisTests(unittest.TestCase):
    def test_mixer_chain_single_dominant_path(self) -> None:
        graph = build_graph(
            chain(["A", "B", "C", "Mixer", "Exchange"], [1000.0, 950.0, 920.0, 880.0])
        )
        flow = taint_analysis(graph, "A", "Exchange", max_hops=5)

        self.assertEqual(len(flow.paths), 1)
        self.assertEqual(flow.paths[0].hops, 4)
        self.assertEqual(flow.paths[0].address_sequence, ["A", "B", "C", "Mixer", "Exchange"])
        self.assertGreater(flow.overall_taint_percentage, 0.0)
        self.assertAlmostEqual(flow.paths[0].taint_percentage, 100.0)
        self.assertAlmostEqual(flow.source_outflow, 1000.0)

    def test_split_flows_are_proportional_and_conserved(self) -> None:
        graph = build_graph([
            tx("1", "A", "B", 600.0, 0),
            tx("2", "A", "C", 400.0, 0),
            tx("3", "B", "T", 300.0, 1),
            tx("4", "B", "D", 300.0, 1),
            tx("5", "C", "T", 400.0, 1),
        ])
        flow = taint_analysis(graph, "A", "T")

        self.assertEqual([p.address_sequence for p in flow.paths], [["A", "C", "T"], ["A", "B", "T"]])
        self.assertAlmostEqual(flow.paths[0].taint_amount, 400.0)
        self.assertAlmostEqual(flow.paths[1].taint_amount, 300.0)
        self.assertAlmostEqual(flow.total_tainted, 700.0)
        self.assertAlmostEqual(flow.overall_taint_percentage, 70.0)
        self.assertAlmostEqual(flow.target_inflow_percentage, 100.0)
        self.assertAlmostEqual(sum(p.taint_percentage for p in flow.paths), 100.0)
        self.assertLessEqual(sum(p.taint_amount for p in flow.paths), graph.total_outflow("A") + 1e-9)

    def test_loops_never_inflate_taint(self) -> None:
        graph = build_graph([
            tx("1", "A", "B", 100.0, 0),
            tx("2", "B", "C", 100.0, 1),
            tx("3", "C", "B", 50.0, 2),
            tx("4", "C", "T", 50.0, 3),
            tx("5", "B", "T", 20.0, 4),
        ])
        flow = taint_analysis(graph, "A", "T", max_hops=10)
        self.assertLessEqual(flow.total_tainted, graph.total_outflow("A") + 1e-9)
        for path in flow.paths:
            self.assertEqual(len(path.address_sequence), len(set(path.address_sequence)))

    def test_max_hops_bounds_reach(self) -> None:
        graph = build_graph(chain(["A", "B", "C", "D", "E"], [10.0, 10.0, 10.0, 10.0]))
        self.assertEqual(taint_analysis(graph, "A", "E", max_hops=3).paths, [])
        self.assertEqual(len(taint_analysis(graph, "A", "E", max_hops=4).paths), 1)

    def test_disconnected_and_degenerate(self) -> None:
        graph = build_graph(chain(["A", "B"], [10.0]) + [tx("z", "X", "Y", 5.0, 1)])
        for source, target in (("A", "Y"), ("A", "nobody"), ("A", "A"), ("B", "A")):
            flow = taint_analysis(graph, source, target)
            self.assertEqual(flow.paths, [])
            self.assertEqual(flow.total_tainted, 0.0)
            self.assertEqual(flow.overall_taint_percentage, 0.0)

    def test_negative_hops_rejected(self) -> None:
        graph = build_graph(chain(["A", "B"], [10.0]))
        with self.assertRaises(ParameterError):
            taint_analysis(graph, "A", "B", max_hops=-1)

    def test_branch_cap_returns_partial_flow(self) -> None:
        graph = build_graph(
            [tx("d", "A", "T", 200.0, 0)]
            + [tx(f"a{i}", "A", f"B{i}", 100.0, 1 + i) for i in range(3)]
            + [tx(f"b{i}", f"B{i}", "T", 100.0, 5 + i) for i in range(3)]
        )
        with mock.patch("flowtrace.taint.TAINT_MAX_BRANCHES", 1):
            with self.assertLogs("flowtrace.taint", level="WARNING"):
                partial = taint_analysis(graph, "A", "T")

        self.assertTrue(partial.truncated)
        self.assertEqual([p.address_sequence for p in partial.paths], [["A", "T"]])
        self.assertAlmostEqual(partial.total_tainted, 200.0)

        full = taint_analysis(graph, "A", "T")
        self.assertFalse(full.truncated)
        self.assertEqual(len(full.paths), 4)
        self.assertAlmostEqual(full.total_tainted, 500.0)


if __name__ == "__main__":
    unittest.main()
