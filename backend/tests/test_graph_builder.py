import random
import unittest

from flowtrace.graph_builder import TransactionGraph, build_graph

from _ledger import tx


class TransactionGraphTests(unittest.TestCase):
    def _ledger(self):
        return [
            tx("t1", "A", "B", 100.0, 0),
            tx("t2", "A", "B", 50.0, 2),
            tx("t3", "B", "C", 140.0, 3),
            tx("t4", "C", "A", 10.0, 5),
            tx("t5", "A", "D", 25.0, 1),
        ]

    def test_canonical_order_ignores_input_order(self) -> None:
        ledger = self._ledger()
        shuffled = list(ledger)
        random.Random(7).shuffle(shuffled)

        g1 = TransactionGraph(ledger)
        g2 = TransactionGraph(shuffled)

        self.assertEqual([t.id for t in g1.transactions], ["t1", "t5", "t2", "t3", "t4"])
        self.assertEqual(g1.transactions, g2.transactions)
        self.assertEqual(g1.identity, g2.identity)
        self.assertEqual(g1.addresses, g2.addresses)
        self.assertEqual(g1.digest, g2.digest)

    def test_digest_tells_apart_sets_with_same_identity(self) -> None:
        to_b = build_graph([tx("1", "A", "B", 10.0)])
        to_c = build_graph([tx("1", "A", "C", 10.0)])
        self.assertEqual(to_b.identity, to_c.identity)
        self.assertNotEqual(to_b.digest, to_c.digest)

    def test_per_address_lists_are_time_sorted(self) -> None:
        g = build_graph(self._ledger())
        self.assertEqual([t.id for t in g.outgoing("A")], ["t1", "t5", "t2"])
        self.assertEqual([t.id for t in g.incoming("B")], ["t1", "t2"])
        self.assertEqual(list(g.outgoing("D")), [])
        self.assertEqual(g.successors("A"), ["B", "D"])

    def test_turnover_aggregates(self) -> None:
        g = build_graph(self._ledger())
        self.assertAlmostEqual(g.total_outflow("A"), 175.0)
        self.assertAlmostEqual(g.total_inflow("A"), 10.0)
        self.assertAlmostEqual(g.total_volume("B"), 290.0)
        self.assertEqual(g.total_outflow("unknown"), 0.0)

    def test_networkx_views(self) -> None:
        g = build_graph(self._ledger())
        self.assertEqual(g.multigraph.number_of_edges(), 5)
        self.assertEqual(g.multigraph.number_of_edges("A", "B"), 2)
        self.assertEqual(g.digraph.number_of_edges(), 4)
        self.assertEqual(g.digraph["A"]["B"]["tx_count"], 2)
        self.assertAlmostEqual(g.digraph["A"]["B"]["total_amount"], 150.0)
        self.assertEqual(g.multigraph.nodes["A"]["sent_count"], 3)
        sccs = g.digraph.graph["_sccs"]
        self.assertIn({"A", "B", "C"}, sccs)

    def test_first_seen_rank(self) -> None:
        g = build_graph(self._ledger())
        self.assertEqual(g.first_seen_rank("A"), 0)
        self.assertEqual(g.first_seen_rank("B"), 1)
        self.assertEqual(g.first_seen_rank("D"), 2)
        self.assertEqual(g.first_seen_rank("nobody"), len(g.addresses))

    def test_membership_and_empty_graph(self) -> None:
        g = build_graph(self._ledger())
        self.assertIn("C", g)
        self.assertNotIn("Z", g)
        self.assertEqual(len(g), 5)

        empty = build_graph([])
        self.assertEqual(len(empty), 0)
        self.assertEqual(empty.addresses, [])
        self.assertTrue(empty.frame.empty)
        self.assertEqual(empty.identity, (0,))


if __name__ == "__main__":
    unittest.main()
