import asyncio
import unittest
from unittest import mock

from flowtrace.engine import ForensicsEngine
from flowtrace.models import Operation, TaskRequest, TaskStatus
from flowtrace.worker import ForensicsWorker

from _ledger import as_payload, chain, tx


def _ledger():
    return as_payload(chain(["A", "B", "C", "Mixer", "Exchange"], [1000.0, 950.0, 920.0, 880.0]))


class ForensicsEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = ForensicsEngine()

    def _request(self, operation, **payload):
        payload.setdefault("transactions", _ledger())
        return TaskRequest(operation=operation, payload=payload, request_id="req-1")

    def test_each_operation_dispatches(self) -> None:
        cases = [
            (Operation.DETECT_PATTERNS, {}),
            (Operation.CLUSTER_ADDRESSES, {}),
            (Operation.DEEP_TRACE, {"startAddress": "A", "direction": "outflow", "maxDepth": 2}),
            (Operation.FIND_PATHS, {"source": "A", "target": "Exchange"}),
            (Operation.TAINT_ANALYSIS, {"sourceAddress": "A", "targetAddress": "Exchange", "maxHops": 5}),
        ]
        for operation, payload in cases:
            with self.subTest(operation=operation):
                response = self.engine.handle(self._request(operation, **payload))
                self.assertEqual(response.status, TaskStatus.SUCCESS)
                self.assertEqual(response.request_id, "req-1")
                self.assertIsNone(response.error)

    def test_results_use_camel_case(self) -> None:
        response = self.engine.handle(
            self._request(Operation.DEEP_TRACE, startAddress="A", direction="outflow", maxDepth=2)
        )
        data = response.data
        self.assertEqual(data["startAddress"], "A")
        self.assertEqual(set(data["nodes"]), {"A", "B", "C"})
        self.assertEqual(data["nodes"]["B"]["minDepth"], 1)
        self.assertEqual(data["edges"][0]["from"], "A")
        self.assertIn("totalNodes", data["statistics"])

        taint = self.engine.handle(
            self._request(Operation.TAINT_ANALYSIS, sourceAddress="A", targetAddress="Exchange", maxHops=5)
        ).data
        self.assertEqual(taint["paths"][0]["hops"], 4)
        self.assertGreater(taint["overallTaintPercentage"], 0)

    def test_identical_request_is_served_from_cache(self) -> None:
        request = self._request(Operation.FIND_PATHS, source="A", target="Exchange")
        first = self.engine.handle(request)
        second = self.engine.handle(request)
        self.assertFalse(first.cached)
        self.assertTrue(second.cached)
        self.assertEqual(first.data, second.data)
        _, early = self.engine.prepare(request)
        self.assertTrue(early.cached)

    def test_mutating_a_response_leaves_cache_intact(self) -> None:
        request = self._request(Operation.DEEP_TRACE, startAddress="A", direction="outflow", maxDepth=2)
        first = self.engine.handle(request)
        first.data["nodes"].clear()

        second = self.engine.handle(request)
        self.assertTrue(second.cached)
        self.assertEqual(set(second.data["nodes"]), {"A", "B", "C"})
        second.data["edges"].clear()
        self.assertEqual(len(self.engine.handle(request).data["edges"]), 2)

    def test_force_recomputes(self) -> None:
        request = self._request(Operation.DETECT_PATTERNS)
        self.engine.handle(request)
        forced = self.engine.handle(request.model_copy(update={"force": True}))
        self.assertFalse(forced.cached)
        parsed, early = self.engine.prepare(request.model_copy(update={"force": True}))
        self.assertIsNotNone(parsed)
        self.assertIsNone(early)

    def _trace(self, receiver, **extra):
        payload = {
            "transactions": as_payload([tx("1", "A", receiver, 10.0)]),
            "startAddress": "A",
            "direction": "outflow",
        }
        payload.update(extra)
        return TaskRequest(operation=Operation.DEEP_TRACE, payload=payload)

    def test_forced_rerun_rebuilds_graph(self) -> None:
        # Same id, time and amount: only the receiver differs.
        first = self.engine.handle(self._trace("B", maxDepth=1))
        self.assertEqual(set(first.data["nodes"]), {"A", "B"})

        forced = self.engine.handle(self._trace("C", maxDepth=1).model_copy(update={"force": True}))
        self.assertFalse(forced.cached)
        self.assertEqual(set(forced.data["nodes"]), {"A", "C"})

    def test_graph_not_reused_when_only_addresses_change(self) -> None:
        self.engine.handle(self._trace("B", maxDepth=1))
        other = self.engine.handle(self._trace("C", maxDepth=2))
        self.assertEqual(set(other.data["nodes"]), {"A", "C"})

    def test_graph_is_reused_for_same_ledger(self) -> None:
        self.engine.handle(self._request(Operation.DETECT_PATTERNS))
        graph = self.engine._graph
        self.engine.handle(self._request(Operation.CLUSTER_ADDRESSES))
        self.assertIs(self.engine._graph, graph)

    def test_negative_parameter_is_structured_error(self) -> None:
        response = self.engine.handle(
            self._request(Operation.FIND_PATHS, source="A", target="Exchange", maxDepth=-2)
        )
        self.assertEqual(response.status, TaskStatus.ERROR)
        self.assertEqual(response.error.code, "invalid_parameter")
        self.assertIsNone(response.data)

    def test_zero_parameter_is_clamped(self) -> None:
        response = self.engine.handle(
            self._request(Operation.FIND_PATHS, source="A", target="B", maxDepth=0, maxPaths=0)
        )
        self.assertEqual(response.status, TaskStatus.SUCCESS)
        self.assertEqual(len(response.data["paths"]), 1)

    def test_malformed_payload_is_structured_error(self) -> None:
        bad_amount = _ledger()
        bad_amount[0]["amount"] = -5
        for payload in (
            {"transactions": bad_amount},
            {"transactions": [{"id": "x"}]},
        ):
            with self.subTest(payload=payload):
                response = self.engine.handle(TaskRequest(operation=Operation.DETECT_PATTERNS, payload=payload))
                self.assertEqual(response.status, TaskStatus.ERROR)
                self.assertEqual(response.error.code, "invalid_payload")

        response = self.engine.handle(TaskRequest(operation=Operation.FIND_PATHS, payload={"transactions": []}))
        self.assertEqual(response.error.code, "invalid_payload")

    def test_short_transaction_keys_accepted(self) -> None:
        payload = {
            "transactions": [
                {"id": "1", "from": "A", "to": "B", "amount": 5, "date": "2024-01-01T00:00:00Z"},
            ],
            "startAddress": "A",
        }
        response = self.engine.handle(TaskRequest(operation=Operation.DEEP_TRACE, payload=payload))
        self.assertEqual(response.status, TaskStatus.SUCCESS)
        self.assertIn("B", response.data["nodes"])


class ForensicsWorkerTests(unittest.TestCase):
    def _request(self, **extra):
        return TaskRequest(
            operation=Operation.TAINT_ANALYSIS,
            payload={"transactions": _ledger(), "sourceAddress": "A", "targetAddress": "Exchange"},
            **extra,
        )

    def test_not_ready_before_start(self) -> None:
        worker = ForensicsWorker()
        response = worker.submit(self._request()).result(timeout=1)
        self.assertEqual(response.status, TaskStatus.NOT_READY)
        self.assertFalse(worker.is_ready())

    def test_requests_run_in_order_and_cache(self) -> None:
        worker = ForensicsWorker()
        worker.start()
        try:
            futures = [worker.submit(self._request(request_id=f"r{i}")) for i in range(3)]
            responses = [f.result(timeout=30) for f in futures]
            self.assertEqual([r.request_id for r in responses], ["r0", "r1", "r2"])
            self.assertTrue(all(r.status == TaskStatus.SUCCESS for r in responses))
            self.assertEqual(worker.pending, 0)

            again = worker.submit(self._request(request_id="r3"))
            self.assertTrue(again.done())
            self.assertTrue(again.result().cached)
        finally:
            worker.stop()
        self.assertFalse(worker.is_ready())
        self.assertEqual(worker.submit(self._request()).result(timeout=1).status, TaskStatus.NOT_READY)

    def test_each_request_validated_once_and_missed_once(self) -> None:
        worker = ForensicsWorker()
        worker.start()
        try:
            with mock.patch.object(worker.engine, "_parse", wraps=worker.engine._parse) as parse:
                first = worker.submit(self._request()).result(timeout=30)
                self.assertEqual(parse.call_count, 1)
            self.assertFalse(first.cached)
            self.assertEqual(worker.engine.cache.stats()["misses"], 1)

            second = worker.submit(self._request()).result(timeout=30)
            self.assertTrue(second.cached)
            stats = worker.engine.cache.stats()
            self.assertEqual((stats["hits"], stats["misses"]), (1, 1))
        finally:
            worker.stop()

    def test_stop_during_submit_resolves_not_ready(self) -> None:
        worker = ForensicsWorker()
        worker.start()
        prepare = worker.engine.prepare

        def prepare_then_stop(request):
            outcome = prepare(request)
            worker.stop()
            return outcome

        with mock.patch.object(worker.engine, "prepare", side_effect=prepare_then_stop):
            future = worker.submit(self._request())
        self.assertEqual(future.result(timeout=5).status, TaskStatus.NOT_READY)
        self.assertEqual(worker.pending, 0)

    def test_execute_awaits_result(self) -> None:
        worker = ForensicsWorker()
        worker.start()
        try:
            response = asyncio.run(worker.execute(self._request()))
        finally:
            worker.stop()
        self.assertEqual(response.status, TaskStatus.SUCCESS)
        self.assertIsNotNone(response.request_id)
        self.assertEqual(response.data["paths"][0]["hops"], 4)


if __name__ == "__main__":
    unittest.main()
