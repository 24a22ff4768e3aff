"""
engine.py – Dispatch tagged task requests to the analysis algorithms.

``ForensicsEngine.handle`` is the single synchronous entry point: validate the
payload, consult the result cache, build (or reuse) the graph, run the
operation and wrap the outcome in a ``TaskResponse``.  Malformed payloads and
negative parameters come back as structured error responses; anything else
that goes wrong propagates to the caller.

A forced request drops its cache entry and always rebuilds the graph.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Hashable, Optional, Tuple

from pydantic import ValidationError

from .cache import CacheKey, ResultCache, make_key
from .clustering import cluster_addresses
from .errors import ParameterError
from .graph_builder import TransactionGraph
from .models import (
    PAYLOAD_MODELS,
    ClusterAddressesPayload,
    DeepTracePayload,
    DetectPatternsPayload,
    FindPathsPayload,
    TaintAnalysisPayload,
    TaskError,
    TaskRequest,
    TaskResponse,
    TaskStatus,
    TransactionsPayload,
)
from .path_finder import find_paths
from .pattern_detector import detect_patterns
from .taint import taint_analysis
from .traversal import deep_trace
from .utils import address_digest, transaction_set_identity

log = logging.getLogger(__name__)

ParsedRequest = Tuple[TransactionsPayload, Hashable, CacheKey]


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value.model_dump(mode="json", by_alias=True)


class ForensicsEngine:
    def __init__(self, cache: Optional[ResultCache] = None) -> None:
        self.cache = cache if cache is not None else ResultCache()
        self._graph: Optional[TransactionGraph] = None

    # ── Helpers ───────────────────────────────────────────────────────────────
    def _graph_for(self, payload: TransactionsPayload, identity: Hashable, rebuild: bool = False) -> TransactionGraph:
        """Reuse the last graph when the transaction set has not changed; ``rebuild`` always builds afresh."""
        graph = self._graph
        if (
            rebuild
            or graph is None
            or graph.identity != identity
            or graph.digest != address_digest(payload.transactions)
        ):
            graph = self._graph = TransactionGraph(payload.transactions)
        return graph

    @staticmethod
    def _parse(request: TaskRequest) -> ParsedRequest:
        payload = PAYLOAD_MODELS[request.operation].model_validate(request.payload)
        identity = transaction_set_identity(payload.transactions)
        params = payload.model_dump(mode="json", exclude={"transactions"})
        return payload, identity, make_key(request.operation.value, params, identity)

    def _from_cache(self, request: TaskRequest, key: CacheKey, record_miss: bool = True) -> Optional[TaskResponse]:
        data = self.cache.get(key, record_miss=record_miss)
        if data is None:
            return None
        log.info("Task %s (%s) served from cache", request.request_id, request.operation.value)
        return TaskResponse(
            request_id=request.request_id,
            operation=request.operation,
            status=TaskStatus.SUCCESS,
            data=data,
            cached=True,
        )

    @staticmethod
    def _error(request: TaskRequest, code: str, message: str) -> TaskResponse:
        log.warning("Task %s (%s) rejected: %s", request.request_id, request.operation.value, message)
        return TaskResponse(
            request_id=request.request_id,
            operation=request.operation,
            status=TaskStatus.ERROR,
            error=TaskError(code=code, message=message),
        )

    def _run(self, payload: TransactionsPayload, graph: TransactionGraph) -> Any:
        if isinstance(payload, DetectPatternsPayload):
            return detect_patterns(graph)
        if isinstance(payload, ClusterAddressesPayload):
            return cluster_addresses(graph)
        if isinstance(payload, DeepTracePayload):
            return deep_trace(
                graph,
                payload.start_address,
                direction=payload.direction,
                max_depth=payload.max_depth,
                min_amount=payload.min_amount,
                time_window=payload.time_window,
            )
        if isinstance(payload, FindPathsPayload):
            return find_paths(
                graph,
                payload.source,
                payload.target,
                max_depth=payload.max_depth,
                max_paths=payload.max_paths,
            )
        if isinstance(payload, TaintAnalysisPayload):
            return taint_analysis(
                graph,
                payload.source_address,
                payload.target_address,
                max_hops=payload.max_hops,
            )
        raise TypeError(f"No handler for payload {type(payload).__name__}")

    # ── Public API ────────────────────────────────────────────────────────────
    def prepare(self, request: TaskRequest) -> Tuple[Optional[ParsedRequest], Optional[TaskResponse]]:
        """
        Validate ``request`` and consult the cache, without computing.

        Returns ``(parsed, None)`` when the request still has to run.  A
        malformed payload or a cache hit comes back as a ready response in the
        second slot.  ``force`` drops the cached entry instead of reading it.
        """
        try:
            parsed = self._parse(request)
        except ValidationError as exc:
            return None, self._error(request, "invalid_payload", str(exc))

        key = parsed[2]
        if request.force:
            self.cache.discard(key)
            return parsed, None
        response = self._from_cache(request, key)
        return parsed, response

    def handle(self, request: TaskRequest, parsed: Optional[ParsedRequest] = None) -> TaskResponse:
        """
        Answer ``request``.  ``parsed`` is what an earlier ``prepare`` returned;
        passing it skips validation and the counted cache lookup.
        """
        if parsed is None:
            parsed, response = self.prepare(request)
            if response is not None:
                return response
        elif not request.force:
            # An identical request may have finished while this one was queued.
            response = self._from_cache(request, parsed[2], record_miss=False)
            if response is not None:
                return response

        payload, identity, key = parsed
        started = time.perf_counter()
        graph = self._graph_for(payload, identity, rebuild=request.force)
        try:
            result = self._run(payload, graph)
        except ParameterError as exc:
            return self._error(request, "invalid_parameter", str(exc))

        data = _dump(result)
        self.cache.set(key, data)
        log.info(
            "Task %s (%s) completed in %.3fs over %d transactions",
            request.request_id,
            request.operation.value,
            time.perf_counter() - started,
            len(graph),
        )
        return TaskResponse(
            request_id=request.request_id,
            operation=request.operation,
            status=TaskStatus.SUCCESS,
            data=data,
        )
