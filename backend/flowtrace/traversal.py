"""
traversal.py – Bounded breadth-first reachability from one address.

Cycle handling
--------------
A single global "first discovery wins" set: an address keeps the depth at
which it was first reached.  Later (equal or deeper) encounters still record
the edge so connectivity is complete, but never re-enqueue the address.

Aggregated volume of a node only counts the transfers that reached it from
the BFS level directly above it, i.e. its discovering edges, not its
lifetime turnover.

Performance
-----------
Hard cap of DEEP_TRACE_MAX_NODES discovered addresses; hitting it stops the
expansion and flags the result as truncated.
"""
from __future__ import annotations

import heapq
import logging
import time
from collections import deque
from typing import Dict, Iterator, Optional, Tuple

from .config import DEEP_TRACE_MAX_DEPTH, DEEP_TRACE_MAX_NODES
from .graph_builder import TransactionGraph
from .models import (
    DeepTraceEdge,
    DeepTraceNode,
    DeepTraceResult,
    DeepTraceStatistics,
    Direction,
    TimeWindow,
    Transaction,
)
from .utils import clamp_parameter, tx_sort_key

log = logging.getLogger(__name__)


def _expansion_edges(
    graph: TransactionGraph, address: str, direction: Direction
) -> Iterator[Transaction]:
    if direction == Direction.INFLOW:
        return iter(graph.incoming(address))
    if direction == Direction.OUTFLOW:
        return iter(graph.outgoing(address))
    # Self-transfers sit in both lists; keep only the outgoing copy.
    incoming = (tx for tx in graph.incoming(address) if tx.from_address != tx.to_address)
    return heapq.merge(graph.outgoing(address), incoming, key=tx_sort_key)


def _passes_filters(
    tx: Transaction, min_amount: Optional[float], time_window: Optional[TimeWindow]
) -> bool:
    if min_amount is not None and tx.amount < min_amount:
        return False
    if time_window is not None and not (time_window.start <= tx.timestamp <= time_window.end):
        return False
    return True


def _record_edge(edges: Dict[Tuple[str, str], DeepTraceEdge], tx: Transaction) -> None:
    key = (tx.from_address, tx.to_address)
    edge = edges.get(key)
    if edge is None:
        edges[key] = DeepTraceEdge(
            from_address=tx.from_address,
            to_address=tx.to_address,
            amount=tx.amount,
            count=1,
            first_tx=tx.timestamp,
            last_tx=tx.timestamp,
        )
        return
    edge.amount += tx.amount
    edge.count += 1
    edge.first_tx = min(edge.first_tx, tx.timestamp)
    edge.last_tx = max(edge.last_tx, tx.timestamp)


def _credit_node(node: DeepTraceNode, tx: Transaction) -> None:
    node.aggregated_volume += tx.amount
    node.transaction_count += 1
    node.first_seen = tx.timestamp if node.first_seen is None else min(node.first_seen, tx.timestamp)
    node.last_seen = tx.timestamp if node.last_seen is None else max(node.last_seen, tx.timestamp)


def deep_trace(
    graph: TransactionGraph,
    start_address: str,
    direction: Direction = Direction.BOTH,
    max_depth: int = 3,
    min_amount: Optional[float] = None,
    time_window: Optional[TimeWindow] = None,
) -> DeepTraceResult:
    """
    Expand outward from ``start_address`` up to ``max_depth`` hops.

    Follows incoming edges for ``inflow``, outgoing for ``outflow`` and both
    for ``both``.  ``max_depth`` is clamped to [0, DEEP_TRACE_MAX_DEPTH];
    depth 0 returns the start node alone.  An address absent from the ledger
    yields an empty result.
    """
    started = time.perf_counter()
    direction = Direction(direction)
    max_depth = clamp_parameter("max_depth", max_depth, 0, DEEP_TRACE_MAX_DEPTH)

    nodes: Dict[str, DeepTraceNode] = {}
    edges: Dict[Tuple[str, str], DeepTraceEdge] = {}
    truncated = False

    if start_address not in graph:
        log.info("Deep trace: start address %s not in ledger", start_address)
    else:
        nodes[start_address] = DeepTraceNode(address=start_address, min_depth=0)
        queue = deque([(start_address, 0)])

        while queue and not truncated:
            address, depth = queue.popleft()
            if depth >= max_depth:
                continue

            for tx in _expansion_edges(graph, address, direction):
                if not _passes_filters(tx, min_amount, time_window):
                    continue
                neighbour = tx.to_address if tx.from_address == address else tx.from_address

                node = nodes.get(neighbour)
                if node is None:
                    if len(nodes) >= DEEP_TRACE_MAX_NODES:
                        truncated = True
                        log.warning(
                            "Deep trace node cap (%d) reached from %s; returning partial result.",
                            DEEP_TRACE_MAX_NODES,
                            start_address,
                        )
                        break
                    node = DeepTraceNode(address=neighbour, min_depth=depth + 1)
                    nodes[neighbour] = node
                    queue.append((neighbour, depth + 1))

                if node.min_depth == depth + 1:
                    _credit_node(node, tx)
                _record_edge(edges, tx)

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    result = DeepTraceResult(
        start_address=start_address,
        direction=direction,
        max_depth=max_depth,
        nodes=nodes,
        edges=list(edges.values()),
        statistics=DeepTraceStatistics(
            total_nodes=len(nodes),
            total_edges=len(edges),
            max_depth_reached=max((n.min_depth for n in nodes.values()), default=0),
            elapsed_ms=round(elapsed_ms, 3),
            truncated=truncated,
        ),
    )
    log.info(
        "Deep trace from %s (%s, depth %d): %d nodes, %d edges%s",
        start_address,
        direction.value,
        max_depth,
        len(nodes),
        len(edges),
        " (truncated)" if truncated else "",
    )
    return result
