"""
path_finder.py – Enumerate simple, causally ordered paths between two addresses.

Definition
----------
A path is a sequence of distinct addresses source → … → target following
outgoing transfers, realised by one transaction per hop whose timestamps are
non-decreasing along the path (hop i happens no later than hop i+1).

Algorithm
---------
Iterative DFS with a per-branch visited set (not a global one: the same
address may appear on many different paths, never twice on one).  Each
extension picks the earliest transfer to the next address that is not older
than the previous hop, which is exactly the condition for the rest of the
path to remain realisable.

Bounds
------
• maxDepth  – branches longer than this many hops are pruned
• maxPaths  – enumeration stops once this many paths are collected
• PATH_MAX_EXPANSIONS – hard cap on expanded DFS frames; flags truncation
"""
from __future__ import annotations

import logging
import math
import time
from typing import List, Optional, Set, Tuple

from .config import PATH_MAX_DEPTH, PATH_MAX_PATHS, PATH_MAX_EXPANSIONS
from .graph_builder import TransactionGraph
from .models import PathFinderResult, PathFinderStatistics, Transaction, TransactionPath
from .scoring import path_suspicion
from .utils import clamp_parameter

log = logging.getLogger(__name__)

_Frame = Tuple[List[str], List[Transaction], Set[str]]


def build_path(addresses: List[str], hop_txs: List[Transaction]) -> TransactionPath:
    """Assemble a TransactionPath (timing stats + suspicion) from its hops."""
    stamps = [tx.timestamp for tx in hop_txs]
    delays = [(b - a).total_seconds() for a, b in zip(stamps, stamps[1:])]
    avg_delay = math.fsum(delays) / len(delays) if delays else 0.0
    return TransactionPath(
        addresses=list(addresses),
        transactions=list(hop_txs),
        hops=len(hop_txs),
        total_amount=math.fsum(tx.amount for tx in hop_txs),
        start_time=stamps[0],
        end_time=stamps[-1],
        avg_inter_hop_delay=avg_delay,
        suspicion_score=path_suspicion(hop_txs, avg_delay),
    )


def _children(graph: TransactionGraph, frame: _Frame) -> List[_Frame]:
    addresses, hops, visited = frame
    floor = hops[-1].timestamp if hops else None
    children: List[_Frame] = []
    taken: Set[str] = set()
    # outgoing() is timestamp-sorted, so the first usable transfer per
    # neighbour is the earliest one.
    for tx in graph.outgoing(addresses[-1]):
        nxt = tx.to_address
        if nxt in visited or nxt in taken:
            continue
        if floor is not None and tx.timestamp < floor:
            continue
        taken.add(nxt)
        children.append((addresses + [nxt], hops + [tx], visited | {nxt}))
    return children


def find_paths(
    graph: TransactionGraph,
    source: str,
    target: str,
    max_depth: int = 10,
    max_paths: int = 100,
) -> PathFinderResult:
    """
    Find up to ``max_paths`` simple paths of at most ``max_depth`` hops.

    ``shortest_path`` is the path with the fewest hops, ties broken by the
    shortest elapsed duration, then by discovery order.
    """
    started = time.perf_counter()
    max_depth = clamp_parameter("max_depth", max_depth, 1, PATH_MAX_DEPTH)
    max_paths = clamp_parameter("max_paths", max_paths, 1, PATH_MAX_PATHS)

    paths: List[TransactionPath] = []
    truncated = False
    expansions = 0

    if source != target and source in graph and target in graph:
        stack: List[_Frame] = [([source], [], {source})]
        while stack:
            frame = stack.pop()
            addresses, hops, _ = frame

            if addresses[-1] == target:
                paths.append(build_path(addresses, hops))
                if len(paths) >= max_paths:
                    truncated = bool(stack)
                    break
                continue

            if len(hops) >= max_depth:
                continue

            expansions += 1
            if expansions > PATH_MAX_EXPANSIONS:
                truncated = True
                log.warning(
                    "Path search expansion cap (%d) reached; %d paths so far.",
                    PATH_MAX_EXPANSIONS,
                    len(paths),
                )
                break

            # Reversed so the earliest neighbour is explored first.
            stack.extend(reversed(_children(graph, frame)))

    shortest: Optional[TransactionPath] = None
    if paths:
        shortest = min(paths, key=lambda p: (p.hops, p.duration_seconds))

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    log.info(
        "Path search %s → %s (depth %d, cap %d): %d paths%s",
        source,
        target,
        max_depth,
        max_paths,
        len(paths),
        " (truncated)" if truncated else "",
    )
    return PathFinderResult(
        source=source,
        target=target,
        paths=paths,
        shortest_path=shortest,
        statistics=PathFinderStatistics(
            total_paths_found=len(paths),
            avg_path_length=(sum(p.hops for p in paths) / len(paths)) if paths else 0.0,
            elapsed_ms=round(elapsed_ms, 3),
            truncated=truncated,
        ),
    )
