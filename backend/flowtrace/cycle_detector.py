"""
cycle_detector.py – Detect circular fund flows (value returning to its origin).

Strategy
--------
NetworkX ``simple_cycles`` with a length bound, run only over strongly
connected components large enough to hold a qualifying cycle.
Canonical deduplication: [A,B,C] and [B,C,A] are the same loop; we rotate to
the lexicographically smallest node first.

Qualification
-------------
Per hop we pick a concrete transfer.  The first rotation whose hops can be
realised in non-decreasing time order supplies the transfers and the time
span; if no rotation is causally ordered, each hop falls back to its largest
transfer and the loop carries no speed signal.  A loop is reported when the
hop amounts are conserved: min/max ≥ 1 − CYCLE_AMOUNT_TOLERANCE.

Performance
-----------
• SCC pre-filter (precomputed by the graph builder).
• Hard cap of MAX_CYCLES canonical loops.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, List, Optional

import networkx as nx

from .config import (
    CYCLE_MIN_LEN,
    CYCLE_MAX_LEN,
    MAX_CYCLES,
    CYCLE_AMOUNT_TOLERANCE,
    CYCLE_WINDOW_HOURS,
)
from .graph_builder import TransactionGraph
from .models import Transaction

log = logging.getLogger(__name__)


def _canonical_cycle(cycle: list) -> tuple:
    """
    Rotate cycle so the lexicographically smallest node is first.
    Returns a tuple for use as a dict key.
    """
    if not cycle:
        return tuple(cycle)
    min_idx = cycle.index(min(cycle))
    rotated = cycle[min_idx:] + cycle[:min_idx]
    return tuple(rotated)


def _hop_transfers(graph: TransactionGraph, sender: str, receiver: str) -> List[Transaction]:
    return [tx for tx in graph.outgoing(sender) if tx.to_address == receiver]


def _causal_hops(graph: TransactionGraph, loop: tuple) -> Optional[List[Transaction]]:
    """
    Earliest causally ordered realisation of the loop, trying each rotation.
    Returns None when no rotation can be walked forward in time.
    """
    n = len(loop)
    for start in range(n):
        order = loop[start:] + loop[:start]
        chosen: List[Transaction] = []
        floor = None
        for i in range(n):
            sender, receiver = order[i], order[(i + 1) % n]
            tx = next(
                (t for t in graph.outgoing(sender)
                 if t.to_address == receiver and (floor is None or t.timestamp >= floor)),
                None,
            )
            if tx is None:
                break
            chosen.append(tx)
            floor = tx.timestamp
        else:
            return chosen
    return None


def detect_cycles(graph: TransactionGraph) -> List[Dict]:
    """
    Detect conserved directed loops of length CYCLE_MIN_LEN to CYCLE_MAX_LEN.

    Returns
    -------
    List of match dicts with keys:
        members        : list[str]          – canonical loop order
        transactions   : list[Transaction]  – one transfer per hop
        cycle_length   : int
        amount         : float              – largest hop amount
        conservation   : float              – min/max hop amount
        span_hours     : float | None       – None when not causally ordered
        within_window  : bool
    """
    matches: List[Dict] = []
    G = graph.digraph

    sccs = G.graph.get("_sccs") or list(nx.strongly_connected_components(G))
    scc_nodes: set = set()
    for scc in sccs:
        if len(scc) >= CYCLE_MIN_LEN:
            scc_nodes.update(scc)

    if not scc_nodes:
        log.info("Cycle detection: 0 loops found (no qualifying SCCs)")
        return matches

    H = G.subgraph(scc_nodes)  # O(1) view, no copy
    seen: set = set()
    window = timedelta(hours=CYCLE_WINDOW_HOURS)

    for cycle in nx.simple_cycles(H, length_bound=CYCLE_MAX_LEN):
        if len(seen) >= MAX_CYCLES:
            log.warning("Cycle cap (%d) reached; stopping early.", MAX_CYCLES)
            break
        if len(cycle) < CYCLE_MIN_LEN:
            continue

        key = _canonical_cycle(cycle)
        if key in seen:
            continue
        seen.add(key)

        hops = _causal_hops(graph, key)
        causal = hops is not None
        if hops is None:
            hops = [
                max(_hop_transfers(graph, key[i], key[(i + 1) % len(key)]), key=lambda t: t.amount)
                for i in range(len(key))
            ]

        amounts = [tx.amount for tx in hops]
        largest = max(amounts)
        conservation = (min(amounts) / largest) if largest > 0 else 0.0
        if conservation < 1.0 - CYCLE_AMOUNT_TOLERANCE:
            continue

        span = None
        if causal:
            delta = hops[-1].timestamp - hops[0].timestamp
            span = delta.total_seconds() / 3600.0

        matches.append({
            "members": list(key),
            "transactions": hops,
            "cycle_length": len(key),
            "amount": largest,
            "conservation": round(conservation, 4),
            "span_hours": span,
            "within_window": causal and (hops[-1].timestamp - hops[0].timestamp) <= window,
        })

    matches.sort(key=lambda m: m["members"])
    log.info("Cycle detection: %d conserved loops found (%d candidates)", len(matches), len(seen))
    return matches
