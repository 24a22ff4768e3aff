"""
taint.py – Proportional taint propagation from a source address.

Mixing model
------------
Value leaving an address mixes uniformly with that address's other outflows.
The source starts holding its whole outflow as taint.  Moving from address X
to neighbour Y carries

    taint_held(X) × Σ amount(X → Y) / total_outflow(X)

Branches
--------
Each branch is a simple path: it stops when it would revisit an address on
itself, when it exceeds maxHops, on an address with zero outflow, or on the
target (where its taint is recorded).  Independent branches reaching the
target are summed, not deduplicated; since the carried shares at every
address sum to at most one, the sum never exceeds the source's outflow.

Branches whose carried taint falls below TAINT_MIN_AMOUNT are dropped: taint
only shrinks along a branch, so they cannot contribute.

Percentages
-----------
taint_percentage          – path taint / total tainted × 100
overall_taint_percentage  – total tainted / source outflow × 100
target_inflow_percentage  – total tainted / target inflow × 100
"""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Tuple

from .config import TAINT_MAX_HOPS, TAINT_MIN_AMOUNT, TAINT_MAX_PATHS, TAINT_MAX_BRANCHES
from .graph_builder import TransactionGraph
from .models import TaintFlow, TaintPath
from .utils import clamp_parameter

log = logging.getLogger(__name__)


def _percent(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return min(part / whole * 100.0, 100.0)


def _outflow_by_neighbour(graph: TransactionGraph, address: str) -> Dict[str, float]:
    amounts: Dict[str, List[float]] = {}
    for tx in graph.outgoing(address):
        amounts.setdefault(tx.to_address, []).append(tx.amount)
    return {addr: math.fsum(vals) for addr, vals in amounts.items()}


def taint_analysis(
    graph: TransactionGraph,
    source_address: str,
    target_address: str,
    max_hops: int = 10,
) -> TaintFlow:
    """Trace how much of ``source_address``'s outflow reaches ``target_address``."""
    max_hops = clamp_parameter("max_hops", max_hops, 1, TAINT_MAX_HOPS)
    source_outflow = graph.total_outflow(source_address)

    contributions: List[Tuple[List[str], float]] = []
    truncated = False
    branches = 0
    neighbour_cache: Dict[str, Dict[str, float]] = {}

    if source_address != target_address and source_outflow > 0 and target_address in graph:
        stack: List[Tuple[List[str], float]] = [([source_address], source_outflow)]

        while stack and not truncated:
            sequence, held = stack.pop()
            current = sequence[-1]
            if len(sequence) - 1 >= max_hops:
                continue
            out_total = graph.total_outflow(current)
            if out_total <= 0:
                continue

            if current not in neighbour_cache:
                neighbour_cache[current] = _outflow_by_neighbour(graph, current)

            children = []
            for nxt, amount in neighbour_cache[current].items():
                if nxt in sequence:
                    continue
                carried = held * (amount / out_total)
                if carried < TAINT_MIN_AMOUNT:
                    continue
                if nxt == target_address:
                    contributions.append((sequence + [nxt], carried))
                    continue
                branches += 1
                if branches > TAINT_MAX_BRANCHES:
                    truncated = True
                    log.warning("Taint branch cap (%d) reached; returning partial flow.", TAINT_MAX_BRANCHES)
                    break
                children.append((sequence + [nxt], carried))
            stack.extend(reversed(children))

    total_tainted = math.fsum(amount for _, amount in contributions)
    contributions.sort(key=lambda c: (-c[1], len(c[0]), c[0]))

    paths = [
        TaintPath(
            address_sequence=sequence,
            taint_amount=amount,
            taint_percentage=_percent(amount, total_tainted),
            hops=len(sequence) - 1,
        )
        for sequence, amount in contributions[:TAINT_MAX_PATHS]
    ]

    flow = TaintFlow(
        source_address=source_address,
        target_address=target_address,
        paths=paths,
        total_tainted=total_tainted,
        overall_taint_percentage=_percent(total_tainted, source_outflow),
        source_outflow=source_outflow,
        target_inflow_percentage=_percent(total_tainted, graph.total_inflow(target_address)),
        truncated=truncated,
    )
    log.info(
        "Taint %s → %s (max %d hops): %d contributing paths, %.2f tainted (%.1f%% of outflow)",
        source_address,
        target_address,
        max_hops,
        len(contributions),
        total_tainted,
        flow.overall_taint_percentage,
    )
    return flow
