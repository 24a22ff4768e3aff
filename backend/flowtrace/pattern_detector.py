"""
pattern_detector.py – Run every detector over one graph and turn the raw
matches into scored, ordered ``SuspiciousPattern`` records.

Each detector returns plain match dicts (see the detector modules); this
module owns the translation into the response model: score, severity,
description, capped transaction list and kind-specific metadata.
"""
from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional

from .anomaly_detector import detect_high_velocity, detect_mixer_usage, detect_round_amounts
from .config import PATTERN_MAX_TRANSACTIONS
from .cycle_detector import detect_cycles
from .graph_builder import TransactionGraph
from .layering_detector import detect_layering
from .models import PatternKind, SuspiciousPattern
from .scoring import pattern_score, severity_for
from .smurf_detector import detect_fan_patterns
from .structuring_detector import detect_structuring
from .utils import assign_ids, sort_patterns

log = logging.getLogger(__name__)


def _pattern(
    kind: PatternKind,
    match: Dict,
    description: str,
    window_hours: Optional[float],
    counterparties: int,
    depth: int,
    metadata: Dict,
) -> SuspiciousPattern:
    score = pattern_score(kind, match["amount"], window_hours, counterparties, depth)
    txs = list(match["transactions"])
    metadata = dict(metadata)
    metadata["totalAmount"] = round(match["amount"], 2)
    metadata["transactionCount"] = len(txs)
    if len(txs) > PATTERN_MAX_TRANSACTIONS:
        metadata["transactionsTruncated"] = True
    return SuspiciousPattern(
        kind=kind,
        severity=severity_for(score),
        score=score,
        description=description,
        affected_addresses=list(match["members"]),
        transactions=txs[:PATTERN_MAX_TRANSACTIONS],
        metadata=metadata,
    )


# ── Per-kind translation ──────────────────────────────────────────────────────
def _from_cycle(m: Dict) -> SuspiciousPattern:
    n = m["cycle_length"]
    route = " → ".join(m["members"] + m["members"][:1])
    return _pattern(
        PatternKind.CIRCULAR_FLOW, m,
        f"Funds return to their origin through a {n}-address loop ({route}).",
        window_hours=m["span_hours"] if m["within_window"] else None,
        counterparties=n,
        depth=n,
        metadata={
            "cycleLength": n,
            "conservation": m["conservation"],
            "spanHours": None if m["span_hours"] is None else round(m["span_hours"], 2),
            "causallyOrdered": m["span_hours"] is not None,
            "withinWindow": m["within_window"],
        },
    )


def _from_layering(m: Dict) -> SuspiciousPattern:
    return _pattern(
        PatternKind.LAYERING, m,
        f"{len(m['chains'])} relay chain(s) through {len(m['pass_through'])} "
        f"pass-through address(es) converge on {m['terminal']}.",
        window_hours=m["span_hours"],
        counterparties=len(m["members"]),
        depth=m["depth"],
        metadata={
            "terminal": m["terminal"],
            "passThrough": m["pass_through"],
            "chains": m["chains"],
            "chainDepth": m["depth"],
            "spanHours": round(m["span_hours"], 2),
        },
    )


def _from_structuring(m: Dict) -> SuspiciousPattern:
    count = len(m["transactions"])
    return _pattern(
        PatternKind.STRUCTURING, m,
        f"{m['sender']} split {m['amount']:,.2f} into {count} transfers each below "
        f"the reporting threshold within {m['span_hours']:.1f}h.",
        window_hours=m["span_hours"],
        counterparties=len(m["members"]) - 1,
        depth=0,
        metadata={
            "sender": m["sender"],
            "largestTransfer": m["largest"],
            "spanHours": round(m["span_hours"], 2),
        },
    )


def _from_fan(m: Dict) -> SuspiciousPattern:
    kind = PatternKind(m["pattern"])
    if kind is PatternKind.FAN_OUT:
        description = f"{m['hub']} dispersed funds to {m['counterparties']} receivers within {m['span_hours']:.1f}h."
    else:
        description = f"{m['hub']} collected funds from {m['counterparties']} senders within {m['span_hours']:.1f}h."
    return _pattern(
        kind, m, description,
        window_hours=m["span_hours"],
        counterparties=m["counterparties"],
        depth=1,
        metadata={
            "hub": m["hub"],
            "hubType": m["hub_type"],
            "counterparties": m["counterparties"],
            "spanHours": round(m["span_hours"], 2),
        },
    )


def _from_mixer(m: Dict) -> SuspiciousPattern:
    return _pattern(
        PatternKind.MIXER_USAGE, m,
        f"{len(m['members']) - 1} address(es) transacted with suspected mixer {m['mixer']}.",
        window_hours=None,
        counterparties=len(m["members"]) - 1,
        depth=0,
        metadata={
            "mixer": m["mixer"],
            "inflow": round(m["inflow"], 2),
            "outflow": round(m["outflow"], 2),
        },
    )


def _from_round(m: Dict) -> SuspiciousPattern:
    return _pattern(
        PatternKind.ROUND_AMOUNTS, m,
        f"{m['ratio'] * 100:.0f}% of transfers move round amounts.",
        window_hours=None,
        counterparties=len(m["members"]),
        depth=0,
        metadata={"ratio": m["ratio"], "commonAmounts": m["common_amounts"]},
    )


def _from_velocity(m: Dict) -> SuspiciousPattern:
    return _pattern(
        PatternKind.HIGH_VELOCITY, m,
        f"{m['address']} sent {len(m['transactions'])} transfers at {m['tx_per_day']:.1f} per day.",
        window_hours=m["span_hours"],
        counterparties=m["counterparties"],
        depth=0,
        metadata={"address": m["address"], "txPerDay": m["tx_per_day"]},
    )


_DETECTORS: List[tuple] = [
    (detect_cycles, _from_cycle),
    (detect_layering, _from_layering),
    (detect_structuring, _from_structuring),
    (detect_fan_patterns, _from_fan),
    (detect_mixer_usage, _from_mixer),
    (detect_round_amounts, _from_round),
    (detect_high_velocity, _from_velocity),
]


def detect_patterns(graph: TransactionGraph) -> List[SuspiciousPattern]:
    """
    Scan the whole graph.  Patterns come back ordered by descending score
    (ties broken by first-seen rank of the first affected address, kind and
    address list) and numbered PATTERN_001, PATTERN_002, … in that order.
    """
    start = time.perf_counter()
    patterns: List[SuspiciousPattern] = []
    for detect, translate in _DETECTORS:
        patterns.extend(translate(m) for m in detect(graph))

    ordered = assign_ids(sort_patterns(patterns, graph.first_seen_rank), "PATTERN")
    log.info(
        "Pattern detection complete in %.3fs: %d patterns",
        time.perf_counter() - start,
        len(ordered),
    )
    return ordered
