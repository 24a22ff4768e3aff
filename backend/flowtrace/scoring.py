"""
scoring.py – Suspicion scoring engine.

Path suspicion
--------------
Weighted composite of three factors, each in [0, 1]:
1. Hop factor           – more hops → higher, saturating at PATH_HOP_SATURATION
2. Speed factor         – shorter average inter-hop delay → higher
3. Conservation factor  – near-equal consecutive hop amounts (layering signature)
Scaled to [0, 100].  Single-hop paths have no delay and nothing to conserve,
so only the hop factor contributes.

Pattern score
-------------
``base(kind) + (100 − base(kind)) × composite`` where the composite blends
magnitude, speed, counterparty count and path depth.  Severity is a fixed
monotone mapping of the final score.

All scores are capped at 100.0 and rounded to one decimal place.
"""
from __future__ import annotations

import math
from typing import Sequence

from .config import (
    PATH_HOP_SATURATION,
    PATH_SPEED_REFERENCE_SECONDS,
    PATH_WEIGHT_HOPS,
    PATH_WEIGHT_SPEED,
    PATH_WEIGHT_CONSERVATION,
    PATTERN_BASE_SCORES,
    WEIGHT_MAGNITUDE,
    WEIGHT_SPEED,
    WEIGHT_COUNTERPARTIES,
    WEIGHT_DEPTH,
    MAGNITUDE_REFERENCE,
    SPEED_REFERENCE_HOURS,
    COUNTERPARTY_REFERENCE,
    DEPTH_REFERENCE,
    SEVERITY_THRESHOLDS,
)
from .models import PatternKind, Severity, Transaction


def _cap(value: float, upper: float = 1.0) -> float:
    return max(0.0, min(value, upper))


def severity_for(score: float) -> Severity:
    for bound, label in SEVERITY_THRESHOLDS:
        if score < bound:
            return Severity(label)
    return Severity.CRITICAL


def amount_conservation(amounts: Sequence[float]) -> float:
    """Mean min/max ratio of consecutive amounts; 1.0 means nothing was shed."""
    if len(amounts) < 2:
        return 0.0
    ratios = []
    for prev, cur in zip(amounts, amounts[1:]):
        larger = max(prev, cur)
        ratios.append(min(prev, cur) / larger if larger > 0 else 0.0)
    return math.fsum(ratios) / len(ratios)


def path_suspicion(hop_transactions: Sequence[Transaction], avg_delay_seconds: float) -> float:
    hops = len(hop_transactions)
    if hops == 0:
        return 0.0

    hop_factor = _cap(hops / PATH_HOP_SATURATION)
    if hops > 1:
        speed_factor = 1.0 / (1.0 + max(avg_delay_seconds, 0.0) / PATH_SPEED_REFERENCE_SECONDS)
        conservation_factor = amount_conservation([tx.amount for tx in hop_transactions])
    else:
        speed_factor = 0.0
        conservation_factor = 0.0

    weighted = (
        PATH_WEIGHT_HOPS * hop_factor
        + PATH_WEIGHT_SPEED * speed_factor
        + PATH_WEIGHT_CONSERVATION * conservation_factor
    )
    total_weight = PATH_WEIGHT_HOPS + PATH_WEIGHT_SPEED + PATH_WEIGHT_CONSERVATION
    return round(_cap(100.0 * weighted / total_weight, 100.0), 1)


def pattern_score(
    kind: PatternKind,
    amount: float,
    window_hours: float | None,
    counterparties: int,
    depth: int,
) -> float:
    """
    Parameters
    ----------
    amount         : value moved by the pattern
    window_hours   : first-to-last transfer time; None when no time bound applies
    counterparties : distinct addresses involved
    depth          : hops in the longest chain / cycle (0 when not path-shaped)
    """
    magnitude = _cap(math.log10(1.0 + max(amount, 0.0)) / math.log10(1.0 + MAGNITUDE_REFERENCE))
    speed = 0.0 if window_hours is None else 1.0 / (1.0 + max(window_hours, 0.0) / SPEED_REFERENCE_HOURS)
    breadth = _cap(counterparties / COUNTERPARTY_REFERENCE)
    reach = _cap(depth / DEPTH_REFERENCE)

    composite = (
        WEIGHT_MAGNITUDE * magnitude
        + WEIGHT_SPEED * speed
        + WEIGHT_COUNTERPARTIES * breadth
        + WEIGHT_DEPTH * reach
    ) / (WEIGHT_MAGNITUDE + WEIGHT_SPEED + WEIGHT_COUNTERPARTIES + WEIGHT_DEPTH)

    base = PATTERN_BASE_SCORES.get(kind.value, 10.0)
    return float(min(round(base + (100.0 - base) * composite, 1), 100.0))


def span_hours(transactions: Sequence[Transaction]) -> float:
    if not transactions:
        return 0.0
    stamps = [tx.timestamp for tx in transactions]
    return (max(stamps) - min(stamps)).total_seconds() / 3600.0
