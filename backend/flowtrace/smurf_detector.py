"""
smurf_detector.py – Detect fan-out / fan-in bursts.

  Fan-out : 1 sender → FAN_THRESHOLD+ distinct receivers within FAN_WINDOW_HOURS.
  Fan-in  : FAN_THRESHOLD+ distinct senders → 1 receiver within FAN_WINDOW_HOURS.

For each hub the busiest window (most distinct counterparties) is reported,
not merely the first one that crosses the threshold, so the counterparty
count reflects how unusual the burst really is.

Performance
-----------
Two-pointer sliding window: O(n) per hub.  Grouping is a pandas groupby over
the canonical ledger frame, so each hub's transfers arrive time-sorted.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, List, Tuple

from .config import FAN_THRESHOLD, FAN_WINDOW_HOURS
from .graph_builder import TransactionGraph
from .models import Transaction

log = logging.getLogger(__name__)


def _busiest_window(
    txs: List[Transaction],
    counterparty_of,
    hub: str,
    window_td: timedelta,
) -> Tuple[int, int, Dict[str, int]]:
    """
    Two-pointer sliding window over time-sorted ``txs`` returning the bounds
    (left, right inclusive) and counterparty counts of the window with the
    most distinct counterparties (excluding ``hub`` itself).
    """
    best = (0, -1, {})
    left = 0
    window: Dict[str, int] = {}

    for right, tx in enumerate(txs):
        cp = counterparty_of(tx)
        if cp != hub:
            window[cp] = window.get(cp, 0) + 1

        while tx.timestamp - txs[left].timestamp > window_td:
            lcp = counterparty_of(txs[left])
            if lcp != hub:
                window[lcp] -= 1
                if window[lcp] == 0:
                    del window[lcp]
            left += 1

        if len(window) > len(best[2]):
            best = (left, right, dict(window))

    return best


def _scan(graph: TransactionGraph, hub_column: str, pattern: str) -> List[Dict]:
    df = graph.frame
    if df.empty:
        return []

    window_td = timedelta(hours=FAN_WINDOW_HOURS)
    txs_all = graph.transactions
    if pattern == "fan_out":
        def counterparty_of(tx):
            return tx.to_address
    else:
        def counterparty_of(tx):
            return tx.from_address

    matches: List[Dict] = []
    counts = df.groupby(hub_column, sort=False)["tx_index"].agg(list)
    for hub, indices in counts.items():
        if len(indices) < FAN_THRESHOLD:
            continue
        txs = [txs_all[i] for i in indices]
        left, right, window = _busiest_window(txs, counterparty_of, hub, window_td)
        if len(window) < FAN_THRESHOLD:
            continue

        burst = [tx for tx in txs[left:right + 1] if counterparty_of(tx) != hub]
        matches.append({
            "members": [hub] + sorted(window),
            "hub": hub,
            "hub_type": "disperser" if pattern == "fan_out" else "aggregator",
            "pattern": pattern,
            "counterparties": len(window),
            "transactions": burst,
            "amount": sum(tx.amount for tx in burst),
            "span_hours": (burst[-1].timestamp - burst[0].timestamp).total_seconds() / 3600.0,
        })
    return matches


def detect_fan_patterns(graph: TransactionGraph) -> List[Dict]:
    """
    Detect fan-out and fan-in bursts.

    Returns
    -------
    List of match dicts with keys:
        members        : list[str]  – hub first, then counterparties
        hub            : str        – the central disperser/aggregator
        hub_type       : str        – "disperser" | "aggregator"
        pattern        : str        – "fan_out" | "fan_in"
        counterparties : int
        transactions   : list[Transaction]
        amount         : float
        span_hours     : float
    """
    fan_out = _scan(graph, "sender", "fan_out")
    fan_in = _scan(graph, "receiver", "fan_in")
    log.info("Fan detection: %d fan-out, %d fan-in hubs", len(fan_out), len(fan_in))
    return fan_out + fan_in
