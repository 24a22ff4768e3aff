"""
structuring_detector.py – Detect structuring (breaking a large sum into
transfers that each stay under a reporting threshold).

A sender is flagged when, within STRUCTURING_WINDOW_HOURS, it sends at least
STRUCTURING_MIN_TX transfers below STRUCTURING_THRESHOLD to no more than
STRUCTURING_MAX_COUNTERPARTIES receivers, and those transfers add up to at
least STRUCTURING_THRESHOLD.  The window with the largest aggregate is
reported.
"""
from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Dict, List

from .config import (
    STRUCTURING_THRESHOLD,
    STRUCTURING_WINDOW_HOURS,
    STRUCTURING_MIN_TX,
    STRUCTURING_MAX_COUNTERPARTIES,
)
from .graph_builder import TransactionGraph
from .models import Transaction

log = logging.getLogger(__name__)


def _best_window(txs: List[Transaction]) -> List[Transaction]:
    window_td = timedelta(hours=STRUCTURING_WINDOW_HOURS)
    best: List[Transaction] = []
    best_sum = 0.0
    left = 0
    receivers: Dict[str, int] = {}

    for right, tx in enumerate(txs):
        receivers[tx.to_address] = receivers.get(tx.to_address, 0) + 1

        # Shrinking from the left only ever drops receivers, so this yields
        # the widest valid window ending at ``right``.
        while (
            tx.timestamp - txs[left].timestamp > window_td
            or len(receivers) > STRUCTURING_MAX_COUNTERPARTIES
        ):
            lr = txs[left].to_address
            receivers[lr] -= 1
            if receivers[lr] == 0:
                del receivers[lr]
            left += 1

        window = txs[left:right + 1]
        total = math.fsum(t.amount for t in window)
        if len(window) >= STRUCTURING_MIN_TX and total >= STRUCTURING_THRESHOLD and total > best_sum:
            best, best_sum = window, total

    return best


def detect_structuring(graph: TransactionGraph) -> List[Dict]:
    """
    Detect senders splitting value into sub-threshold transfers.

    Returns
    -------
    List of match dicts with keys:
        members       : list[str]  – sender first, then receivers
        sender        : str
        transactions  : list[Transaction]
        amount        : float      – aggregate of the window
        largest       : float      – largest single transfer in the window
        span_hours    : float
    """
    flagged: List[Dict] = []
    df = graph.frame
    if df.empty:
        return flagged

    # Find transactions in the sub-threshold band: (0, threshold)
    mask = (df["amount"] > 0) & (df["amount"] < STRUCTURING_THRESHOLD)
    small = df[mask]
    if small.empty:
        return flagged

    txs_all = graph.transactions
    # Structuring is a property of the sender
    for sender, indices in small.groupby("sender", sort=False)["tx_index"].agg(list).items():
        if len(indices) < STRUCTURING_MIN_TX:
            continue
        window = _best_window([txs_all[i] for i in indices])
        if not window:
            continue
        flagged.append({
            "members": [sender] + sorted({tx.to_address for tx in window}),
            "sender": sender,
            "transactions": window,
            "amount": math.fsum(tx.amount for tx in window),
            "largest": max(tx.amount for tx in window),
            "span_hours": (window[-1].timestamp - window[0].timestamp).total_seconds() / 3600.0,
        })

    log.info("Structuring detection: %d senders flagged", len(flagged))
    return flagged
