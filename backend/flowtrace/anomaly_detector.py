"""
anomaly_detector.py – Behavioural signals that need no graph structure.

  mixer_usage   : transfers touching an address whose label matches one of
                  MIXER_KEYWORDS (tornado, mixer, tumbler, …)
  round_amounts : more than ROUND_AMOUNT_RATIO of the ledger moves whole
                  multiples of ROUND_AMOUNT_UNIT
  high_velocity : senders with at least VELOCITY_MIN_TX outgoing transfers
                  averaging more than VELOCITY_TX_PER_DAY
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Dict, List

from .config import (
    MIXER_KEYWORDS,
    ROUND_AMOUNT_RATIO,
    VELOCITY_MIN_TX,
    VELOCITY_TX_PER_DAY,
)
from .graph_builder import TransactionGraph
from .utils import is_round_amount

log = logging.getLogger(__name__)


def _is_mixer(address: str) -> bool:
    lowered = address.lower()
    return any(kw in lowered for kw in MIXER_KEYWORDS)


def detect_mixer_usage(graph: TransactionGraph) -> List[Dict]:
    """One match per mixer address, listing everything that flowed through it."""
    matches: List[Dict] = []
    for mixer in (a for a in graph.addresses if _is_mixer(a)):
        txs = sorted(
            set(graph.incoming(mixer)) | set(graph.outgoing(mixer)),
            key=lambda tx: (tx.timestamp, tx.id),
        )
        counterparties = {tx.from_address for tx in txs} | {tx.to_address for tx in txs}
        counterparties.discard(mixer)
        matches.append({
            "members": [mixer] + sorted(counterparties),
            "mixer": mixer,
            "transactions": txs,
            "amount": math.fsum(tx.amount for tx in txs),
            "inflow": graph.total_inflow(mixer),
            "outflow": graph.total_outflow(mixer),
        })
    log.info("Mixer detection: %d mixer addresses", len(matches))
    return matches


def detect_round_amounts(graph: TransactionGraph) -> List[Dict]:
    txs = graph.transactions
    if not txs:
        return []
    round_txs = [tx for tx in txs if is_round_amount(tx.amount)]
    ratio = len(round_txs) / len(txs)
    if ratio <= ROUND_AMOUNT_RATIO:
        return []

    members: Dict[str, None] = {}
    for tx in round_txs:
        members.update(dict.fromkeys((tx.from_address, tx.to_address)))
    common = Counter(round(tx.amount) for tx in round_txs).most_common(5)
    log.info("Round-amount detection: %d of %d transfers (%.0f%%)", len(round_txs), len(txs), ratio * 100)
    return [{
        "members": list(members),
        "transactions": round_txs,
        "amount": math.fsum(tx.amount for tx in round_txs),
        "ratio": round(ratio, 4),
        "common_amounts": [[amount, count] for amount, count in common],
    }]


def detect_high_velocity(graph: TransactionGraph) -> List[Dict]:
    matches: List[Dict] = []
    for address in graph.addresses:
        sent = graph.outgoing(address)
        if len(sent) < VELOCITY_MIN_TX:
            continue
        days = (sent[-1].timestamp - sent[0].timestamp).total_seconds() / 86400.0
        if days <= 0:
            continue
        per_day = len(sent) / days
        if per_day > VELOCITY_TX_PER_DAY:
            matches.append({
                "members": [address],
                "address": address,
                "transactions": list(sent),
                "amount": graph.total_outflow(address),
                "tx_per_day": round(per_day, 2),
                "span_hours": days * 24.0,
                "counterparties": len(graph.successors(address)),
            })
    log.info("Velocity detection: %d addresses flagged", len(matches))
    return matches
