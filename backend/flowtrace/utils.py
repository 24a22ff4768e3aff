"""
utils.py – Ordering, identity & ID assignment utilities.

Canonical order
---------------
Every algorithm reads the ledger in one canonical order,
``(timestamp, id, from, to, amount)``, so results never depend on the order
the host happened to hand the transactions over.

Transaction-set identity
------------------------
A cheap proxy (count, id range, time range, total amount) used in cache keys
instead of a full content hash.  The proxy ignores who paid whom, so graph
reuse also compares an order-independent CRC over the address pairs.
"""
from __future__ import annotations

import logging
import math
import zlib
from typing import Callable, Iterable, List, Sequence, Tuple

from .config import ROUND_AMOUNT_UNIT
from .errors import ParameterError

log = logging.getLogger(__name__)


def tx_sort_key(tx) -> tuple:
    return (tx.timestamp, tx.id, tx.from_address, tx.to_address, tx.amount)


def canonical_order(transactions: Iterable) -> List:
    return sorted(transactions, key=tx_sort_key)


def transaction_set_identity(transactions: Sequence) -> Tuple:
    """
    Order-independent identity proxy for a transaction set.

    Two sets with the same count, id range, time range and total amount are
    treated as the same set.
    """
    if not transactions:
        return (0,)
    ids = [tx.id for tx in transactions]
    stamps = [tx.timestamp for tx in transactions]
    total = math.fsum(tx.amount for tx in transactions)
    return (
        len(transactions),
        min(ids),
        max(ids),
        min(stamps).isoformat(),
        max(stamps).isoformat(),
        round(total, 6),
    )


def address_digest(transactions: Iterable) -> int:
    """Order-independent checksum over every transfer's id, sender and receiver."""
    total = 0
    for tx in transactions:
        total += zlib.crc32(f"{tx.id}\x1f{tx.from_address}\x1f{tx.to_address}".encode("utf-8"))
    return total & 0xFFFFFFFFFFFFFFFF


def sort_patterns(patterns: List, rank: Callable[[str], int]) -> List:
    """
    Order patterns by descending score; ties fall back to the first-seen rank
    of the first affected address, then kind and address list so the order is
    total.
    """
    def _key(p):
        first = p.affected_addresses[0] if p.affected_addresses else ""
        return (-p.score, rank(first), p.kind.value, tuple(p.affected_addresses))

    return sorted(patterns, key=_key)


def assign_ids(items: List, prefix: str) -> List:
    """Assign sequential PREFIX_001, PREFIX_002, … IDs in list order."""
    for i, item in enumerate(items, start=1):
        item.id = f"{prefix}_{i:03d}"
    return items


def clamp_parameter(name: str, value: int, low: int, high: int) -> int:
    """
    Clamp an integer request parameter into ``[low, high]``.

    Negative values are rejected outright with ParameterError; anything else
    out of range is pulled to the nearest bound.
    """
    if value < 0:
        raise ParameterError(name, value)
    clamped = min(max(value, low), high)
    if clamped != value:
        log.info("Parameter %s=%d clamped to %d", name, value, clamped)
    return clamped


def is_round_amount(amount: float) -> bool:
    """Whole multiple of ROUND_AMOUNT_UNIT, at least one unit."""
    return amount >= ROUND_AMOUNT_UNIT and math.fmod(amount, ROUND_AMOUNT_UNIT) == 0.0
