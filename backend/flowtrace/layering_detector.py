"""
layering_detector.py – Detect layering chains of pass-through addresses.

Definition
----------
A relay hop is a pair of transfers (u → v, v → w) where v forwards what it
received: the outgoing transfer happens within LAYERING_WINDOW_HOURS after
the incoming one and carries between (1 − LAYERING_ATTRITION) and 100 % of
its amount.

A layering chain is a maximal simple sequence of transfers linked by relay
hops with at least LAYERING_MIN_PASS_THROUGH pass-through addresses (so at
least three transfers).  Chains are grouped by their terminal address: many
chains converging on one exit is the layering signature.

Algorithm
---------
1. For every address, match each incoming transfer against the outgoing
   transfers inside its time window (bisect over the time-sorted list).
2. Iterative DFS from every transfer that starts a relay sequence but does
   not continue one, with a per-branch visited address set.
3. Record chains at their leaves; dedupe by address sequence.

Hard cap MAX_LAYERING_CHAINS prevents excessive output.
"""
from __future__ import annotations

import bisect
import logging
from datetime import timedelta
from typing import Dict, List

from .config import (
    LAYERING_WINDOW_HOURS,
    LAYERING_ATTRITION,
    LAYERING_MIN_PASS_THROUGH,
    LAYERING_MAX_CHAIN,
    MAX_LAYERING_CHAINS,
)
from .graph_builder import TransactionGraph
from .models import Transaction

log = logging.getLogger(__name__)

_RATIO_SLACK = 1e-9


def _relay_links(graph: TransactionGraph) -> Dict[Transaction, List[Transaction]]:
    """Map each incoming transfer to the outgoing transfers that relay it."""
    window = timedelta(hours=LAYERING_WINDOW_HOURS)
    links: Dict[Transaction, List[Transaction]] = {}

    for address in graph.addresses:
        outs = graph.outgoing(address)
        ins = graph.incoming(address)
        if not outs or not ins:
            continue
        out_times = [tx.timestamp for tx in outs]

        for t_in in ins:
            if t_in.from_address == address or t_in.amount <= 0:
                continue
            lo = bisect.bisect_left(out_times, t_in.timestamp)
            hi = bisect.bisect_right(out_times, t_in.timestamp + window)
            for t_out in outs[lo:hi]:
                if t_out.to_address == address:
                    continue
                ratio = t_out.amount / t_in.amount
                if 1.0 - LAYERING_ATTRITION <= ratio <= 1.0 + _RATIO_SLACK:
                    links.setdefault(t_in, []).append(t_out)
    return links


def detect_layering(graph: TransactionGraph) -> List[Dict]:
    """
    Detect layering chains, grouped by terminal address.

    Returns
    -------
    List of match dicts with keys:
        members        : list[str]          – addresses of all chains, chain order
        terminal       : str                – shared exit address
        pass_through   : list[str]          – relaying intermediaries
        chains         : list[list[str]]    – address sequence per chain
        transactions   : list[Transaction]
        amount         : float              – value entering the chains
        span_hours     : float              – slowest chain, first to last transfer
        depth          : int                – hops in the longest chain
    """
    links = _relay_links(graph)
    if not links:
        log.info("Layering detection: 0 chains found (no relay hops)")
        return []

    continued = {t_out for outs in links.values() for t_out in outs}
    roots = [tx for tx in graph.transactions if tx in links and tx not in continued]

    chains: List[List[Transaction]] = []
    seen_paths: set = set()

    for root in roots:
        if len(chains) >= MAX_LAYERING_CHAINS:
            log.warning("Layering chain cap (%d) reached.", MAX_LAYERING_CHAINS)
            break

        # Stack: (chain_of_transfers, visited_addresses)
        stack = [([root], {root.from_address, root.to_address})]
        while stack and len(chains) < MAX_LAYERING_CHAINS:
            chain, visited = stack.pop()
            extensions = []
            if len(chain) < LAYERING_MAX_CHAIN:
                extensions = [
                    t_out for t_out in links.get(chain[-1], [])
                    if t_out.to_address not in visited
                ]

            if not extensions:
                if len(chain) - 1 >= LAYERING_MIN_PASS_THROUGH:
                    key = tuple([chain[0].from_address] + [tx.to_address for tx in chain])
                    if key not in seen_paths:
                        seen_paths.add(key)
                        chains.append(chain)
                continue

            for t_out in reversed(extensions):
                stack.append((chain + [t_out], visited | {t_out.to_address}))

    groups: Dict[str, List[List[Transaction]]] = {}
    for chain in chains:
        groups.setdefault(chain[-1].to_address, []).append(chain)

    matches: List[Dict] = []
    for terminal, group in groups.items():
        members: Dict[str, None] = {}
        pass_through: Dict[str, None] = {}
        transactions: Dict[Transaction, None] = {}
        sequences = []
        for chain in group:
            sequence = [chain[0].from_address] + [tx.to_address for tx in chain]
            sequences.append(sequence)
            members.update(dict.fromkeys(sequence))
            pass_through.update(dict.fromkeys(sequence[1:-1]))
            transactions.update(dict.fromkeys(chain))

        matches.append({
            "members": list(members),
            "terminal": terminal,
            "pass_through": sorted(pass_through),
            "chains": sequences,
            "transactions": list(transactions),
            "amount": sum(chain[0].amount for chain in group),
            "span_hours": max(
                (chain[-1].timestamp - chain[0].timestamp).total_seconds() / 3600.0
                for chain in group
            ),
            "depth": max(len(chain) for chain in group),
        })

    log.info("Layering detection: %d chains found, %d exit groups", len(chains), len(matches))
    return matches
