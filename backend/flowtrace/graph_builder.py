"""
graph_builder.py – Build an immutable directed multigraph from the ledger.

Every transaction becomes one edge of a ``networkx.MultiDiGraph`` (parallel
transfers between the same pair are kept).  Alongside it the builder keeps
per-address outgoing/incoming transaction lists already sorted ascending by
timestamp, which is what every traversal reads, and a collapsed
``networkx.DiGraph`` projection used for cycle search.

Per-address turnover uses vectorised pandas aggregation instead of a Python
loop per account.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Sequence, Tuple

import networkx as nx
import pandas as pd

from .models import Transaction
from .utils import address_digest, canonical_order, transaction_set_identity

log = logging.getLogger(__name__)

_EMPTY: Tuple[Transaction, ...] = ()


class TransactionGraph:
    """
    Read-only snapshot of a transaction set.

    Node attributes (``multigraph``)
    --------------------------------
    total_sent, total_received : float
    sent_count, received_count : int

    Edge attributes (``digraph`` projection)
    ----------------------------------------
    total_amount : float
    tx_count     : int
    """

    def __init__(self, transactions: Iterable[Transaction]) -> None:
        ordered = canonical_order(transactions)
        self._transactions: Tuple[Transaction, ...] = tuple(ordered)
        self.identity = transaction_set_identity(self._transactions)
        self.digest = address_digest(self._transactions)

        outgoing: Dict[str, List[Transaction]] = defaultdict(list)
        incoming: Dict[str, List[Transaction]] = defaultdict(list)
        first_seen: Dict[str, int] = {}

        # Single pass in canonical order: lists come out timestamp-sorted.
        for tx in self._transactions:
            outgoing[tx.from_address].append(tx)
            incoming[tx.to_address].append(tx)
            for addr in (tx.from_address, tx.to_address):
                if addr not in first_seen:
                    first_seen[addr] = len(first_seen)

        self._outgoing = {a: tuple(txs) for a, txs in outgoing.items()}
        self._incoming = {a: tuple(txs) for a, txs in incoming.items()}
        self._first_seen = first_seen

        self._sent: Dict[str, float] = {}
        self._received: Dict[str, float] = {}
        self._frame: pd.DataFrame | None = None
        self.multigraph = nx.MultiDiGraph()
        self.digraph = nx.DiGraph()
        self._build_networkx()

        log.info(
            "Graph built: %d addresses, %d transactions, %d distinct edges",
            len(self._first_seen),
            len(self._transactions),
            self.digraph.number_of_edges(),
        )

    # ── Construction ──────────────────────────────────────────────────────────
    def _build_networkx(self) -> None:
        if not self._transactions:
            return

        df = self.frame

        sent_stats = df.groupby("sender")["amount"].agg(["sum", "count"])
        recv_stats = df.groupby("receiver")["amount"].agg(["sum", "count"])
        self._sent = {k: float(v) for k, v in sent_stats["sum"].items()}
        self._received = {k: float(v) for k, v in recv_stats["sum"].items()}

        sent_count = sent_stats["count"].to_dict()
        recv_count = recv_stats["count"].to_dict()
        self.multigraph.add_nodes_from([
            (addr, {
                "total_sent":     self._sent.get(addr, 0.0),
                "total_received": self._received.get(addr, 0.0),
                "sent_count":     int(sent_count.get(addr, 0)),
                "received_count": int(recv_count.get(addr, 0)),
            })
            for addr in self._first_seen
        ])
        self.multigraph.add_edges_from([
            (tx.from_address, tx.to_address, tx.id, {"amount": tx.amount, "timestamp": tx.timestamp})
            for tx in self._transactions
        ])

        edge_stats = df.groupby(["sender", "receiver"], sort=False).agg(
            total_amount=("amount", "sum"),
            tx_count=("amount", "count"),
        ).reset_index()
        self.digraph.add_nodes_from(self._first_seen)
        self.digraph.add_edges_from([
            (row.sender, row.receiver, {
                "total_amount": float(row.total_amount),
                "tx_count":     int(row.tx_count),
            })
            for row in edge_stats.itertuples(index=False)
        ])

        # Cycle search runs on SCCs only; compute them once per snapshot.
        self.digraph.graph["_sccs"] = list(nx.strongly_connected_components(self.digraph))

    # ── Queries ───────────────────────────────────────────────────────────────
    @property
    def transactions(self) -> Tuple[Transaction, ...]:
        return self._transactions

    @property
    def frame(self) -> pd.DataFrame:
        """Ledger as a DataFrame in canonical order (built lazily, do not mutate)."""
        if self._frame is None:
            self._frame = pd.DataFrame(
                {
                    "tx_index":  range(len(self._transactions)),
                    "sender":    [tx.from_address for tx in self._transactions],
                    "receiver":  [tx.to_address for tx in self._transactions],
                    "amount":    [tx.amount for tx in self._transactions],
                    "timestamp": [tx.timestamp for tx in self._transactions],
                },
                columns=["tx_index", "sender", "receiver", "amount", "timestamp"],
            )
        return self._frame

    @property
    def addresses(self) -> List[str]:
        """All addresses in first-seen order."""
        return list(self._first_seen)

    def __contains__(self, address: str) -> bool:
        return address in self._first_seen

    def __len__(self) -> int:
        return len(self._transactions)

    def outgoing(self, address: str) -> Sequence[Transaction]:
        return self._outgoing.get(address, _EMPTY)

    def incoming(self, address: str) -> Sequence[Transaction]:
        return self._incoming.get(address, _EMPTY)

    def total_outflow(self, address: str) -> float:
        return self._sent.get(address, 0.0)

    def total_inflow(self, address: str) -> float:
        return self._received.get(address, 0.0)

    def total_volume(self, address: str) -> float:
        """Lifetime turnover: everything sent plus everything received."""
        return self.total_outflow(address) + self.total_inflow(address)

    def first_seen_rank(self, address: str) -> int:
        """Position of the address's first appearance in canonical order."""
        return self._first_seen.get(address, len(self._first_seen))

    def successors(self, address: str) -> List[str]:
        """Distinct receivers of ``address``, ordered by first outgoing transfer."""
        return list(dict.fromkeys(tx.to_address for tx in self.outgoing(address)))


def build_graph(transactions: Iterable[Transaction]) -> TransactionGraph:
    return TransactionGraph(transactions)
