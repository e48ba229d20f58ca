"""WaitForGraph: transaction wait-for edges on a NetworkX DiGraph.

An edge ``a -> b`` means transaction *a* is blocked on a row lock held
by *b*. A transaction waits on at most one holder at a time, so every
node has out-degree 0 or 1 and any cycle must pass through the edge
that was added last. Checking only from the new waiter is sufficient.

Not thread-safe on its own; the owning lock manager serializes access.
"""

from __future__ import annotations

import networkx as nx

type _Graph = nx.DiGraph


class WaitForGraph:
    """Wait-for graph with cycle detection at edge insertion."""

    def __init__(self) -> None:
        self._graph: _Graph = nx.DiGraph()

    def wait(self, waiter: int, holder: int) -> list[int] | None:
        """Record that *waiter* now waits on *holder*.

        Returns the transaction ids forming a cycle through *waiter*
        (starting at *waiter*), or None when the wait is safe. A wait that
        would close a cycle is not recorded, so the graph stays acyclic.
        """
        self.release(waiter)
        self._graph.add_edge(waiter, holder)
        try:
            cycle = nx.find_cycle(self._graph, source=waiter)
        except nx.NetworkXNoCycle:
            return None
        self.release(waiter)
        return [edge[0] for edge in cycle]

    def release(self, waiter: int) -> None:
        """Drop the outgoing wait edge of *waiter*, if any."""
        if waiter in self._graph:
            self._graph.remove_edges_from(list(self._graph.out_edges(waiter)))

    def forget(self, txn_id: int) -> None:
        """Remove *txn_id* entirely (it committed or rolled back)."""
        if txn_id in self._graph:
            self._graph.remove_node(txn_id)

    def waiting_on(self, waiter: int) -> int | None:
        if waiter not in self._graph:
            return None
        for _, holder in self._graph.out_edges(waiter):
            return int(holder)
        return None

    def __len__(self) -> int:
        return self._graph.number_of_edges()
