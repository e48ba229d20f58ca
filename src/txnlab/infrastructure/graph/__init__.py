"""Lock-dependency graphs backed by NetworkX."""

from txnlab.infrastructure.graph.wait_for import WaitForGraph

__all__ = ["WaitForGraph"]
