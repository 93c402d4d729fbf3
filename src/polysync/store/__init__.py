"""Graph store backends."""

from polysync.store.base import AckCallback, GraphStore, ItemCallback, Subscription
from polysync.store.memory import MemoryGraphStore

__all__ = [
    "AckCallback",
    "GraphStore",
    "ItemCallback",
    "MemoryGraphStore",
    "Subscription",
]
