"""Graph store boundary.

The store is schemaless and eventually consistent: reads answer from the
local replica, writes are acknowledged asynchronously through a callback,
and subscriptions push (value, key) pairs until explicitly stopped.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

# ack payload: {"ok": True} or {"err": "reason"}
AckCallback = Callable[[dict[str, Any]], None]
ItemCallback = Callable[[Any, str], None]


@dataclass
class Subscription:
    """Handle for an open-ended subscription."""

    path: str
    _stop: Callable[[], None] | None = None
    active: bool = True

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._stop is not None:
            self._stop()


class GraphStore(ABC):
    """Abstract get/put/subscribe primitives of the underlying store."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Read the node at path. Returns None when absent or tombstoned.

        No upper bound on latency is promised.
        """

    @abstractmethod
    def put(
        self,
        path: str,
        value: Any,
        ack: AckCallback | None = None,
    ) -> None:
        """Write value at path.

        Dicts merge into the existing node field by field; anything else
        replaces the leaf. None writes a tombstone. The ack callback fires
        later, or never.
        """

    @abstractmethod
    def subscribe(self, path: str, on_item: ItemCallback) -> Subscription:
        """Push (child_value, child_key) for every child of path."""
