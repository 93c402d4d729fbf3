"""In-process graph store replica.

MemoryGraphStore behaves like the local replica of a replicated graph
store: writes land locally first, acknowledgements arrive later (or never),
and concurrent writers converge through per-leaf last-write-wins merge.

Latency and faults can be injected for tests and local experiments:

    store = MemoryGraphStore(
        read_delay=0.01,          # every get/subscription push is late
        ack_delay=None,           # writes are never acknowledged
        reject=lambda p: "full" if p.startswith("decks/") else None,
        lose=lambda p: False,     # lost writes: not applied, never acked
    )

Snapshots are persisted with msgpack so a local-first replica survives
restarts.
"""

from __future__ import annotations

import asyncio
import copy
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import msgpack

from polysync.keys import join, split
from polysync.logging_config import get_logger
from polysync.store.base import (
    AckCallback,
    GraphStore,
    ItemCallback,
    Subscription,
)

logger = get_logger("store.memory")

SNAPSHOT_VERSION = 1


def _flatten(
    value: dict[str, Any], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], Any]]:
    """Yield (relative path, leaf) pairs. Empty dicts are leaves."""
    if not value:
        yield prefix, {}
        return
    for key, child in value.items():
        if isinstance(child, dict):
            yield from _flatten(child, prefix + (str(key),))
        else:
            yield prefix + (str(key),), child


class MemoryGraphStore(GraphStore):
    """Nested-dict replica with last-write-wins state per leaf."""

    def __init__(
        self,
        read_delay: float = 0.0,
        ack_delay: float | None = 0.0,
        reject: Callable[[str], str | None] | None = None,
        lose: Callable[[str], bool] | None = None,
        silent_reads: Callable[[str], bool] | None = None,
    ) -> None:
        self.read_delay = read_delay
        self.ack_delay = ack_delay
        self.reject = reject
        self.lose = lose
        self.silent_reads = silent_reads

        self._root: dict[str, Any] = {}
        self._states: dict[str, float] = {}
        self._subs: list[tuple[list[str], ItemCallback, Subscription]] = []
        self._last_state = 0.0

        self.get_count = 0
        self.put_count = 0

    # -- GraphStore ---------------------------------------------------------

    async def get(self, path: str) -> Any:
        self.get_count += 1
        if self.silent_reads and self.silent_reads(path):
            # the replica never answers; only the caller's deadline ends this
            await asyncio.Event().wait()
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        return copy.deepcopy(self._lookup(split(path)))

    def put(
        self,
        path: str,
        value: Any,
        ack: AckCallback | None = None,
    ) -> None:
        self.put_count += 1
        loop = asyncio.get_running_loop()

        if self.lose and self.lose(path):
            logger.debug("write lost", path=path)
            return

        reason = self.reject(path) if self.reject else None
        if reason:
            logger.debug("write rejected", path=path, reason=reason)
            if ack is not None:
                delay = self.ack_delay if self.ack_delay is not None else 0.0
                loop.call_later(delay, ack, {"err": reason})
            return

        self.apply(path, value, self._tick())
        self._notify(split(path), value)

        if ack is not None and self.ack_delay is not None:
            loop.call_later(self.ack_delay, ack, {"ok": True})

    def subscribe(self, path: str, on_item: ItemCallback) -> Subscription:
        parts = split(path)
        sub = Subscription(path=path)
        entry = (parts, on_item, sub)
        self._subs.append(entry)

        def _stop() -> None:
            if entry in self._subs:
                self._subs.remove(entry)

        sub._stop = _stop

        node = self._lookup(parts)
        if isinstance(node, dict):
            for key in list(node):
                self._schedule_delivery(sub, on_item, parts + [key])
        return sub

    # -- merge --------------------------------------------------------------

    def apply(self, path: str, value: Any, state: float) -> bool:
        """Apply a write with an explicit state. Returns True if it won."""
        parts = split(path)
        if isinstance(value, dict):
            won = False
            for rel, leaf in _flatten(value):
                won = self._apply_leaf(parts + list(rel), leaf, state) or won
            return won
        return self._apply_leaf(parts, copy.deepcopy(value), state)

    def merge_from(self, other: MemoryGraphStore) -> int:
        """Merge another replica's leaves into this one.

        Returns the number of leaves that changed here.
        """
        changed = 0
        for path, state in sorted(other._states.items(), key=lambda kv: kv[1]):
            value = other._lookup(split(path))
            if isinstance(value, dict):
                # children carry their own states
                value = {}
            if self._apply_leaf(split(path), copy.deepcopy(value), state):
                changed += 1
        self._last_state = max(self._last_state, other._last_state)
        return changed

    # -- persistence --------------------------------------------------------

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = msgpack.packb(
            {
                "version": SNAPSHOT_VERSION,
                "root": self._root,
                "states": self._states,
            },
            use_bin_type=True,
        )
        path.write_bytes(data)
        logger.debug("snapshot saved", path=str(path), size=len(data))

    @classmethod
    def load(cls, path: Path, **kwargs: Any) -> MemoryGraphStore:
        store = cls(**kwargs)
        if not path.exists():
            return store
        data = msgpack.unpackb(
            path.read_bytes(), raw=False, strict_map_key=False
        )
        if data.get("version") != SNAPSHOT_VERSION:
            raise ValueError(
                f"unsupported snapshot version: {data.get('version')}"
            )
        store._root = data.get("root") or {}
        store._states = data.get("states") or {}
        store._last_state = max(store._states.values(), default=0.0)
        logger.debug("snapshot loaded", path=str(path))
        return store

    # -- inspection ---------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._root)

    def peek(self, path: str) -> Any:
        """Synchronous read for tests and tooling."""
        return copy.deepcopy(self._lookup(split(path)))

    def keys(self, namespace: str) -> list[str]:
        node = self._lookup(split(namespace))
        if not isinstance(node, dict):
            return []
        return [k for k, v in node.items() if v is not None]

    # -- internals ----------------------------------------------------------

    def _tick(self) -> float:
        self._last_state = max(time.time(), self._last_state + 1e-6)
        return self._last_state

    def _lookup(self, parts: list[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict):
                return None
            node = node.get(part)
        return node

    def _effective_state(self, parts: list[str]) -> float:
        # only non-dict ancestors (scalars, tombstones) shadow their children
        best = self._states.get(join(*parts), 0.0)
        for i in range(1, len(parts)):
            if not isinstance(self._lookup(parts[:i]), dict):
                best = max(best, self._states.get(join(*parts[:i]), 0.0))
        return best

    def _apply_leaf(self, parts: list[str], value: Any, state: float) -> bool:
        if not parts:
            return False
        key = join(*parts)
        current_state = self._effective_state(parts)
        if state < current_state:
            return False
        if state == current_state and key in self._states:
            # deterministic tie-break so replicas converge
            if repr(value) <= repr(self._lookup(parts)):
                return False

        node = self._root
        for i, part in enumerate(parts[:-1]):
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
                # the scalar/tombstone that was here is now superseded
                self._states[join(*parts[: i + 1])] = state
            node = child

        leaf = parts[-1]
        if isinstance(value, dict) and not value:
            if not isinstance(node.get(leaf), dict):
                node[leaf] = {}
        else:
            node[leaf] = value
            if value is None or not isinstance(value, dict):
                self._drop_descendant_states(key)

        self._states[key] = state
        return True

    def _drop_descendant_states(self, key: str) -> None:
        prefix = key + "/"
        for k in [k for k in self._states if k.startswith(prefix)]:
            del self._states[k]

    def _notify(self, parts: list[str], value: Any) -> None:
        for sub_parts, on_item, sub in list(self._subs):
            n = len(sub_parts)
            if parts[:n] != sub_parts:
                continue
            if len(parts) > n:
                self._schedule_delivery(sub, on_item, parts[: n + 1])
            elif isinstance(value, dict):
                for key in value:
                    self._schedule_delivery(sub, on_item, parts + [str(key)])

    def _schedule_delivery(
        self, sub: Subscription, on_item: ItemCallback, parts: list[str]
    ) -> None:
        loop = asyncio.get_running_loop()
        loop.call_later(self.read_delay, self._deliver, sub, on_item, parts)

    def _deliver(
        self, sub: Subscription, on_item: ItemCallback, parts: list[str]
    ) -> None:
        if not sub.active:
            return
        value = self._lookup(parts)
        if value is None:
            return
        on_item(copy.deepcopy(value), parts[-1])
