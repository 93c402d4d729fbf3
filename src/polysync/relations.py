"""Bidirectional relationship maintenance.

An edge between two entities is two independent flag writes, one on each
endpoint:

    cards/card_7/decks/deck_ops = True
    decks/deck_ops/cards/card_7 = True

The store cannot write both atomically, so each side is tracked as its own
DirectedEdge in a RelationIndex with its own retry state. A failed reverse
side does not roll back the forward side; the result reports it as partial
and the auditor can find and heal it later.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum

from polysync.adapter import StoreAdapter, WriteState
from polysync.keys import join
from polysync.logging_config import get_logger
from polysync.models import EntityKind, RelationSchema

logger = get_logger("relations")


class EdgeState(str, Enum):
    UNATTEMPTED = "unattempted"
    IN_FLIGHT = "in_flight"
    ACKED = "acked"
    TIMED_OUT_ASSUMED_OK = "timed_out_assumed_ok"
    FAILED_AFTER_RETRIES = "failed_after_retries"


_SETTLED_OK = (EdgeState.ACKED, EdgeState.TIMED_OUT_ASSUMED_OK)

_WRITE_TO_EDGE = {
    WriteState.ACKED: EdgeState.ACKED,
    WriteState.TIMED_OUT_ASSUMED_OK: EdgeState.TIMED_OUT_ASSUMED_OK,
}


def edge_owner_path(kind: EntityKind, eid: str, field_name: str) -> str:
    """Path of the flag-map holding one side of an edge."""
    return join(kind.path(eid), field_name)


@dataclass
class DirectedEdge:
    """One side of a relationship: owner_path/target_id = True."""

    owner_path: str
    target_id: str
    state: EdgeState = EdgeState.UNATTEMPTED
    attempts: int = 0
    error: str | None = None
    updated_at: float = field(default_factory=time.time)

    @property
    def key(self) -> tuple[str, str]:
        return (self.owner_path, self.target_id)

    @property
    def path(self) -> str:
        return join(self.owner_path, self.target_id)


@dataclass
class EdgeResult:
    owner_path: str
    target_id: str
    state: EdgeState
    attempts: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state in _SETTLED_OK

    @property
    def confirmed(self) -> bool:
        return self.state is EdgeState.ACKED


@dataclass
class BidirectionalResult:
    """Outcome of both sides. reverse is None if forward never succeeded."""

    forward: EdgeResult
    reverse: EdgeResult | None = None

    @property
    def ok(self) -> bool:
        return self.forward.ok and self.reverse is not None and self.reverse.ok

    @property
    def partial(self) -> bool:
        return self.forward.ok and (self.reverse is None or not self.reverse.ok)


class RelationIndex:
    """In-process record of every directed edge written this session."""

    def __init__(self) -> None:
        self._edges: dict[tuple[str, str], DirectedEdge] = {}

    def __len__(self) -> int:
        return len(self._edges)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._edges

    def record(self, owner_path: str, target_id: str) -> DirectedEdge:
        key = (owner_path, target_id)
        edge = self._edges.get(key)
        if edge is None:
            edge = DirectedEdge(owner_path, target_id)
            self._edges[key] = edge
        return edge

    def get(self, owner_path: str, target_id: str) -> DirectedEdge | None:
        return self._edges.get((owner_path, target_id))

    def discard(self, owner_path: str, target_id: str) -> None:
        self._edges.pop((owner_path, target_id), None)

    def edges(self, state: EdgeState | None = None) -> list[DirectedEdge]:
        if state is None:
            return list(self._edges.values())
        return [e for e in self._edges.values() if e.state is state]

    def unconfirmed(self) -> list[DirectedEdge]:
        return [e for e in self._edges.values() if e.state is not EdgeState.ACKED]

    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in EdgeState}
        for edge in self._edges.values():
            counts[edge.state.value] += 1
        return counts


class RelationshipSynchronizer:
    """Writes edge flags with retries and keeps the relation index."""

    def __init__(
        self,
        adapter: StoreAdapter,
        schema: RelationSchema | None = None,
        index: RelationIndex | None = None,
    ) -> None:
        self.adapter = adapter
        self.schema = schema or RelationSchema()
        self.index = index or RelationIndex()

    def track(
        self, owner_path: str, target_id: str, written: WriteState
    ) -> DirectedEdge:
        """Index an edge that was written as part of a larger record."""
        edge = self.index.record(owner_path, target_id)
        edge.state = _WRITE_TO_EDGE.get(
            written, EdgeState.FAILED_AFTER_RETRIES
        )
        edge.attempts = max(edge.attempts, 1)
        edge.updated_at = time.time()
        return edge

    async def set_edge(self, owner_path: str, target_id: str) -> EdgeResult:
        """Write owner_path/target_id = True, retrying with linear backoff."""
        edge = self.index.record(owner_path, target_id)
        edge.state = EdgeState.IN_FLIGHT
        edge.error = None

        attempts = self.adapter.config.edge_attempts
        backoff = self.adapter.config.edge_backoff
        for attempt in range(1, attempts + 1):
            edge.attempts = attempt
            result = await self.adapter.put(edge.path, True)
            if result.state is WriteState.ACKED:
                edge.state = EdgeState.ACKED
                break
            if result.state is WriteState.TIMED_OUT_ASSUMED_OK:
                edge.state = EdgeState.TIMED_OUT_ASSUMED_OK
                break
            edge.error = result.error
            logger.debug(
                "edge write failed",
                path=edge.path,
                attempt=attempt,
                error=result.error,
            )
            if attempt < attempts:
                await asyncio.sleep(backoff * attempt)
        else:
            edge.state = EdgeState.FAILED_AFTER_RETRIES
            logger.warning(
                "edge write gave up", path=edge.path, attempts=attempts
            )

        edge.updated_at = time.time()
        return EdgeResult(
            owner_path, target_id, edge.state, edge.attempts, edge.error
        )

    async def add_bidirectional_edge(
        self,
        owner: EntityKind,
        owner_id: str,
        target: EntityKind,
        target_id: str,
    ) -> BidirectionalResult:
        """Link owner and target on both sides.

        Forward first, then the settle delay, then the reverse side. The
        forward side is not rolled back if the reverse fails.
        """
        rel = self.schema.between(owner, target)
        forward = await self.set_edge(
            edge_owner_path(owner, owner_id, rel.field), target_id
        )
        if not forward.ok:
            logger.warning(
                "forward edge failed, skipping reverse",
                owner=owner_id,
                target=target_id,
            )
            return BidirectionalResult(forward)

        await asyncio.sleep(self.adapter.config.settle_delay)

        reverse = await self.set_edge(
            edge_owner_path(target, target_id, rel.reverse_field), owner_id
        )
        result = BidirectionalResult(forward, reverse)
        if result.partial:
            logger.warning(
                "partial relationship",
                owner=owner_id,
                target=target_id,
                field=rel.field,
                reverse_state=reverse.state.value,
            )
        return result

    async def remove_edge(self, owner_path: str, target_id: str) -> bool:
        """Tombstone one flag. The other side is left to the caller."""
        result = await self.adapter.put(join(owner_path, target_id), None)
        if result.ok:
            self.index.discard(owner_path, target_id)
        return result.ok
