"""Entity registry: dedup-on-create for namable entities.

The id of a value, capability or deck is derived from its name, so two
clients creating the same name converge on one key without coordinating.
Creation is check-then-write:

1. race an existence check against the short check timeout
2. if found, hand back the stored entity unchanged
3. otherwise (or if the check timed out) write the new record, retrying
   rejected writes with linear backoff; a write that is never acked counts
   as success

Two concurrent creates may both miss the check. Both then write the same
record, so the outcome is at-least-once creation with an identical payload.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from polysync.adapter import StoreAdapter, WriteState
from polysync.keys import entity_id, normalize
from polysync.logging_config import get_logger
from polysync.models import (
    CARDS,
    ENTITY_TYPES,
    EntityKind,
    entity_from_record,
)

logger = get_logger("registry")

_NAME_SPLIT = re.compile(r"[,;\n]")

CurrentUser = Callable[[], str | None]


def parse_names_text(text: str) -> list[str]:
    """Split free text on commas, semicolons and newlines.

    >>> parse_names_text("Equity, Care;\\n  Trust ,,")
    ['Equity', 'Care', 'Trust']
    """
    return [part.strip() for part in _NAME_SPLIT.split(text) if part.strip()]


@dataclass
class EntityResult:
    """Outcome of a create. entity is None only when creation failed."""

    entity: Any | None
    state: WriteState
    reused: bool = False
    error: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.entity is not None


class EntityRegistry:
    """Create, read and tombstone the entities of one kind."""

    def __init__(
        self,
        adapter: StoreAdapter,
        kind: EntityKind,
        current_user: CurrentUser | None = None,
    ) -> None:
        self.adapter = adapter
        self.kind = kind
        self.current_user = current_user

    @property
    def config(self):
        return self.adapter.config

    def id_for(self, name: str) -> str:
        return entity_id(self.kind.prefix, name)

    async def create(self, name: str, **fields: Any) -> EntityResult:
        """Create the entity for name, or return the one already stored.

        Never raises; exhausting the retry budget yields a result with
        entity=None and error set.
        """
        if self.kind is CARDS:
            return EntityResult(
                None,
                WriteState.IDLE,
                error="cards are numbered, create them via CardService",
            )

        name = name.strip()
        if not normalize(name):
            return EntityResult(None, WriteState.IDLE, error="empty name")

        eid = self.id_for(name)
        path = self.kind.path(eid)

        existing = await self.adapter.check(path)
        if existing.found and isinstance(existing.value, dict):
            logger.debug("reusing existing entity", kind=self.kind.name, id=eid)
            return EntityResult(
                entity_from_record(self.kind, existing.value, eid),
                WriteState.IDLE,
                reused=True,
            )

        entity = ENTITY_TYPES[self.kind.name](
            id=eid,
            name=name,
            creator_ref=self._creator(),
            **fields,
        )
        return await self.store_new(entity)

    async def store_new(self, entity: Any) -> EntityResult:
        """Write a freshly built entity under the create retry budget."""
        if not self.adapter.available:
            return EntityResult(
                None, WriteState.FAILED, error="store unavailable"
            )

        eid = entity.id
        path = self.kind.path(eid)
        record = entity.to_record()

        attempts = self.config.create_attempts
        last_error = None
        for attempt in range(1, attempts + 1):
            result = await self.adapter.put(path, record)
            if result.ok:
                logger.debug(
                    "created entity",
                    kind=self.kind.name,
                    id=eid,
                    state=result.state.value,
                    attempt=attempt,
                )
                return EntityResult(entity, result.state, attempts=attempt)

            last_error = result.error
            logger.warning(
                "create attempt failed",
                kind=self.kind.name,
                id=eid,
                attempt=attempt,
                error=last_error,
            )
            if attempt < attempts:
                await asyncio.sleep(self.config.create_backoff * attempt)

        logger.error(
            "create failed after retries",
            kind=self.kind.name,
            id=eid,
            attempts=attempts,
        )
        return EntityResult(
            None,
            WriteState.FAILED,
            error=f"failed to create {eid} after {attempts} attempts: {last_error}",
            attempts=attempts,
        )

    async def get(self, eid: str) -> Any | None:
        result = await self.adapter.get(self.kind.path(eid))
        if not result.found:
            return None
        return entity_from_record(self.kind, result.value, eid)

    async def fetch(self, eid: str, attempts: int | None = None) -> Any | None:
        """get() retried with backoff, for records that may not have
        replicated yet."""
        if not self.adapter.available:
            return None
        attempts = attempts or self.config.create_attempts
        for attempt in range(1, attempts + 1):
            entity = await self.get(eid)
            if entity is not None:
                return entity
            if attempt < attempts:
                logger.debug(
                    "entity not visible yet, retrying",
                    kind=self.kind.name,
                    id=eid,
                    attempt=attempt,
                )
                await asyncio.sleep(self.config.create_backoff * attempt)
        return None

    async def get_all(self, window: float | None = None) -> list[Any]:
        """Entities observed in the namespace within the collection window."""
        items = await self.adapter.collect(self.kind.namespace, window)
        entities = []
        for key, record in items.items():
            entity = entity_from_record(self.kind, record, key)
            if entity is not None:
                entities.append(entity)
        entities.sort(key=lambda e: e.id)
        return entities

    async def update(self, eid: str, fields: dict[str, Any]) -> bool:
        """Partial-field write; untouched fields keep their stored values."""
        if not fields:
            return True
        result = await self.adapter.put(self.kind.path(eid), dict(fields))
        return result.ok

    async def delete(self, eid: str) -> bool:
        """Tombstone the entity. Edges pointing at it are left in place."""
        result = await self.adapter.put(self.kind.path(eid), None)
        if result.ok:
            logger.info("entity tombstoned", kind=self.kind.name, id=eid)
        return result.ok

    async def create_or_get(self, names: Iterable[str] | str) -> dict[str, bool]:
        """Resolve names to a flag-map of ids, creating what is missing.

        Text is split with parse_names_text. Names are handled in order and
        a name whose id is already in the map is skipped.
        """
        if isinstance(names, str):
            names = parse_names_text(names)

        ids: dict[str, bool] = {}
        for name in names:
            if not normalize(name):
                continue
            if self.id_for(name) in ids:
                continue
            result = await self.create(name)
            if result.entity is None:
                logger.warning(
                    "could not resolve name",
                    kind=self.kind.name,
                    name=name,
                    error=result.error,
                )
                continue
            ids[result.entity.id] = True
        return ids

    async def name_index(self, window: float | None = None) -> dict[str, str]:
        """Map lowercased display name -> id for every observed entity."""
        index: dict[str, str] = {}
        for entity in await self.get_all(window):
            name = getattr(entity, "name", "")
            if name:
                index[name.strip().lower()] = entity.id
        return index

    def _creator(self) -> str | None:
        if self.current_user is None:
            return None
        return self.current_user()
