"""Entity commands - create values, capabilities and decks, list any kind."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import tyro

from polysync import console
from polysync.cli._common import with_services
from polysync.registry import EntityResult, parse_names_text
from polysync.service import Services


def _report(result: EntityResult, label: str) -> bool:
    if result.entity is None:
        console.error(f"{label}: {result.error}")
        return False
    if result.reused:
        console.dim(f"{result.entity.id} (exists)")
    else:
        console.success(f"{result.entity.id} ({result.state.value})")
    return True


@dataclass
class ValuesCreate:
    """Create values by name (existing ones are reused)."""

    names: tyro.conf.Positional[list[str]] = field(
        default_factory=list,
        metadata={"help": "Value names"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        if not self.names:
            console.error("no names given")
            return 1

        async def _run(svc: Services) -> int:
            failed = 0
            for name in self.names:
                if not _report(await svc.values.create(name), name):
                    failed += 1
            return 1 if failed else 0

        return asyncio.run(with_services(self.snapshot, _run))


@dataclass
class CapabilitiesCreate:
    """Create capabilities from free text split on , ; and newlines."""

    text: tyro.conf.Positional[str] = field(
        default="",
        metadata={"help": "Capability names, e.g. 'Grant writing; Outreach'"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        names = parse_names_text(self.text)
        if not names:
            console.error("no capability names given")
            return 1

        async def _run(svc: Services) -> int:
            ids = await svc.capabilities.create_or_get(names)
            for cid in ids:
                console.success(cid)
            if len(ids) < len({svc.capabilities.id_for(n) for n in names}):
                console.warning("some capabilities could not be created")
                return 1
            return 0

        return asyncio.run(with_services(self.snapshot, _run))


@dataclass
class DecksCreate:
    """Create a deck."""

    name: tyro.conf.Positional[str] = field(
        default="",
        metadata={"help": "Deck name"},
    )
    description: str = field(
        default="",
        metadata={"help": "Deck description"},
    )
    public: bool = field(
        default=False,
        metadata={"help": "Mark the deck public"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        if not self.name.strip():
            console.error("deck name required")
            return 1

        async def _run(svc: Services) -> int:
            result = await svc.decks.create(
                self.name, description=self.description, is_public=self.public
            )
            return 0 if _report(result, self.name) else 1

        return asyncio.run(with_services(self.snapshot, _run))


@dataclass
class ListEntities:
    """List entities of a kind observed within the collection window."""

    kind: tyro.conf.Positional[
        Literal["values", "capabilities", "cards", "decks"]
    ] = field(
        default="values",
        metadata={"help": "Entity kind"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        async def _run(svc: Services) -> int:
            entities = await svc.registry(self.kind).get_all()
            console.header(f"{self.kind} ({len(entities)})")
            for entity in entities:
                label = getattr(entity, "name", None) or getattr(
                    entity, "role_title", ""
                )
                links = sum(
                    len(getattr(entity, attr, {}) or {})
                    for attr in ("cards", "values", "capabilities", "decks")
                )
                console.key_value(entity.id, f"{label}  ({links} links)")
            return 0

        return asyncio.run(with_services(self.snapshot, _run))
