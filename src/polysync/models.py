"""Domain model over the schemaless store.

Entities are plain dataclasses converted to and from store records. Record
field names are the persisted layout and must not change:

    values/value_<slug>            {value_id, name, created_at, creator_ref, cards}
    capabilities/capability_<slug> {capability_id, name, created_at, creator_ref, cards}
    cards/card_<n>                 {card_id, card_number, role_title, ..., values,
                                    capabilities, decks, created_at}
    decks/deck_<slug>              {deck_id, name, description, creator_ref,
                                    is_public, cards, created_at}

Relationship fields are flag-maps ({target_id: True}); each side of an edge
is stored independently on its own entity.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, ClassVar

from polysync.keys import (
    CAPABILITY_PREFIX,
    CARD_PREFIX,
    DECK_PREFIX,
    VALUE_PREFIX,
    card_number,
    join,
    readable_name,
)

FlagMap = dict[str, bool]


def now_ms() -> int:
    return int(time.time() * 1000)


def is_flag_map(raw: Any) -> bool:
    """True if raw is a dict whose live entries are all True flags."""
    if not isinstance(raw, dict):
        return False
    return all(v is True or v is None for v in raw.values())


def flags(raw: Any) -> FlagMap:
    """Set flags of a stored field; anything malformed reads as empty."""
    if not isinstance(raw, dict):
        return {}
    return {str(k): True for k, v in raw.items() if v is True}


@dataclass(frozen=True)
class EntityKind:
    """A namespace of entities sharing an id prefix."""

    name: str
    prefix: str
    id_field: str

    @property
    def namespace(self) -> str:
        return self.name

    def path(self, eid: str) -> str:
        return join(self.namespace, eid)


VALUES = EntityKind("values", VALUE_PREFIX, "value_id")
CAPABILITIES = EntityKind("capabilities", CAPABILITY_PREFIX, "capability_id")
CARDS = EntityKind("cards", CARD_PREFIX, "card_id")
DECKS = EntityKind("decks", DECK_PREFIX, "deck_id")

KINDS: dict[str, EntityKind] = {
    k.name: k for k in (VALUES, CAPABILITIES, CARDS, DECKS)
}


def kind_for(name: str) -> EntityKind:
    try:
        return KINDS[name]
    except KeyError:
        raise ValueError(
            f"unknown entity kind: {name!r} (expected one of {sorted(KINDS)})"
        ) from None


# -- relations ---------------------------------------------------------------


@dataclass(frozen=True)
class Relation:
    """owner.field holds flags for target ids; target.reverse_field mirrors."""

    owner: EntityKind
    field: str
    target: EntityKind
    reverse_field: str

    def reversed(self) -> Relation:
        return Relation(self.target, self.reverse_field, self.owner, self.field)


DEFAULT_RELATIONS: tuple[Relation, ...] = (
    Relation(CARDS, "values", VALUES, "cards"),
    Relation(CARDS, "capabilities", CAPABILITIES, "cards"),
    Relation(CARDS, "decks", DECKS, "cards"),
)


class RelationSchema:
    """Lookup over the declared relations, in both directions."""

    def __init__(self, relations: tuple[Relation, ...] = DEFAULT_RELATIONS):
        self._relations: list[Relation] = []
        for rel in relations:
            self._relations.append(rel)
            self._relations.append(rel.reversed())

    @property
    def relations(self) -> list[Relation]:
        """Every relation in both directions."""
        return list(self._relations)

    def between(self, owner: EntityKind, target: EntityKind) -> Relation:
        for rel in self._relations:
            if rel.owner == owner and rel.target == target:
                return rel
        raise ValueError(f"no relation from {owner.name} to {target.name}")

    def fields_for(self, owner: EntityKind) -> list[Relation]:
        return [r for r in self._relations if r.owner == owner]

    def field(self, owner: EntityKind, name: str) -> Relation:
        for rel in self.fields_for(owner):
            if rel.field == name:
                return rel
        raise ValueError(f"{owner.name} has no relationship field {name!r}")


# -- entities ----------------------------------------------------------------


@dataclass
class NamedEntity:
    """Shared shape of values and capabilities."""

    kind: ClassVar[EntityKind]

    id: str
    name: str
    created_at: int = field(default_factory=now_ms)
    creator_ref: str | None = None
    cards: FlagMap = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            self.kind.id_field: self.id,
            "name": self.name,
            "created_at": self.created_at,
            "cards": dict(self.cards),
        }
        if self.creator_ref:
            record["creator_ref"] = self.creator_ref
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any], eid: str = ""):
        rid = str(record.get(cls.kind.id_field) or eid)
        return cls(
            id=rid,
            # older writers stored only the id
            name=str(record.get("name") or readable_name(rid, cls.kind.prefix)),
            created_at=int(record.get("created_at") or 0),
            creator_ref=record.get("creator_ref"),
            cards=flags(record.get("cards")),
        )


@dataclass
class Value(NamedEntity):
    kind: ClassVar[EntityKind] = VALUES


@dataclass
class Capability(NamedEntity):
    kind: ClassVar[EntityKind] = CAPABILITIES


@dataclass
class Deck(NamedEntity):
    kind: ClassVar[EntityKind] = DECKS

    description: str = ""
    is_public: bool = False

    def to_record(self) -> dict[str, Any]:
        record = super().to_record()
        record["description"] = self.description
        record["is_public"] = self.is_public
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any], eid: str = "") -> Deck:
        deck = super().from_record(record, eid)
        deck.description = str(record.get("description") or "")
        deck.is_public = bool(record.get("is_public", False))
        return deck


CARD_TEXT_FIELDS = (
    "role_title",
    "backstory",
    "goals",
    "obligations",
    "intellectual_property",
    "resources",
    "card_category",
    "type",
    "icon",
)


@dataclass
class Card:
    kind: ClassVar[EntityKind] = CARDS

    id: str
    card_number: int
    role_title: str
    backstory: str = ""
    goals: str = ""
    obligations: str = ""
    intellectual_property: str = ""
    resources: str = ""
    card_category: str = ""
    type: str = ""
    icon: str = ""
    creator_ref: str | None = None
    values: FlagMap = field(default_factory=dict)
    capabilities: FlagMap = field(default_factory=dict)
    decks: FlagMap = field(default_factory=dict)
    created_at: int = field(default_factory=now_ms)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "card_id": self.id,
            "card_number": self.card_number,
        }
        for name in CARD_TEXT_FIELDS:
            record[name] = getattr(self, name)
        if self.creator_ref:
            record["creator_ref"] = self.creator_ref
        record["values"] = dict(self.values)
        record["capabilities"] = dict(self.capabilities)
        record["decks"] = dict(self.decks)
        record["created_at"] = self.created_at
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any], eid: str = "") -> Card:
        cid = str(record.get("card_id") or eid)
        number = record.get("card_number")
        if not isinstance(number, int):
            number = card_number(cid) or 0
        text = {name: str(record.get(name) or "") for name in CARD_TEXT_FIELDS}
        return cls(
            id=cid,
            card_number=number,
            creator_ref=record.get("creator_ref"),
            values=flags(record.get("values")),
            capabilities=flags(record.get("capabilities")),
            decks=flags(record.get("decks")),
            created_at=int(record.get("created_at") or 0),
            **text,
        )


ENTITY_TYPES: dict[str, type] = {
    VALUES.name: Value,
    CAPABILITIES.name: Capability,
    CARDS.name: Card,
    DECKS.name: Deck,
}


def entity_from_record(kind: EntityKind, record: Any, eid: str = "") -> Any:
    """Build the entity for kind, or None if record is not a dict."""
    if not isinstance(record, dict):
        return None
    return ENTITY_TYPES[kind.name].from_record(record, eid)
