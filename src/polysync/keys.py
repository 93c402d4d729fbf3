"""Keying layer for the graph store.

Provides deterministic id construction and store paths for:
- values: values/value_{slug}
- capabilities: capabilities/capability_{slug}
- cards: cards/card_{n}
- decks: decks/deck_{slug}

Ids for namable entities are derived from the name alone, so two clients
creating "Equity" at the same time write the same key.
"""

from __future__ import annotations

import re

SEPARATOR = "_"
PATH_SEP = "/"

VALUE_PREFIX = "value_"
CAPABILITY_PREFIX = "capability_"
CARD_PREFIX = "card_"
DECK_PREFIX = "deck_"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CARD_ID = re.compile(r"^card_(\d+)$")


def normalize(name: str) -> str:
    """Normalize a display name into an id slug.

    Lowercases, collapses every run of non-alphanumeric characters to a
    single separator and strips separators from both ends.

    Examples:
        "Sustainability" -> "sustainability"
        " Community Resilience " -> "community_resilience"
        "Grant-writing expertise!" -> "grant_writing_expertise"
    """
    slug = _NON_ALNUM.sub(SEPARATOR, name.strip().lower())
    return slug.strip(SEPARATOR)


def entity_id(prefix: str, name: str) -> str:
    """Construct a deterministic id: prefix + normalize(name).

    A name that already carries the prefix is returned unchanged.
    """
    stripped = name.strip()
    if stripped.startswith(prefix) and normalize(stripped) == stripped:
        return stripped
    return f"{prefix}{normalize(name)}"


def value_id(name: str) -> str:
    return entity_id(VALUE_PREFIX, name)


def capability_id(name: str) -> str:
    return entity_id(CAPABILITY_PREFIX, name)


def deck_id(name: str) -> str:
    return entity_id(DECK_PREFIX, name)


def card_id(number: int) -> str:
    return f"{CARD_PREFIX}{number}"


def card_number(cid: str) -> int | None:
    """Extract the sequence number from a card id, or None if malformed."""
    m = _CARD_ID.match(cid)
    return int(m.group(1)) if m else None


def join(*parts: str) -> str:
    """Join path segments, ignoring empty ones."""
    return PATH_SEP.join(p.strip(PATH_SEP) for p in parts if p)


def split(path: str) -> list[str]:
    return [p for p in path.split(PATH_SEP) if p]


def readable_name(eid: str, prefix: str) -> str:
    """Best-effort display name from an id.

    value_community_resilience -> Community Resilience
    """
    slug = eid[len(prefix) :] if eid.startswith(prefix) else eid
    return " ".join(w.capitalize() for w in slug.split(SEPARATOR) if w)
