"""Card creation and deck linking.

A card references values and capabilities by name. Names are resolved
through the registries (creating missing entities), the card is written with
flag-maps of the resolved ids, and the reverse flag is then set on every
referenced value and capability.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from polysync.adapter import StoreAdapter
from polysync.keys import card_id, card_number
from polysync.logging_config import get_logger
from polysync.models import (
    CAPABILITIES,
    CARD_TEXT_FIELDS,
    CARDS,
    DECKS,
    VALUES,
    Card,
)
from polysync.registry import (
    CurrentUser,
    EntityRegistry,
    EntityResult,
    parse_names_text,
)
from polysync.relations import (
    BidirectionalResult,
    EdgeResult,
    RelationshipSynchronizer,
    edge_owner_path,
)

logger = get_logger("cards")


def _names(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return parse_names_text(raw)
    if isinstance(raw, dict):
        return [str(k) for k, v in raw.items() if v]
    if isinstance(raw, (list, tuple)):
        return [str(n).strip() for n in raw if n is not None and str(n).strip()]
    raise ValueError(
        f"expected names as list, map or text, got {type(raw).__name__}"
    )


class CardInput(BaseModel):
    """Card fields as supplied by callers and import files."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    role_title: str = Field(min_length=1, description="Card title, required")
    backstory: str = Field(default="", description="Narrative background")
    goals: str = Field(default="", description="What the role wants")
    obligations: str = Field(default="", description="What the role owes")
    intellectual_property: str = Field(default="", description="IP held")
    resources: str = Field(default="", description="Resources controlled")
    card_category: str = Field(default="", description="Grouping label")
    type: str = Field(default="", description="Card type label")
    icon: str = Field(default="", description="Icon identifier")
    values: list[str] = Field(
        default_factory=list, description="Value names (list, map or text)"
    )
    capabilities: list[str] = Field(
        default_factory=list, description="Capability names (list, map or text)"
    )

    @field_validator(*CARD_TEXT_FIELDS[1:], mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("values", "capabilities", mode="before")
    @classmethod
    def _coerce_names(cls, v: Any) -> list[str]:
        return _names(v)


@dataclass
class CardResult(EntityResult):
    """EntityResult plus the reverse edges written for the card."""

    edges: list[EdgeResult] = field(default_factory=list)

    @property
    def failed_edges(self) -> list[EdgeResult]:
        return [e for e in self.edges if not e.ok]


class CardService:
    def __init__(
        self,
        adapter: StoreAdapter,
        values: EntityRegistry,
        capabilities: EntityRegistry,
        decks: EntityRegistry,
        synchronizer: RelationshipSynchronizer,
        current_user: CurrentUser | None = None,
    ) -> None:
        self.adapter = adapter
        self.values = values
        self.capabilities = capabilities
        self.decks = decks
        self.synchronizer = synchronizer
        self.current_user = current_user
        self.registry = EntityRegistry(adapter, CARDS, current_user)
        self._issued = 0

    async def next_card_id(self) -> str:
        """card_<n> one above the highest number observed or issued.

        The observed maximum comes from a bounded collection window, so
        cards not yet replicated here can be missed; the locally issued
        maximum keeps this process from reusing its own numbers.
        """
        observed = 0
        items = await self.adapter.collect(CARDS.namespace)
        for key, record in items.items():
            n = card_number(key)
            if isinstance(record, dict) and isinstance(
                record.get("card_number"), int
            ):
                n = max(n or 0, record["card_number"])
            if n:
                observed = max(observed, n)

        number = max(observed, self._issued) + 1
        self._issued = number
        return card_id(number)

    async def create_card(self, data: CardInput | dict[str, Any]) -> CardResult:
        """Create a card and mirror it onto its values and capabilities.

        Raises pydantic.ValidationError for invalid input; store trouble is
        reported on the result.
        """
        if not isinstance(data, CardInput):
            data = CardInput.model_validate(data)

        value_ids = await self.values.create_or_get(data.values)
        capability_ids = await self.capabilities.create_or_get(data.capabilities)

        cid = await self.next_card_id()
        text = {name: getattr(data, name) for name in CARD_TEXT_FIELDS}
        card = Card(
            id=cid,
            card_number=card_number(cid) or 0,
            creator_ref=self.current_user() if self.current_user else None,
            values=value_ids,
            capabilities=capability_ids,
            **text,
        )

        stored = await self.registry.store_new(card)
        result = CardResult(
            stored.entity,
            stored.state,
            error=stored.error,
            attempts=stored.attempts,
        )
        if stored.entity is None:
            return result

        mirrors = [(VALUES, vid) for vid in value_ids] + [
            (CAPABILITIES, capid) for capid in capability_ids
        ]
        for i, (kind, target_id) in enumerate(mirrors):
            rel = self.synchronizer.schema.between(CARDS, kind)
            # forward side went out with the card record itself
            self.synchronizer.track(
                edge_owner_path(CARDS, cid, rel.field), target_id, stored.state
            )
            if i:
                await asyncio.sleep(self.adapter.config.settle_delay)
            result.edges.append(
                await self.synchronizer.set_edge(
                    edge_owner_path(kind, target_id, rel.reverse_field), cid
                )
            )

        logger.info(
            "card created",
            card_id=cid,
            values=len(value_ids),
            capabilities=len(capability_ids),
            failed_edges=len(result.failed_edges),
        )
        return result

    async def get_card(self, cid: str) -> Card | None:
        return await self.registry.get(cid)

    async def get_cards(self) -> list[Card]:
        cards = await self.registry.get_all()
        cards.sort(key=lambda c: c.card_number)
        return cards

    async def add_card_to_deck(self, cid: str, did: str) -> BidirectionalResult:
        return await self.synchronizer.add_bidirectional_edge(
            CARDS, cid, DECKS, did
        )
