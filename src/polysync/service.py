"""Wiring for the reconciliation components over one store handle."""

from __future__ import annotations

from dataclasses import dataclass

from polysync.adapter import StoreAdapter
from polysync.auditor import ConsistencyAuditor
from polysync.cards import CardService
from polysync.config import StoreConfig
from polysync.importer import BulkImporter
from polysync.models import CAPABILITIES, DECKS, VALUES, RelationSchema
from polysync.registry import CurrentUser, EntityRegistry
from polysync.relations import RelationshipSynchronizer
from polysync.store.base import GraphStore


@dataclass
class Services:
    adapter: StoreAdapter
    values: EntityRegistry
    capabilities: EntityRegistry
    decks: EntityRegistry
    synchronizer: RelationshipSynchronizer
    cards: CardService
    importer: BulkImporter
    auditor: ConsistencyAuditor

    def registry(self, kind: str) -> EntityRegistry:
        registries = {
            VALUES.name: self.values,
            CAPABILITIES.name: self.capabilities,
            DECKS.name: self.decks,
            "cards": self.cards.registry,
        }
        try:
            return registries[kind]
        except KeyError:
            raise ValueError(f"unknown entity kind: {kind!r}") from None


def build_services(
    store: GraphStore | None,
    config: StoreConfig | None = None,
    current_user: CurrentUser | None = None,
    schema: RelationSchema | None = None,
) -> Services:
    """Build every component over a single shared store handle.

    store may be None; every operation then degrades to empty or failed
    results instead of raising.
    """
    adapter = StoreAdapter(store, config)
    values = EntityRegistry(adapter, VALUES, current_user)
    capabilities = EntityRegistry(adapter, CAPABILITIES, current_user)
    decks = EntityRegistry(adapter, DECKS, current_user)
    synchronizer = RelationshipSynchronizer(adapter, schema)
    cards = CardService(
        adapter, values, capabilities, decks, synchronizer, current_user
    )
    auditor = ConsistencyAuditor(
        adapter,
        {
            VALUES.name: values,
            CAPABILITIES.name: capabilities,
            DECKS.name: decks,
            "cards": cards.registry,
        },
        synchronizer,
    )
    return Services(
        adapter=adapter,
        values=values,
        capabilities=capabilities,
        decks=decks,
        synchronizer=synchronizer,
        cards=cards,
        importer=BulkImporter(cards),
        auditor=auditor,
    )
