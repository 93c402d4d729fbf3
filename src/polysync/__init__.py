"""polysync - reconciliation layer over an eventually-consistent graph store."""

from polysync.adapter import (
    ReadResult,
    ReadState,
    StoreAdapter,
    WriteResult,
    WriteState,
)
from polysync.auditor import (
    ConsistencyAuditor,
    Issue,
    IssueKind,
    RepairResult,
    ScanResult,
)
from polysync.cards import CardInput, CardService
from polysync.config import StoreConfig
from polysync.importer import BulkImporter, ImportProgress, ImportResult
from polysync.models import Capability, Card, Deck, Value
from polysync.registry import EntityRegistry, EntityResult
from polysync.relations import (
    BidirectionalResult,
    EdgeResult,
    EdgeState,
    RelationIndex,
    RelationshipSynchronizer,
)
from polysync.service import Services, build_services
from polysync.store import GraphStore, MemoryGraphStore

__version__ = "0.1.0"

__all__ = [
    "BidirectionalResult",
    "BulkImporter",
    "Capability",
    "Card",
    "CardInput",
    "CardService",
    "ConsistencyAuditor",
    "Deck",
    "EdgeResult",
    "EdgeState",
    "EntityRegistry",
    "EntityResult",
    "GraphStore",
    "ImportProgress",
    "ImportResult",
    "Issue",
    "IssueKind",
    "MemoryGraphStore",
    "ReadResult",
    "ReadState",
    "RelationIndex",
    "RelationshipSynchronizer",
    "RepairResult",
    "ScanResult",
    "Services",
    "StoreAdapter",
    "StoreConfig",
    "Value",
    "WriteResult",
    "WriteState",
    "build_services",
]
