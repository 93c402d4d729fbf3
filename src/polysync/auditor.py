"""Consistency auditor: find and heal relationship drift.

scan() is read-only. It walks every entity of a kind observed within the
audit window and reports:

- SHAPE_VIOLATION: a relationship field (or the record) is not a flag-map
- DANGLING_REFERENCE: a flagged target id does not exist
- PARTIAL_RELATIONSHIP: the target exists but does not flag us back

repair() rewrites array-shaped relationship fields (lists of display names,
left behind by older writers) into flag-maps of resolved ids. heal() writes
the missing reverse flag for every partial relationship.

Neither takes a lock; a concurrent writer can race a repair. Only writes
acknowledged by the store count as fixed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from polysync.adapter import ReadResult, ReadState, StoreAdapter, WriteState
from polysync.keys import entity_id, join
from polysync.logging_config import get_logger
from polysync.models import (
    EntityKind,
    Relation,
    flags,
    is_flag_map,
    kind_for,
)
from polysync.registry import EntityRegistry
from polysync.relations import (
    DirectedEdge,
    EdgeState,
    RelationshipSynchronizer,
    edge_owner_path,
)

logger = get_logger("auditor")


class IssueKind(str, Enum):
    SHAPE_VIOLATION = "shape_violation"
    DANGLING_REFERENCE = "dangling_reference"
    PARTIAL_RELATIONSHIP = "partial_relationship"


@dataclass
class Issue:
    kind: IssueKind
    entity_id: str
    field: str
    target: str | None = None
    description: str = ""

    def __str__(self) -> str:
        where = f"{self.entity_id}.{self.field}" if self.field else self.entity_id
        if self.target:
            where = f"{where} -> {self.target}"
        return f"{self.kind.value}: {where}: {self.description}"


@dataclass
class ScanResult:
    kind: str
    scanned: int = 0
    issues: list[Issue] = field(default_factory=list)
    # targets whose existence could not be determined in time
    unverified: int = 0

    def of(self, kind: IssueKind) -> list[Issue]:
        return [i for i in self.issues if i.kind is kind]

    def counts(self) -> dict[str, int]:
        counts = {k.value: 0 for k in IssueKind}
        for issue in self.issues:
            counts[issue.kind.value] += 1
        return counts

    @property
    def clean(self) -> bool:
        return not self.issues


@dataclass
class RepairResult:
    kind: str
    scanned: int = 0
    fixed: int = 0
    unconfirmed: int = 0
    failed: int = 0
    details: list[str] = field(default_factory=list)


class ConsistencyAuditor:
    def __init__(
        self,
        adapter: StoreAdapter,
        registries: Mapping[str, EntityRegistry],
        synchronizer: RelationshipSynchronizer,
    ) -> None:
        self.adapter = adapter
        self.registries = registries
        self.synchronizer = synchronizer

    @property
    def schema(self):
        return self.synchronizer.schema

    async def scan(self, kind: EntityKind | str) -> ScanResult:
        kind = _as_kind(kind)
        records = await self._collect(kind)
        result = ScanResult(kind.name)
        targets: dict[str, ReadResult] = {}

        for eid, record in records.items():
            result.scanned += 1
            if not isinstance(record, dict):
                result.issues.append(
                    Issue(
                        IssueKind.SHAPE_VIOLATION,
                        eid,
                        "",
                        description=f"record is {type(record).__name__}",
                    )
                )
                continue

            for rel in self.schema.fields_for(kind):
                raw = record.get(rel.field)
                if raw is None:
                    continue
                if not is_flag_map(raw):
                    result.issues.append(
                        Issue(
                            IssueKind.SHAPE_VIOLATION,
                            eid,
                            rel.field,
                            description=(
                                f"expected flag-map, got {type(raw).__name__}"
                            ),
                        )
                    )
                    continue
                for tid in flags(raw):
                    await self._check_target(eid, rel, tid, targets, result)

        logger.info(
            "scan finished",
            kind=kind.name,
            scanned=result.scanned,
            **result.counts(),
        )
        return result

    async def scan_all(self) -> dict[str, ScanResult]:
        kinds = {rel.owner.name: rel.owner for rel in self.schema.relations}
        return {name: await self.scan(k) for name, k in sorted(kinds.items())}

    async def repair(
        self,
        kind: EntityKind | str,
        name_index: Mapping[str, str] | None = None,
    ) -> RepairResult:
        """Rewrite array-shaped relationship fields as flag-maps.

        Names resolve through name_index (lowercased name -> id) or, when
        none is given, through the target registry. Ids of the wrong kind
        do not resolve. Unresolved names are dropped and listed in details;
        a field where nothing resolves is left untouched.

        Counts are per entity: one entity with two rewritten fields is
        fixed once, or failed if either write failed.
        """
        kind = _as_kind(kind)
        records = await self._collect(kind)
        result = RepairResult(kind.name)
        indexes: dict[str, Mapping[str, str]] = {}

        for eid, record in records.items():
            result.scanned += 1
            if not isinstance(record, dict):
                result.details.append(f"{eid}: not a record, skipped")
                continue

            writes: list[WriteState] = []
            for rel in self.schema.fields_for(kind):
                raw = record.get(rel.field)
                if not isinstance(raw, (list, tuple)):
                    continue

                index = name_index
                if index is None:
                    if rel.target.name not in indexes:
                        indexes[rel.target.name] = await self._index_for(
                            rel.target
                        )
                    index = indexes[rel.target.name]

                resolved, missing = _resolve(raw, rel.target, index)
                where = f"{eid}.{rel.field}"
                if missing:
                    result.details.append(
                        f"{where}: could not map {', '.join(missing)}"
                    )
                if not resolved:
                    result.details.append(f"{where}: nothing resolved, unchanged")
                    continue

                write = await self.adapter.put(
                    join(kind.path(eid), rel.field), resolved
                )
                _describe(
                    result, where, write.state, write.error, len(resolved)
                )
                writes.append(write.state)

            if writes:
                _count(result, writes)

        logger.info(
            "repair finished",
            kind=kind.name,
            scanned=result.scanned,
            fixed=result.fixed,
            unconfirmed=result.unconfirmed,
            failed=result.failed,
        )
        return result

    async def heal(self, kind: EntityKind | str) -> RepairResult:
        """Write the missing reverse flag for each partial relationship."""
        kind = _as_kind(kind)
        scan = await self.scan(kind)
        result = RepairResult(kind.name, scanned=scan.scanned)

        for issue in scan.of(IssueKind.PARTIAL_RELATIONSHIP):
            rel = self.schema.field(kind, issue.field)
            if issue.target is None:
                continue
            edge = await self.synchronizer.set_edge(
                edge_owner_path(rel.target, issue.target, rel.reverse_field),
                issue.entity_id,
            )
            where = f"{issue.target}.{rel.reverse_field} -> {issue.entity_id}"
            state = {
                EdgeState.ACKED: WriteState.ACKED,
                EdgeState.TIMED_OUT_ASSUMED_OK: WriteState.TIMED_OUT_ASSUMED_OK,
            }.get(edge.state, WriteState.FAILED)
            _describe(result, where, state, edge.error, 1)
            _count(result, [state])

        logger.info(
            "heal finished",
            kind=kind.name,
            fixed=result.fixed,
            unconfirmed=result.unconfirmed,
            failed=result.failed,
        )
        return result

    def unconfirmed_edges(self) -> list[DirectedEdge]:
        """Edges written this session that were never acknowledged."""
        return self.synchronizer.index.unconfirmed()

    # -- internals ----------------------------------------------------------

    async def _collect(self, kind: EntityKind) -> dict[str, Any]:
        return await self.adapter.collect(
            kind.namespace, self.adapter.config.audit_window
        )

    async def _index_for(self, kind: EntityKind) -> Mapping[str, str]:
        registry = self.registries.get(kind.name)
        if registry is None:
            return {}
        return await registry.name_index(self.adapter.config.audit_window)

    async def _check_target(
        self,
        eid: str,
        rel: Relation,
        tid: str,
        cache: dict[str, ReadResult],
        result: ScanResult,
    ) -> None:
        path = rel.target.path(tid)
        if path not in cache:
            cache[path] = await self.adapter.get(path)
        target = cache[path]

        if target.state in (ReadState.TIMED_OUT, ReadState.FAILED):
            result.unverified += 1
            return
        if target.state is ReadState.UNAVAILABLE:
            return
        if target.state is ReadState.ABSENT or not isinstance(target.value, dict):
            result.issues.append(
                Issue(
                    IssueKind.DANGLING_REFERENCE,
                    eid,
                    rel.field,
                    tid,
                    f"{rel.target.name}/{tid} does not exist",
                )
            )
            return

        reverse = target.value.get(rel.reverse_field)
        if reverse is not None and not is_flag_map(reverse):
            # malformed on the other side; that kind's scan reports it
            return
        if not isinstance(reverse, dict) or reverse.get(eid) is not True:
            result.issues.append(
                Issue(
                    IssueKind.PARTIAL_RELATIONSHIP,
                    eid,
                    rel.field,
                    tid,
                    f"{tid}.{rel.reverse_field} does not flag {eid}",
                )
            )


def _as_kind(kind: EntityKind | str) -> EntityKind:
    return kind if isinstance(kind, EntityKind) else kind_for(kind)


def _resolve(
    names: list[Any] | tuple[Any, ...],
    target: EntityKind,
    index: Mapping[str, str],
) -> tuple[dict[str, bool], list[str]]:
    known_ids = set(index.values())
    resolved: dict[str, bool] = {}
    missing: list[str] = []
    for name in names:
        if not isinstance(name, str) or not name.strip():
            missing.append(repr(name))
            continue
        tid = index.get(name.strip().lower())
        if tid is None and entity_id(target.prefix, name) in known_ids:
            tid = entity_id(target.prefix, name)
        if tid is None or not tid.startswith(target.prefix):
            missing.append(name)
            continue
        resolved[tid] = True
    return resolved, missing


def _describe(
    result: RepairResult,
    where: str,
    state: WriteState,
    error: str | None,
    count: int,
) -> None:
    if state is WriteState.ACKED:
        result.details.append(f"{where}: fixed ({count})")
    elif state is WriteState.TIMED_OUT_ASSUMED_OK:
        result.details.append(f"{where}: written, unconfirmed (no ack)")
    else:
        result.details.append(f"{where}: failed: {error}")


def _count(result: RepairResult, states: list[WriteState]) -> None:
    """Count one repaired unit by its worst write."""
    if any(s is WriteState.FAILED for s in states):
        result.failed += 1
    elif any(s is WriteState.TIMED_OUT_ASSUMED_OK for s in states):
        result.unconfirmed += 1
    else:
        result.fixed += 1
