"""Audit commands - scan, repair and heal relationship drift."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal

import tyro

from polysync import console
from polysync.auditor import RepairResult, ScanResult
from polysync.cli._common import with_services
from polysync.service import Services

Kind = Literal["values", "capabilities", "cards", "decks"]


def _print_scan(scan: ScanResult) -> None:
    console.header(f"Scan: {scan.kind}")
    console.key_value("scanned", scan.scanned)
    for name, count in scan.counts().items():
        console.key_value(name, count)
    if scan.unverified:
        console.key_value("unverified targets", scan.unverified)
    for issue in scan.issues:
        console.dim(f"  {issue}")


def _print_repair(title: str, result: RepairResult) -> None:
    console.header(f"{title}: {result.kind}")
    console.key_value("scanned", result.scanned)
    console.key_value("fixed", result.fixed)
    console.key_value("unconfirmed", result.unconfirmed)
    console.key_value("failed", result.failed)
    for line in result.details:
        console.dim(f"  {line}")


@dataclass
class Scan:
    """Report shape violations, dangling and partial relationships."""

    kind: tyro.conf.Positional[Kind] = field(
        default="cards",
        metadata={"help": "Entity kind to scan"},
    )
    json_output: bool = field(
        default=False,
        metadata={"help": "Print issues as JSON"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        async def _run(svc: Services) -> int:
            scan = await svc.auditor.scan(self.kind)
            if self.json_output:
                print(json.dumps(asdict(scan), indent=2, default=str))
            else:
                _print_scan(scan)
            return 0 if scan.clean else 2

        return asyncio.run(with_services(self.snapshot, _run))


@dataclass
class Repair:
    """Rewrite array-shaped relationship fields as flag-maps."""

    kind: tyro.conf.Positional[Kind] = field(
        default="cards",
        metadata={"help": "Entity kind to repair"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        async def _run(svc: Services) -> int:
            result = await svc.auditor.repair(self.kind)
            _print_repair("Repair", result)
            return 1 if result.failed else 0

        return asyncio.run(with_services(self.snapshot, _run))


@dataclass
class Heal:
    """Write missing reverse flags for partial relationships."""

    kind: tyro.conf.Positional[Kind] = field(
        default="cards",
        metadata={"help": "Entity kind whose edges are healed"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        async def _run(svc: Services) -> int:
            result = await svc.auditor.heal(self.kind)
            _print_repair("Heal", result)
            return 1 if result.failed else 0

        return asyncio.run(with_services(self.snapshot, _run))
