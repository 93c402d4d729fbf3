"""Stats command - entity and relationship counts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from polysync import console
from polysync.cli._common import resolve_config, with_services
from polysync.models import KINDS
from polysync.service import Services


@dataclass
class Stats:
    """Show entity counts and relationship drift per kind."""

    audit: bool = field(
        default=False,
        metadata={"help": "Also scan every kind for drift"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        config = resolve_config(self.snapshot)

        async def _run(svc: Services) -> int:
            console.header("Store")
            if self.snapshot is None and config.is_configured:
                console.key_value("relay", config.url)
            else:
                console.key_value("snapshot", config.snapshot_path)
            print()

            console.header("Entities")
            for name in KINDS:
                entities = await svc.registry(name).get_all()
                links = sum(
                    len(getattr(e, attr, {}) or {})
                    for e in entities
                    for attr in ("cards", "values", "capabilities", "decks")
                )
                console.key_value(name, f"{len(entities)} ({links} flags)")

            if self.audit:
                print()
                console.header("Drift")
                for name, scan in (await svc.auditor.scan_all()).items():
                    counts = ", ".join(
                        f"{k}={v}" for k, v in scan.counts().items()
                    )
                    console.key_value(name, counts)

            a = svc.adapter.stats
            print()
            console.header("Session")
            console.key_value("reads", f"{a.reads} ({a.read_timeouts} timed out)")
            console.key_value("collections", a.collections)
            return 0

        return asyncio.run(with_services(self.snapshot, _run))
