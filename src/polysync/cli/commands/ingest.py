"""Import command - bulk-load cards from a JSON file into a deck."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import tyro
from rich.progress import BarColumn, Progress, TextColumn

from polysync import console
from polysync.cli._common import with_services
from polysync.importer import ImportProgress, load_items
from polysync.keys import deck_id
from polysync.service import Services


@dataclass
class Import:
    """Import cards from a JSON file into an existing deck."""

    deck: tyro.conf.Positional[str] = field(
        default="",
        metadata={"help": "Deck id or name"},
    )
    file: tyro.conf.Positional[Path] = field(
        default=Path("cards.json"),
        metadata={"help": "JSON list of cards (or {\"cards\": [...]})"},
    )
    item_delay: float | None = field(
        default=None,
        metadata={"help": "Seconds between items (default from config)"},
    )
    snapshot: Path | None = field(
        default=None,
        metadata={"help": "Local msgpack snapshot (overrides relay)"},
    )

    def run(self) -> int:
        if not self.deck.strip():
            console.error("deck required")
            return 1
        if not self.file.exists():
            console.error(f"file not found: {self.file}")
            return 1

        items = load_items(self.file)
        did = deck_id(self.deck)

        async def _run(svc: Services) -> int:
            if self.item_delay is not None:
                svc.adapter.config = svc.adapter.config.with_overrides(
                    item_delay=self.item_delay
                )

            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                console=console.get_console(),
                transient=True,
            ) as bar:
                task = bar.add_task(f"importing into {did}", total=len(items))

                def on_progress(p: ImportProgress) -> None:
                    bar.update(
                        task,
                        completed=p.processed,
                        description=p.current or f"importing into {did}",
                    )

                result = await svc.importer.import_batch(
                    did, items, on_progress=on_progress
                )

            if result.error:
                console.error(result.error)
                return 1

            console.header(f"Import into {did}")
            console.key_value("total", result.total)
            console.key_value("added", result.added)
            console.key_value("skipped", result.skipped)
            console.key_value("failed", result.failed)
            if result.partial:
                console.warning(
                    f"{len(result.partial)} cards only partially linked "
                    f"(run `polysync heal cards`)"
                )
            for err in result.errors:
                console.dim(f"  item {err.get('index')}: {err}")
            return 0 if result.success else 1

        return asyncio.run(with_services(self.snapshot, _run))
