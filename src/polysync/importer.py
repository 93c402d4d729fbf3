"""Bulk card import into a deck.

Items are processed strictly one after another: validate, create the card,
link it to the deck on both sides, then pause for the configured item delay
before the next item. The pause keeps the store's write queue from being
flooded; ordering is deterministic because nothing runs concurrently.

A failing item is logged, counted and skipped over. It never aborts the
batch.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from polysync.cards import CardInput, CardService
from polysync.logging_config import get_logger

logger = get_logger("importer")


@dataclass
class ImportProgress:
    """Progress tracking for a bulk import."""

    state: str = "idle"  # idle, importing, error, complete
    total: int = 0
    processed: int = 0
    added: int = 0
    skipped: int = 0
    failed: int = 0
    current: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    started_at: str | None = None
    completed_at: str | None = None


@dataclass
class ImportResult:
    added: int = 0
    total: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None
    card_ids: list[str] = field(default_factory=list)
    partial: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.failed == 0


def load_items(path: Path) -> list[dict[str, Any]]:
    """Read import items from a JSON file.

    Accepts either a top-level list or an object with a "cards" list.
    """
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("cards")
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of cards")
    return data


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BulkImporter:
    def __init__(self, cards: CardService) -> None:
        self.cards = cards

    @property
    def config(self):
        return self.cards.adapter.config

    async def import_batch(
        self,
        deck_id: str,
        items: Iterable[Any],
        on_progress: Callable[[ImportProgress], None] | None = None,
    ) -> ImportResult:
        """Create every valid item as a card and add it to the deck.

        Args:
            deck_id: Owning deck; must already exist
            items: Card dicts (or CardInput instances)
            on_progress: Optional callback, called after every item

        Returns:
            ImportResult with per-outcome counts
        """
        items = list(items)
        result = ImportResult(total=len(items))
        progress = ImportProgress(
            state="importing", total=len(items), started_at=_now()
        )

        if not self.cards.adapter.available:
            result.error = "store unavailable"
        elif await self.cards.decks.fetch(deck_id) is None:
            result.error = f"deck {deck_id} not found"
        if result.error:
            progress.state = "error"
            progress.completed_at = _now()
            logger.error("import aborted", deck_id=deck_id, error=result.error)
            if on_progress:
                on_progress(progress)
            return result

        logger.info("import started", deck_id=deck_id, total=len(items))

        for i, raw in enumerate(items):
            if i:
                await asyncio.sleep(self.config.item_delay)

            outcome = await self._import_one(deck_id, i, raw, result)
            progress.processed += 1
            progress.current = outcome
            progress.added = result.added
            progress.skipped = result.skipped
            progress.failed = result.failed
            progress.errors = list(result.errors)
            if on_progress:
                on_progress(progress)

        progress.state = "complete"
        progress.current = None
        progress.completed_at = _now()
        if on_progress:
            on_progress(progress)

        logger.info(
            "import finished",
            deck_id=deck_id,
            added=result.added,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    async def _import_one(
        self, deck_id: str, index: int, raw: Any, result: ImportResult
    ) -> str | None:
        try:
            data = raw if isinstance(raw, CardInput) else CardInput.model_validate(raw)
        except ValidationError as e:
            result.skipped += 1
            reason = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            result.errors.append({"index": index, "skipped": reason})
            logger.warning("skipping invalid item", index=index, reason=reason)
            return None

        try:
            created = await self.cards.create_card(data)
            if created.entity is None:
                result.failed += 1
                result.errors.append(
                    {"index": index, "title": data.role_title, "error": created.error}
                )
                logger.error(
                    "card creation failed",
                    index=index,
                    title=data.role_title,
                    error=created.error,
                )
                return data.role_title

            cid = created.entity.id
            link = await self.cards.add_card_to_deck(cid, deck_id)
            if not link.forward.ok:
                result.failed += 1
                result.errors.append(
                    {"index": index, "card_id": cid, "error": "deck link failed"}
                )
                return data.role_title

            result.added += 1
            result.card_ids.append(cid)
            if link.partial:
                result.partial.append(cid)
        except Exception as e:
            result.failed += 1
            result.errors.append(
                {"index": index, "title": data.role_title, "error": str(e)}
            )
            logger.exception("error importing item", index=index)

        return data.role_title
