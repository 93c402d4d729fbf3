import asyncio
import json

import pytest

from polysync.config import StoreConfig
from polysync.importer import ImportResult, load_items
from polysync.keys import card_number
from polysync.service import build_services
from polysync.store import MemoryGraphStore

from conftest import RecordingStore, fast_config


def card_record_puts(store: RecordingStore):
    """Puts of whole card records, in call order."""
    return [
        c
        for c in store.puts("cards/")
        if c.path.count("/") == 1 and card_number(c.path.split("/")[1])
    ]


@pytest.fixture
def recording():
    return RecordingStore(MemoryGraphStore())


@pytest.fixture
def svc(recording):
    return build_services(recording, fast_config(item_delay=0.03))


class TestImportResult:
    def test_success_requires_no_error_or_failures(self):
        assert ImportResult(added=1, total=1).success
        assert not ImportResult(failed=1, total=1).success
        assert not ImportResult(error="deck missing").success


class TestLoadItems:
    def test_list_or_wrapped(self, tmp_path):
        path = tmp_path / "cards.json"
        path.write_text(json.dumps([{"role_title": "A"}]))
        assert load_items(path) == [{"role_title": "A"}]

        path.write_text(json.dumps({"cards": [{"role_title": "B"}]}))
        assert load_items(path) == [{"role_title": "B"}]

    def test_rejects_other_shapes(self, tmp_path):
        path = tmp_path / "cards.json"
        path.write_text(json.dumps({"role_title": "A"}))
        with pytest.raises(ValueError):
            load_items(path)


@pytest.mark.asyncio
class TestBulkImporter:
    async def test_missing_deck(self, recording, svc):
        result = await svc.importer.import_batch(
            "deck_nowhere", [{"role_title": "A"}]
        )
        assert result.error == "deck deck_nowhere not found"
        assert result.added == 0
        assert not result.success
        assert recording.puts("cards/") == []

    async def test_no_store(self):
        svc = build_services(None, StoreConfig())
        loop = asyncio.get_running_loop()

        started = loop.time()
        result = await svc.importer.import_batch(
            "deck_x", [{"role_title": "A"}]
        )

        assert result.error == "store unavailable"
        assert result.added == 0
        assert loop.time() - started < 0.1

    async def test_sequential_and_throttled(self, recording, svc):
        await svc.decks.create("Ops")
        items = [{"role_title": t, "values": ["Equity"]} for t in "ABC"]

        result = await svc.importer.import_batch("deck_ops", items)

        assert result.success
        assert (result.added, result.total) == (3, 3)
        assert result.card_ids == ["card_1", "card_2", "card_3"]

        records = card_record_puts(recording)
        assert [c.path for c in records] == [
            "cards/card_1",
            "cards/card_2",
            "cards/card_3",
        ]
        for prev, nxt in zip(records, records[1:]):
            assert nxt.at - prev.at >= 0.03 * 0.9

        # each card is linked to the deck before the next card starts
        paths = [c.path for c in recording.puts()]
        for n in (1, 2):
            link = paths.index(f"decks/deck_ops/cards/card_{n}")
            assert link < paths.index(f"cards/card_{n + 1}")

        inner = recording.inner
        assert inner.peek("decks/deck_ops/cards") == {
            "card_1": True,
            "card_2": True,
            "card_3": True,
        }
        assert inner.peek("cards/card_2/decks") == {"deck_ops": True}

    async def test_invalid_items_skipped(self, svc):
        await svc.decks.create("Ops")
        items = [
            {"role_title": "A"},
            {"backstory": "no title"},
            {"role_title": "   "},
            "not a card",
        ]
        result = await svc.importer.import_batch("deck_ops", items)

        assert result.added == 1
        assert result.skipped == 3
        assert result.failed == 0
        assert result.success
        assert [e["index"] for e in result.errors] == [1, 2, 3]

    async def test_failure_does_not_abort_batch(self, recording, svc):
        await svc.decks.create("Ops")
        recording.inner.reject = (
            lambda p: "denied" if p == "cards/card_2" else None
        )
        items = [{"role_title": t} for t in "ABC"]
        result = await svc.importer.import_batch("deck_ops", items)

        assert result.added == 2
        assert result.failed == 1
        assert not result.success
        assert result.card_ids == ["card_1", "card_3"]

    async def test_partial_deck_link_reported(self, recording, svc):
        await svc.decks.create("Ops")
        recording.inner.reject = (
            lambda p: "denied" if p.startswith("decks/deck_ops/cards/") else None
        )
        result = await svc.importer.import_batch("deck_ops", [{"role_title": "A"}])

        assert result.added == 1
        assert result.partial == ["card_1"]

    async def test_progress_callback(self, svc):
        await svc.decks.create("Ops")
        updates = []

        def on_progress(p):
            updates.append((p.state, p.processed, p.added, p.current))

        await svc.importer.import_batch(
            "deck_ops",
            [{"role_title": "A"}, {"nope": 1}],
            on_progress=on_progress,
        )
        assert updates == [
            ("importing", 1, 1, "A"),
            ("importing", 2, 1, None),
            ("complete", 2, 1, None),
        ]
