import pytest

from polysync.auditor import IssueKind
from polysync.models import CARDS, DECKS
from polysync.relations import EdgeState
from polysync.service import build_services
from polysync.store import MemoryGraphStore

from conftest import fast_config


async def linked_card(svc, title="Organizer", deck="Ops"):
    await svc.decks.create(deck)
    created = await svc.cards.create_card({"role_title": title})
    card_id = created.entity.id
    await svc.cards.add_card_to_deck(card_id, svc.decks.id_for(deck))
    return card_id


@pytest.mark.asyncio
class TestScan:
    async def test_clean(self, services):
        await services.cards.create_card(
            {"role_title": "A", "values": ["Equity"], "capabilities": ["Care"]}
        )
        await linked_card(services, title="B")

        for kind in ("cards", "values", "capabilities", "decks"):
            scan = await services.auditor.scan(kind)
            assert scan.clean, scan.issues
        assert (await services.auditor.scan("cards")).scanned == 2

    async def test_partial_relationship(self, store, services):
        card_id = await linked_card(services)
        store.put(f"decks/deck_ops/cards/{card_id}", None)

        scan = await services.auditor.scan(CARDS)
        assert len(scan.issues) == 1
        issue = scan.issues[0]
        assert issue.kind is IssueKind.PARTIAL_RELATIONSHIP
        assert (issue.entity_id, issue.field, issue.target) == (
            card_id,
            "decks",
            "deck_ops",
        )

        # the deck side holds no flag, so it has nothing to report
        assert (await services.auditor.scan(DECKS)).clean

    async def test_dangling_reference(self, store, services):
        store.put(
            "cards/card_1",
            {"card_id": "card_1", "values": {"value_ghost": True}},
        )
        scan = await services.auditor.scan("cards")
        assert [i.kind for i in scan.issues] == [IssueKind.DANGLING_REFERENCE]
        assert scan.issues[0].target == "value_ghost"

    async def test_tombstoned_target_is_dangling(self, services):
        card_id = await linked_card(services)
        await services.decks.delete("deck_ops")

        scan = await services.auditor.scan("cards")
        assert scan.counts()["dangling_reference"] == 1
        assert scan.issues[0].entity_id == card_id

    async def test_shape_violations(self, store, services):
        store.put(
            "cards/card_1",
            {"card_id": "card_1", "values": ["Equity"], "decks": "deck_ops"},
        )
        store.put("values/value_x", "not a record")

        cards = await services.auditor.scan("cards")
        assert {(i.kind, i.field) for i in cards.issues} == {
            (IssueKind.SHAPE_VIOLATION, "values"),
            (IssueKind.SHAPE_VIOLATION, "decks"),
        }
        values = await services.auditor.scan("values")
        assert values.of(IssueKind.SHAPE_VIOLATION)[0].entity_id == "value_x"

    async def test_malformed_reverse_is_not_partial(self, store, services):
        await services.values.create("Equity")
        store.put("values/value_equity/cards", ["card_1"])
        store.put(
            "cards/card_1",
            {"card_id": "card_1", "values": {"value_equity": True}},
        )

        cards = await services.auditor.scan("cards")
        assert cards.clean
        values = await services.auditor.scan("values")
        assert values.counts()["shape_violation"] == 1

    async def test_unknown_kind(self, services):
        with pytest.raises(ValueError):
            await services.auditor.scan("users")

    async def test_scan_all(self, services):
        await linked_card(services)
        results = await services.auditor.scan_all()
        assert sorted(results) == ["capabilities", "cards", "decks", "values"]


@pytest.mark.asyncio
class TestRepair:
    async def test_array_field_rewritten(self, store, services):
        await services.values.create("Equity")
        store.put(
            "cards/card_1",
            {"card_id": "card_1", "values": ["Equity", "Nonexistent"]},
        )

        result = await services.auditor.repair("cards")

        assert result.scanned == 1
        assert result.fixed == 1
        assert any("Nonexistent" in d for d in result.details)
        assert store.peek("cards/card_1/values") == {"value_equity": True}

        scan = await services.auditor.scan("cards")
        assert not scan.of(IssueKind.SHAPE_VIOLATION)

    async def test_nothing_resolves_leaves_field(self, store, services):
        store.put("cards/card_1", {"card_id": "card_1", "values": ["Ghost"]})

        result = await services.auditor.repair("cards")

        assert result.fixed == 0
        assert any("unchanged" in d for d in result.details)
        assert store.peek("cards/card_1/values") == ["Ghost"]

    async def test_explicit_index_filters_by_kind(self, store, services):
        store.put(
            "cards/card_1",
            {
                "card_id": "card_1",
                "values": ["Equity", "Care"],
                "capabilities": ["Outreach"],
            },
        )
        index = {
            "equity": "value_equity",
            "care": "capability_care",
            "outreach": "capability_outreach",
        }

        result = await services.auditor.repair("cards", name_index=index)

        assert result.fixed == 1
        assert store.peek("cards/card_1/values") == {"value_equity": True}
        assert store.peek("cards/card_1/capabilities") == {
            "capability_outreach": True
        }
        assert any("Care" in d for d in result.details)

    async def test_counts_entities_not_fields(self, store, services):
        await services.values.create("Equity")
        await services.capabilities.create("Outreach")
        store.put(
            "cards/card_1",
            {
                "card_id": "card_1",
                "values": ["Equity"],
                "capabilities": ["Outreach"],
            },
        )
        store.put("cards/card_2", {"card_id": "card_2", "values": ["Equity"]})

        result = await services.auditor.repair("cards")

        assert (result.scanned, result.fixed, result.failed) == (2, 2, 0)
        assert sum("fixed" in d for d in result.details) == 3

    async def test_one_failed_field_fails_the_entity(self, store, services):
        await services.values.create("Equity")
        await services.capabilities.create("Outreach")
        store.put(
            "cards/card_1",
            {
                "card_id": "card_1",
                "values": ["Equity"],
                "capabilities": ["Outreach"],
            },
        )
        store.reject = (
            lambda p: "denied" if p == "cards/card_1/capabilities" else None
        )

        result = await services.auditor.repair("cards")

        assert (result.fixed, result.failed) == (0, 1)
        assert store.peek("cards/card_1/values") == {"value_equity": True}

    async def test_ids_resolve_as_well_as_names(self, store, services):
        await services.values.create("Community Resilience")
        store.put(
            "cards/card_1",
            {"card_id": "card_1", "values": ["community-resilience"]},
        )
        result = await services.auditor.repair("cards")
        assert result.fixed == 1
        assert store.peek("cards/card_1/values") == {
            "value_community_resilience": True
        }

    async def test_unacked_write_is_not_fixed(self):
        store = MemoryGraphStore(ack_delay=None)
        svc = build_services(store, fast_config(write_timeout=0.01))
        store.put("values/value_equity", {"name": "Equity"})
        store.put("cards/card_1", {"card_id": "card_1", "values": ["Equity"]})

        result = await svc.auditor.repair("cards")

        assert result.fixed == 0
        assert result.unconfirmed == 1
        assert any("unconfirmed" in d for d in result.details)

    async def test_rejected_write_fails(self, store, services):
        await services.values.create("Equity")
        store.put("cards/card_1", {"card_id": "card_1", "values": ["Equity"]})
        store.reject = lambda p: "denied"

        result = await services.auditor.repair("cards")
        assert result.fixed == 0
        assert result.failed == 1


@pytest.mark.asyncio
class TestHeal:
    async def test_restores_reverse_edge(self, store, services):
        card_id = await linked_card(services)
        store.put(f"decks/deck_ops/cards/{card_id}", None)

        result = await services.auditor.heal("cards")

        assert result.fixed == 1
        assert store.peek(f"decks/deck_ops/cards/{card_id}") is True
        assert (await services.auditor.scan("cards")).clean

    async def test_heal_from_target_side(self, store, services):
        await services.values.create("Equity")
        store.put("cards/card_1", {"card_id": "card_1", "values": {}})
        store.put("values/value_equity/cards/card_1", True)

        result = await services.auditor.heal("values")

        assert result.fixed == 1
        assert store.peek("cards/card_1/values") == {"value_equity": True}

    async def test_nothing_to_heal(self, services):
        await linked_card(services)
        result = await services.auditor.heal("cards")
        assert (result.fixed, result.failed) == (0, 0)


@pytest.mark.asyncio
class TestUnconfirmedEdges:
    async def test_lists_unacked_edges(self):
        store = MemoryGraphStore(ack_delay=None)
        svc = build_services(store, fast_config(write_timeout=0.01))
        await svc.synchronizer.set_edge("cards/card_1/decks", "deck_a")

        edges = svc.auditor.unconfirmed_edges()
        assert len(edges) == 1
        assert edges[0].state is EdgeState.TIMED_OUT_ASSUMED_OK

    async def test_acked_edges_not_listed(self, services):
        await linked_card(services)
        assert services.auditor.unconfirmed_edges() == []
