import asyncio

import pytest

from polysync.adapter import (
    AckToken,
    ReadState,
    StoreAdapter,
    WriteState,
)
from polysync.errors import StoreUnavailable, WriteRejected
from polysync.store import MemoryGraphStore

from conftest import fast_config


class DisconnectedStore(MemoryGraphStore):
    async def get(self, path):
        raise StoreUnavailable("not connected")

    def put(self, path, value, ack=None):
        raise StoreUnavailable("not connected")

    def subscribe(self, path, on_item):
        raise StoreUnavailable("not connected")


@pytest.mark.asyncio
class TestReads:
    async def test_found_and_absent(self):
        store = MemoryGraphStore()
        store.put("values/value_a", {"name": "A"})
        adapter = StoreAdapter(store, fast_config())

        found = await adapter.get("values/value_a")
        assert found.state is ReadState.FOUND
        assert found.value == {"name": "A"}

        absent = await adapter.get("values/value_b")
        assert absent.state is ReadState.ABSENT
        assert absent.value is None

    async def test_timeout(self):
        store = MemoryGraphStore(silent_reads=lambda p: True)
        adapter = StoreAdapter(store, fast_config())
        loop = asyncio.get_running_loop()

        started = loop.time()
        result = await adapter.get("values/value_a", timeout=0.02)
        assert result.state is ReadState.TIMED_OUT
        assert loop.time() - started < 0.5
        assert adapter.stats.read_timeouts == 1

    async def test_check_uses_check_timeout(self):
        store = MemoryGraphStore(silent_reads=lambda p: True)
        adapter = StoreAdapter(store, fast_config(check_timeout=0.01))
        result = await adapter.check("values/value_a")
        assert result.state is ReadState.TIMED_OUT

    async def test_store_error_is_failed(self):
        adapter = StoreAdapter(DisconnectedStore(), fast_config())
        result = await adapter.get("values/value_a")
        assert result.state is ReadState.FAILED
        assert "not connected" in result.error

    async def test_no_store(self):
        adapter = StoreAdapter(None, fast_config())
        assert not adapter.available
        result = await adapter.get("values/value_a")
        assert result.state is ReadState.UNAVAILABLE


@pytest.mark.asyncio
class TestWrites:
    async def test_acked(self):
        store = MemoryGraphStore()
        adapter = StoreAdapter(store, fast_config())
        result = await adapter.put("values/value_a", {"name": "A"})

        assert result.state is WriteState.ACKED
        assert result.ok and result.confirmed
        assert store.peek("values/value_a") == {"name": "A"}

    async def test_no_ack_is_assumed_ok(self):
        store = MemoryGraphStore(ack_delay=None)
        adapter = StoreAdapter(store, fast_config(write_timeout=0.02))
        result = await adapter.put("values/value_a", {"name": "A"})

        assert result.state is WriteState.TIMED_OUT_ASSUMED_OK
        assert result.ok
        assert not result.confirmed
        # local-first: the replica has it regardless
        assert store.peek("values/value_a") == {"name": "A"}

    async def test_late_ack_does_not_change_result(self):
        store = MemoryGraphStore(ack_delay=0.05)
        adapter = StoreAdapter(store, fast_config(write_timeout=0.01))
        result = await adapter.put("values/value_a", {"name": "A"})
        await asyncio.sleep(0.08)

        assert result.state is WriteState.TIMED_OUT_ASSUMED_OK
        assert adapter.stats.writes_assumed == 1
        assert adapter.stats.writes_acked == 0

    async def test_rejected(self):
        store = MemoryGraphStore(reject=lambda p: "quota exceeded")
        adapter = StoreAdapter(store, fast_config())
        result = await adapter.put("values/value_a", {"name": "A"})

        assert result.state is WriteState.FAILED
        assert result.error == "quota exceeded"
        assert not result.ok

    async def test_store_error_is_failed(self):
        adapter = StoreAdapter(DisconnectedStore(), fast_config())
        result = await adapter.put("values/value_a", {"name": "A"})
        assert result.state is WriteState.FAILED
        assert adapter.stats.writes_failed == 1

    async def test_no_store(self):
        adapter = StoreAdapter(None, fast_config())
        result = await adapter.put("values/value_a", {"name": "A"})
        assert result.state is WriteState.FAILED
        assert result.error == "store unavailable"


@pytest.mark.asyncio
class TestAckToken:
    async def test_first_resolution_wins(self):
        loop = asyncio.get_running_loop()
        token = AckToken("values/value_a", loop.create_future())
        token.resolve({"ok": True})
        token.resolve({"err": "too late"})

        assert token.settled
        assert token.future.result() == {"ok": True}
        assert token.late_acks == 1

    async def test_error_ack_sets_exception(self):
        loop = asyncio.get_running_loop()
        token = AckToken("values/value_a", loop.create_future())
        token.resolve({"err": "denied"})

        with pytest.raises(WriteRejected) as exc:
            token.future.result()
        assert exc.value.reason == "denied"

    async def test_ack_after_cancel_is_late(self):
        loop = asyncio.get_running_loop()
        token = AckToken("values/value_a", loop.create_future())
        token.future.cancel()
        token.resolve({"ok": True})
        assert token.late_acks == 1


@pytest.mark.asyncio
class TestCollect:
    async def test_collects_children(self):
        store = MemoryGraphStore()
        store.put("values/value_a", {"name": "A"})
        store.put("values/value_b", {"name": "B"})
        store.put("values/value_c", None)
        adapter = StoreAdapter(store, fast_config())

        items = await adapter.collect("values")
        assert items == {
            "value_a": {"name": "A"},
            "value_b": {"name": "B"},
        }

    async def test_window_bounds_what_is_seen(self):
        store = MemoryGraphStore(read_delay=0.2)
        store.put("values/value_a", {"name": "A"})
        adapter = StoreAdapter(store, fast_config())
        loop = asyncio.get_running_loop()

        started = loop.time()
        items = await adapter.collect("values", window=0.02)
        assert items == {}
        assert loop.time() - started < 0.15

    async def test_no_store_or_error_is_empty(self):
        assert await StoreAdapter(None).collect("values", 0.01) == {}
        adapter = StoreAdapter(DisconnectedStore(), fast_config())
        assert await adapter.collect("values") == {}
