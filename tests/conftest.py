import asyncio
from dataclasses import dataclass
from typing import Any

import pytest

from polysync.config import StoreConfig
from polysync.service import build_services
from polysync.store import GraphStore, MemoryGraphStore


def fast_config(**overrides: Any) -> StoreConfig:
    """Policy with every timeout and delay shrunk for tests."""
    values = dict(
        url="",
        token="",
        check_timeout=0.05,
        write_timeout=0.05,
        read_timeout=0.1,
        collect_window=0.03,
        audit_window=0.03,
        create_attempts=3,
        create_backoff=0.01,
        edge_attempts=3,
        edge_backoff=0.01,
        settle_delay=0.005,
        item_delay=0.02,
    )
    values.update(overrides)
    return StoreConfig(**values)


@dataclass
class Call:
    op: str
    path: str
    value: Any
    at: float


class RecordingStore(GraphStore):
    """Wraps a store and timestamps every call with the loop clock."""

    def __init__(self, inner: MemoryGraphStore):
        self.inner = inner
        self.calls: list[Call] = []

    def _record(self, op: str, path: str, value: Any = None) -> None:
        now = asyncio.get_running_loop().time()
        self.calls.append(Call(op, path, value, now))

    async def get(self, path):
        self._record("get", path)
        return await self.inner.get(path)

    def put(self, path, value, ack=None):
        self._record("put", path, value)
        self.inner.put(path, value, ack)

    def subscribe(self, path, on_item):
        self._record("subscribe", path)
        return self.inner.subscribe(path, on_item)

    def puts(self, prefix: str = "") -> list[Call]:
        return [
            c for c in self.calls if c.op == "put" and c.path.startswith(prefix)
        ]


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def store():
    return MemoryGraphStore()


@pytest.fixture
def services(store, config):
    return build_services(store, config, current_user=lambda: "user_1")
