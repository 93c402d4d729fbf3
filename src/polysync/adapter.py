"""Deadline-bound wrapper around the graph store primitives.

Every store call made through the adapter yields a result value, never an
unbounded wait and never an exception:

- reads resolve to FOUND / ABSENT / TIMED_OUT / FAILED / UNAVAILABLE
- writes move IDLE -> PENDING -> ACKED | TIMED_OUT_ASSUMED_OK | FAILED

A write that is not acknowledged before its deadline is assumed to have
succeeded. The store applies writes to the local replica first, so silence
from the store is far more often slowness than loss; callers that need a
confirmed write check ``WriteResult.confirmed``.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from polysync.config import StoreConfig
from polysync.errors import WriteRejected
from polysync.logging_config import get_logger
from polysync.store.base import GraphStore

logger = get_logger("adapter")


class ReadState(str, Enum):
    FOUND = "found"
    ABSENT = "absent"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"


class WriteState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    ACKED = "acked"
    TIMED_OUT_ASSUMED_OK = "timed_out_assumed_ok"
    FAILED = "failed"


@dataclass
class ReadResult:
    path: str
    state: ReadState
    value: Any = None
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.state is ReadState.FOUND


@dataclass
class WriteResult:
    path: str
    state: WriteState
    error: str | None = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        """Acked, or timed out and assumed applied."""
        return self.state in (WriteState.ACKED, WriteState.TIMED_OUT_ASSUMED_OK)

    @property
    def confirmed(self) -> bool:
        return self.state is WriteState.ACKED


class AckToken:
    """Resolution handle for a single write.

    The first of ack, rejection or deadline settles the token. Anything
    arriving afterwards is counted as late and otherwise ignored.
    """

    def __init__(self, path: str, future: asyncio.Future) -> None:
        self.path = path
        self.state = WriteState.IDLE
        self.late_acks = 0
        self._future = future

    @property
    def future(self) -> asyncio.Future:
        return self._future

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, ack: dict[str, Any]) -> None:
        if self._future.done():
            self.late_acks += 1
            logger.debug(
                "late ack ignored",
                path=self.path,
                state=self.state.value,
                err=ack.get("err"),
            )
            return
        err = ack.get("err")
        if err:
            self._future.set_exception(WriteRejected(self.path, str(err)))
        else:
            self._future.set_result(ack)


@dataclass
class AdapterStats:
    """Counters over the adapter's lifetime."""

    reads: int = 0
    read_timeouts: int = 0
    writes: int = 0
    writes_acked: int = 0
    writes_assumed: int = 0
    writes_failed: int = 0
    collections: int = 0
    errors: list[str] = field(default_factory=list)

    def record_error(self, msg: str) -> None:
        self.errors.append(msg)
        if len(self.errors) > 100:
            self.errors = self.errors[-50:]


class StoreAdapter:
    """Wraps a GraphStore (or None) with timeouts and result states."""

    def __init__(
        self,
        store: GraphStore | None,
        config: StoreConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or StoreConfig()
        self.stats = AdapterStats()

    @property
    def available(self) -> bool:
        return self.store is not None

    async def get(self, path: str, timeout: float | None = None) -> ReadResult:
        """Read path, giving up after timeout (default: read_timeout)."""
        if self.store is None:
            logger.warning("store unavailable", op="get", path=path)
            return ReadResult(path, ReadState.UNAVAILABLE)

        timeout = self.config.read_timeout if timeout is None else timeout
        self.stats.reads += 1
        try:
            value = await asyncio.wait_for(self.store.get(path), timeout)
        except asyncio.TimeoutError:
            self.stats.read_timeouts += 1
            logger.debug("read timed out", path=path, timeout=timeout)
            return ReadResult(path, ReadState.TIMED_OUT)
        except Exception as e:
            self.stats.record_error(f"get {path}: {e}")
            logger.warning("read failed", path=path, error=str(e))
            return ReadResult(path, ReadState.FAILED, error=str(e))

        if value is None:
            return ReadResult(path, ReadState.ABSENT)
        return ReadResult(path, ReadState.FOUND, value=value)

    async def check(self, path: str) -> ReadResult:
        """Existence check raced against the short check_timeout."""
        return await self.get(path, timeout=self.config.check_timeout)

    async def put(
        self,
        path: str,
        value: Any,
        timeout: float | None = None,
    ) -> WriteResult:
        """Write value at path and wait for the ack until timeout.

        No ack by the deadline -> TIMED_OUT_ASSUMED_OK.
        Explicit error ack -> FAILED.
        """
        if self.store is None:
            logger.warning("store unavailable", op="put", path=path)
            return WriteResult(path, WriteState.FAILED, error="store unavailable")

        timeout = self.config.write_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        token = AckToken(path, loop.create_future())
        started = time.monotonic()
        self.stats.writes += 1

        token.state = WriteState.PENDING
        try:
            self.store.put(path, value, token.resolve)
        except Exception as e:
            token.state = WriteState.FAILED
            self.stats.writes_failed += 1
            self.stats.record_error(f"put {path}: {e}")
            logger.warning("write failed", path=path, error=str(e))
            return WriteResult(path, token.state, error=str(e))

        error = None
        try:
            await asyncio.wait_for(token.future, timeout)
            token.state = WriteState.ACKED
            self.stats.writes_acked += 1
        except asyncio.TimeoutError:
            token.state = WriteState.TIMED_OUT_ASSUMED_OK
            self.stats.writes_assumed += 1
            logger.debug("no ack before deadline, assuming ok", path=path)
        except WriteRejected as e:
            token.state = WriteState.FAILED
            error = e.reason
            self.stats.writes_failed += 1
            self.stats.record_error(str(e))
            logger.warning("write rejected", path=path, reason=e.reason)

        elapsed = (time.monotonic() - started) * 1000
        return WriteResult(path, token.state, error=error, elapsed_ms=elapsed)

    async def collect(
        self, path: str, window: float | None = None
    ) -> dict[str, Any]:
        """Subscribe to path's children and keep what arrives in window.

        The result is whatever was observed, nothing more: a bounded-wait
        snapshot, not a complete read.
        """
        if self.store is None:
            logger.warning("store unavailable", op="collect", path=path)
            return {}

        window = self.config.collect_window if window is None else window
        items: dict[str, Any] = {}

        def on_item(value: Any, key: str) -> None:
            if value is None:
                items.pop(key, None)
            else:
                items[key] = value

        self.stats.collections += 1
        try:
            sub = self.store.subscribe(path, on_item)
        except Exception as e:
            self.stats.record_error(f"subscribe {path}: {e}")
            logger.warning("subscribe failed", path=path, error=str(e))
            return {}

        try:
            await asyncio.sleep(window)
        finally:
            sub.stop()

        logger.debug("collected", path=path, count=len(items), window=window)
        return dict(items)
