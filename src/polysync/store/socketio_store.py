"""Socket.IO relay client implementing the GraphStore primitives.

The relay speaks a small event protocol:

    client -> relay  "hello"        {client_id, token}
    client -> relay  "get"          {path}                  (ack: {value})
    client -> relay  "put"          {path, value}           (ack: {ok}|{err})
    client -> relay  "subscribe"    {sub_id, path}
    client -> relay  "unsubscribe"  {sub_id}
    relay  -> client "item"         {sub_id, key, value}

Acknowledgements use Socket.IO's native ack callbacks, so the adapter's
deadline logic applies unchanged.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Coroutine
from typing import Any

import socketio

from polysync.config import StoreConfig
from polysync.errors import StoreUnavailable
from polysync.logging_config import get_logger
from polysync.store.base import (
    AckCallback,
    GraphStore,
    ItemCallback,
    Subscription,
)

logger = get_logger("store.socketio")


class SocketIOGraphStore(GraphStore):
    """Async Socket.IO client for a graph store relay.

    Usage:
        store = SocketIOGraphStore(config)
        await store.connect()
        ...
        await store.disconnect()
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        client: socketio.AsyncClient | None = None,
    ) -> None:
        self.config = config or StoreConfig()
        self.client_id = str(uuid.uuid4())
        self._sio = client or socketio.AsyncClient(
            logger=False, engineio_logger=False
        )
        self._connected = False
        self._subs: dict[str, tuple[ItemCallback, Subscription]] = {}
        self._tasks: set[asyncio.Task] = set()

        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on("item", self._on_item)
        self._sio.on("error", self._on_error)

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, timeout: int = 5) -> bool:
        """Connect to the relay.

        Returns:
            True if connected successfully, False otherwise
        """
        if not self.config.is_configured:
            logger.warning("store relay not configured, skipping connect")
            return False

        try:
            await asyncio.wait_for(
                self._sio.connect(self.config.url, wait_timeout=timeout),
                timeout=timeout + 1,
            )

            # the connect handler flips _connected; wait for it before
            # issuing any request
            for _ in range(50):
                if self._connected:
                    break
                await asyncio.sleep(0.1)

            if not self._connected:
                logger.error("connected but connect handler never fired")
                return False

            await self._sio.emit(
                "hello",
                {"client_id": self.client_id, "token": self.config.token},
            )
            logger.info("store relay connected", url=self.config.url)
            return True

        except Exception as e:
            logger.error("failed to connect to store relay: %s", e)
            return False

    async def disconnect(self) -> None:
        for _, sub in list(self._subs.values()):
            sub.stop()
        # let queued emits (unsubscribes, puts) reach the relay
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._sio.connected:
            await self._sio.disconnect()
        self._connected = False

    # -- GraphStore ---------------------------------------------------------

    async def get(self, path: str) -> Any:
        if not self._connected:
            raise StoreUnavailable("store relay not connected")
        # no timeout here: deadlines belong to the adapter
        reply = await self._sio.call("get", {"path": path}, timeout=None)
        if not isinstance(reply, dict):
            return None
        return reply.get("value")

    def put(
        self,
        path: str,
        value: Any,
        ack: AckCallback | None = None,
    ) -> None:
        if not self._connected:
            raise StoreUnavailable("store relay not connected")

        def _on_ack(*args: Any) -> None:
            reply = args[0] if args else {}
            if not isinstance(reply, dict):
                reply = {"ok": bool(reply)}
            if ack is not None:
                ack(reply)

        def _on_error(exc: BaseException) -> None:
            if ack is not None:
                ack({"err": str(exc) or type(exc).__name__})

        self._spawn(
            self._sio.emit(
                "put", {"path": path, "value": value}, callback=_on_ack
            ),
            on_error=_on_error,
        )

    def subscribe(self, path: str, on_item: ItemCallback) -> Subscription:
        sub_id = str(uuid.uuid4())
        sub = Subscription(path=path)

        if not self._connected:
            logger.warning("subscribe while disconnected", path=path)
            sub.active = False
            return sub

        def _stop() -> None:
            self._subs.pop(sub_id, None)
            if self._connected:
                self._spawn(self._sio.emit("unsubscribe", {"sub_id": sub_id}))

        sub._stop = _stop
        self._subs[sub_id] = (on_item, sub)
        self._spawn(
            self._sio.emit("subscribe", {"sub_id": sub_id, "path": path})
        )
        return sub

    def _spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        on_error: Callable[[BaseException], None] | None = None,
    ) -> asyncio.Task:
        """Run an emit in the background, holding the task until it ends.

        A failed emit is logged and handed to on_error.
        """
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is None:
                return
            logger.warning("emit failed", error=str(exc))
            if on_error is not None:
                on_error(exc)

        task.add_done_callback(_done)
        return task

    # Socket.IO event handlers

    def _on_connect(self) -> None:
        self._connected = True
        logger.debug("socket.io connected")

    def _on_disconnect(self) -> None:
        self._connected = False
        logger.debug("socket.io disconnected")

    def _on_item(self, data: dict) -> None:
        entry = self._subs.get(data.get("sub_id", ""))
        if entry is None:
            return
        on_item, sub = entry
        value = data.get("value")
        if sub.active and value is not None:
            on_item(value, data.get("key", ""))

    def _on_error(self, data: dict) -> None:
        code = data.get("code", "unknown")
        message = data.get("message", "")
        logger.error("store relay error: %s - %s", code, message)
