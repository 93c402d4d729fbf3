"""Shared helpers for CLI commands."""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

from polysync.config import ENV_USER, StoreConfig
from polysync.logging_config import get_logger
from polysync.service import Services, build_services
from polysync.store.memory import MemoryGraphStore

logger = get_logger("cli")

T = TypeVar("T")


def current_user() -> str | None:
    return os.environ.get(ENV_USER) or None


def resolve_config(snapshot: Path | None) -> StoreConfig:
    config = StoreConfig()
    if snapshot is not None:
        config = config.with_overrides(snapshot_path=snapshot)
    return config


async def with_services(
    snapshot: Path | None,
    fn: Callable[[Services], Awaitable[T]],
) -> T:
    """Run fn against the configured relay, or a local snapshot.

    An explicit snapshot always wins over a configured relay. The local
    snapshot is saved back after fn returns, even if it raised.
    """
    config = resolve_config(snapshot)

    if snapshot is None and config.is_configured:
        from polysync.store.socketio_store import SocketIOGraphStore

        store = SocketIOGraphStore(config)
        if not await store.connect():
            raise RuntimeError(f"could not connect to store relay at {config.url}")
        try:
            return await fn(build_services(store, config, current_user))
        finally:
            await store.disconnect()

    path = config.snapshot_path
    local = MemoryGraphStore.load(path)
    logger.debug("using local snapshot", path=str(path))
    try:
        return await fn(build_services(local, config, current_user))
    finally:
        local.save(path)
