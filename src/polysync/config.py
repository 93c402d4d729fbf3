"""Store configuration.

Every timeout, retry budget and throttle delay lives here. The defaults
were tuned against one store's latency profile; other backends will want
different numbers, so each one can be overridden from the environment.

Environment variables:
    POLYSYNC_STORE_URL: Socket.IO relay URL (e.g., "http://localhost:8765")
    POLYSYNC_STORE_TOKEN: Auth token sent to the relay
    POLYSYNC_SNAPSHOT: msgpack snapshot path for the local store
    POLYSYNC_USER: creator_ref stamped on new entities
    POLYSYNC_CHECK_TIMEOUT: existence check deadline, seconds
    POLYSYNC_WRITE_TIMEOUT: write acknowledgement deadline, seconds
    POLYSYNC_READ_TIMEOUT: plain read deadline, seconds
    POLYSYNC_COLLECT_WINDOW: namespace collection window, seconds
    POLYSYNC_AUDIT_WINDOW: auditor collection window, seconds
    POLYSYNC_CREATE_ATTEMPTS / POLYSYNC_CREATE_BACKOFF
    POLYSYNC_EDGE_ATTEMPTS / POLYSYNC_EDGE_BACKOFF
    POLYSYNC_SETTLE_DELAY: pause between the two sides of an edge
    POLYSYNC_ITEM_DELAY: pause between bulk import items
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

ENV_STORE_URL = "POLYSYNC_STORE_URL"
ENV_STORE_TOKEN = "POLYSYNC_STORE_TOKEN"
ENV_SNAPSHOT = "POLYSYNC_SNAPSHOT"
ENV_USER = "POLYSYNC_USER"

DEFAULT_SNAPSHOT = Path(".polysync") / "store.msgpack"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class StoreConfig:
    """Connection settings plus the timeout/retry/throttle policy."""

    url: str = field(default_factory=lambda: os.environ.get(ENV_STORE_URL, ""))
    token: str = field(
        default_factory=lambda: os.environ.get(ENV_STORE_TOKEN, "")
    )
    snapshot_path: Path = field(
        default_factory=lambda: Path(
            os.environ.get(ENV_SNAPSHOT, str(DEFAULT_SNAPSHOT))
        )
    )

    # two-phase creation: short check, longer write
    check_timeout: float = field(
        default_factory=lambda: _env_float("POLYSYNC_CHECK_TIMEOUT", 0.5)
    )
    write_timeout: float = field(
        default_factory=lambda: _env_float("POLYSYNC_WRITE_TIMEOUT", 2.0)
    )
    read_timeout: float = field(
        default_factory=lambda: _env_float("POLYSYNC_READ_TIMEOUT", 2.0)
    )

    # bounded-wait snapshots
    collect_window: float = field(
        default_factory=lambda: _env_float("POLYSYNC_COLLECT_WINDOW", 0.5)
    )
    audit_window: float = field(
        default_factory=lambda: _env_float("POLYSYNC_AUDIT_WINDOW", 1.0)
    )

    # retry budgets, linear backoff (delay = backoff * attempt)
    create_attempts: int = field(
        default_factory=lambda: _env_int("POLYSYNC_CREATE_ATTEMPTS", 3)
    )
    create_backoff: float = field(
        default_factory=lambda: _env_float("POLYSYNC_CREATE_BACKOFF", 0.5)
    )
    edge_attempts: int = field(
        default_factory=lambda: _env_int("POLYSYNC_EDGE_ATTEMPTS", 3)
    )
    edge_backoff: float = field(
        default_factory=lambda: _env_float("POLYSYNC_EDGE_BACKOFF", 0.2)
    )

    # write-queue throttles
    settle_delay: float = field(
        default_factory=lambda: _env_float("POLYSYNC_SETTLE_DELAY", 0.05)
    )
    item_delay: float = field(
        default_factory=lambda: _env_float("POLYSYNC_ITEM_DELAY", 0.3)
    )

    @property
    def is_configured(self) -> bool:
        """Check if a remote relay is configured (url and token required)."""
        return bool(self.url and self.token)

    def with_overrides(self, **overrides: object) -> StoreConfig:
        """Return a copy with some fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"unknown config fields: {sorted(unknown)}")
        return replace(self, **overrides)  # type: ignore[arg-type]
