"""Store error types.

These are raised by store backends only. The adapter converts them into
result states, so callers of the registry, synchronizer, importer and
auditor never see them.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for graph store failures."""


class StoreUnavailable(StoreError):
    """No store handle, or the backend is not connected."""


class WriteRejected(StoreError):
    """The store acknowledged a write with an explicit error."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"write to {path} rejected: {reason}")
        self.path = path
        self.reason = reason
