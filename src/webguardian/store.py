# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Key-value store abstraction — protocol-based persistence layer.

Defines ``KeyValueStore`` for the persistence collaborator behind the
verdict cache and ``InMemoryStore`` for tests and ephemeral runs.  Values
are whole serialized records: the store has no partial-field transport,
so callers that share a record must read-modify-write it.

Pattern: runtime-checkable Protocol + concrete implementations
(``store_sqlite.SqliteStore`` for durable storage).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .errors import StoreError

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class KeyValueStore(Protocol):
    """Interface for async key-value persistence (in-memory or SQLite)."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryStore:
    """Dict-backed store.  Suitable for tests and runs without ``--db-path``."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._closed = False

    async def get(self, key: str) -> str | None:
        """Return the stored value for *key*, or None."""
        self._check_open(key)
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        """Replace the value stored under *key*."""
        self._check_open(key)
        self._data[key] = value

    async def close(self) -> None:
        self._closed = True

    def _check_open(self, key: str) -> None:
        if self._closed:
            raise StoreError("store is closed", key=key)

    # ── Convenience accessors (not part of Protocol) ──────────────

    @property
    def data(self) -> dict[str, str]:
        """Direct access to the underlying dict (testing/debugging)."""
        return self._data
