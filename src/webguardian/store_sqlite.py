# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SQLite-backed key-value store — durable storage for the verdict record.

Uses ``aiosqlite`` with a single long-lived connection.  WAL journal mode
enables concurrent reads with serialized writes.  Schema versioned via
``PRAGMA user_version``.

Driver errors are re-raised as ``StoreError`` so the verdict cache can
degrade without knowing which backend it talks to.
"""

from __future__ import annotations

from contextlib import suppress
from pathlib import Path

import aiosqlite

from .errors import StoreError

_SCHEMA_VERSION = 1

_CREATE_KV = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at REAL NOT NULL DEFAULT (julianday('now'))
)
"""


class SqliteStore:
    """SQLite-backed store implementing ``KeyValueStore``.

    Use the ``create()`` async classmethod factory; never instantiate directly.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def create(cls, db_path: str | Path) -> SqliteStore:
        """Open (or create) a SQLite database and initialise the schema.

        Resolves ``~`` and creates parent directories automatically.

        Raises:
            ValueError: If the existing database has a newer schema version.
        """
        path = Path(db_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(str(path))
        try:
            await db.execute("PRAGMA journal_mode = WAL")

            cursor = await db.execute("PRAGMA user_version")
            row = await cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version > _SCHEMA_VERSION:
                raise ValueError(
                    f"Database schema version {current_version} is newer than supported version {_SCHEMA_VERSION}"
                )

            if current_version < _SCHEMA_VERSION:
                await db.execute(_CREATE_KV)
                await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
                await db.commit()
        except BaseException:
            await db.close()
            raise

        return cls(db)

    # ── KeyValueStore methods ─────────────────────────────────────

    async def get(self, key: str) -> str | None:
        """Return the value stored under *key*, or ``None``."""
        try:
            cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
        except (aiosqlite.Error, ValueError) as e:
            raise StoreError(f"read failed: {e}", key=key) from e
        if row is None:
            return None
        return row[0]

    async def set(self, key: str, value: str) -> None:
        """Insert or replace the value stored under *key*."""
        try:
            await self._db.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, julianday('now')) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (key, value),
            )
            await self._db.commit()
        except (aiosqlite.Error, ValueError) as e:
            raise StoreError(f"write failed: {e}", key=key) from e

    async def close(self) -> None:
        """Close the database connection. Idempotent."""
        with suppress(Exception):
            await self._db.close()
