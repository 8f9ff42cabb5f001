# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Persistent per-domain verdict cache with read-merge-write semantics.

The whole mapping lives in one serialized record (``domainDB``) in a
``KeyValueStore``.  Every write re-reads the record, merges the single key,
and writes it back, so concurrent classifications for different domains
never drop each other's entries.  Writes are serialized in-process by one
``asyncio.Lock``; reads take no lock.

Failures never reach the interception pipeline:
- read failure / malformed record -> treated as empty (cache miss)
- write failure -> one retry, then ``set()`` returns False
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from . import Verdict
from .errors import StoreError
from .store import KeyValueStore

logger = logging.getLogger(__name__)

RECORD_KEY = "domainDB"
_PERSISTABLE = frozenset({Verdict.SAFE, Verdict.BLOCK})


# ---------------------------------------------------------------------------
# Cache stats (observability)
# ---------------------------------------------------------------------------


@dataclass
class VerdictCacheStats:
    """Counters for cache behaviour, used for logging and the CLI."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    write_failures: int = 0
    read_failures: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


# ---------------------------------------------------------------------------
# Record (de)serialization
# ---------------------------------------------------------------------------


def _parse_record(raw: str | None) -> dict[str, Verdict]:
    """Decode the persisted record.  Unknown values and bad JSON are dropped."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Verdict record is not valid JSON; treating as empty")
        return {}
    if not isinstance(data, dict):
        logger.warning("Verdict record is not an object; treating as empty")
        return {}

    record: dict[str, Verdict] = {}
    for domain, value in data.items():
        if isinstance(domain, str) and isinstance(value, str) and value in _PERSISTABLE:
            record[domain] = Verdict(value)
    return record


def _dump_record(record: Mapping[str, Verdict]) -> str:
    return json.dumps({k: v.value for k, v in sorted(record.items())}, separators=(",", ":"))


def _check_persistable(key: str, verdict: Verdict) -> None:
    if not key:
        raise ValueError("domain key must be non-empty")
    if verdict not in _PERSISTABLE:
        raise ValueError(f"only SAFE or BLOCK can be cached, got {verdict!s}")


# ---------------------------------------------------------------------------
# VerdictCache
# ---------------------------------------------------------------------------


class VerdictCache:
    """Domain -> {SAFE, BLOCK} mapping persisted as a single record.

    Entries are created lazily on the first definitive verdict for a domain
    and never expire; a later ``set()`` for the same key (e.g. a manual
    override) replaces them.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        record_key: str = RECORD_KEY,
        write_retries: int = 1,
        retry_delay: float = 0.05,
    ) -> None:
        if write_retries < 0:
            raise ValueError(f"write_retries must be >= 0, got {write_retries}")
        self._store = store
        self._record_key = record_key
        self._write_retries = write_retries
        self._retry_delay = retry_delay
        self._write_lock = asyncio.Lock()
        self._stats = VerdictCacheStats()

    # -- Read --

    async def get(self, key: str) -> Verdict | None:
        """Return the cached verdict for *key*, or None on miss or failure."""
        if not key:
            return None
        record = await self._load_or_empty()
        verdict = record.get(key)
        if verdict is None:
            self._stats.misses += 1
        else:
            self._stats.hits += 1
        logger.debug("Verdict cache %s: %s", "hit" if verdict else "miss", key)
        return verdict

    async def snapshot(self) -> dict[str, Verdict]:
        """Return a copy of the whole mapping (empty on failure)."""
        return await self._load_or_empty()

    # -- Write --

    async def set(self, key: str, verdict: Verdict) -> bool:
        """Merge ``key -> verdict`` into the persisted record.

        Returns True if the write landed.  Raises ValueError for an empty key
        or a non-persistable verdict (UNKNOWN is never cached).
        """
        _check_persistable(key, verdict)

        async with self._write_lock:
            for attempt in range(self._write_retries + 1):
                try:
                    record = _parse_record(await self._store.get(self._record_key))
                    record[key] = verdict
                    await self._store.set(self._record_key, _dump_record(record))
                except StoreError as e:
                    logger.warning(
                        "Verdict cache write failed (attempt %d/%d) for %s: %s",
                        attempt + 1,
                        self._write_retries + 1,
                        key,
                        e,
                    )
                    if attempt < self._write_retries:
                        await asyncio.sleep(self._retry_delay)
                    continue
                self._stats.writes += 1
                logger.debug("Verdict cache write: %s=%s size=%d", key, verdict.value, len(record))
                return True

        self._stats.write_failures += 1
        return False

    async def merge_defaults(self, defaults: Mapping[str, Verdict | str]) -> int:
        """Add baseline entries without overwriting existing ones.

        Returns the number of entries added.  Invalid values are skipped.
        """
        additions: dict[str, Verdict] = {}
        for domain, value in defaults.items():
            if domain and isinstance(value, str) and value in _PERSISTABLE:
                additions[domain] = Verdict(value)

        async with self._write_lock:
            try:
                record = _parse_record(await self._store.get(self._record_key))
            except StoreError as e:
                logger.warning("Verdict cache baseline merge skipped: %s", e)
                self._stats.read_failures += 1
                return 0

            added = {k: v for k, v in additions.items() if k not in record}
            if not added:
                return 0
            record.update(added)
            try:
                await self._store.set(self._record_key, _dump_record(record))
            except StoreError as e:
                logger.warning("Verdict cache baseline write failed: %s", e)
                self._stats.write_failures += 1
                return 0

        self._stats.writes += 1
        logger.info("Verdict cache baseline merged: %d new entries", len(added))
        return len(added)

    # -- Internal --

    async def _load_or_empty(self) -> dict[str, Verdict]:
        try:
            raw = await self._store.get(self._record_key)
        except StoreError as e:
            self._stats.read_failures += 1
            logger.warning("Verdict cache read failed, treating as empty: %s", e)
            return {}
        return _parse_record(raw)

    # -- Stats --

    @property
    def stats(self) -> VerdictCacheStats:
        return self._stats
