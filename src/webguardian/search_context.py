# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Most recent search query, kept as weak context for website classification.

Single shared slot, last-write-wins, self-expiring after an idle window.
The query only corroborates a later remote website verdict; nothing blocks
on it alone.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_CONTEXT_TTL = 300.0  # 5 minutes


@dataclass(frozen=True, slots=True)
class SearchSnapshot:
    query: str
    captured_at: float  # clock() value


class SearchContext:
    """Holds the latest non-video search query for ``ttl`` seconds."""

    def __init__(
        self,
        *,
        ttl: float = DEFAULT_CONTEXT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        self._ttl = ttl
        self._clock = clock
        self._snapshot: SearchSnapshot | None = None

    def record(self, query: str) -> None:
        """Replace the stored query.  Blank queries are ignored."""
        query = query.strip()
        if not query:
            return
        self._snapshot = SearchSnapshot(query=query, captured_at=self._clock())

    def current(self) -> str | None:
        """Return the stored query, or None once the idle window has passed."""
        snap = self._snapshot
        if snap is None:
            return None
        if self._clock() - snap.captured_at > self._ttl:
            self._snapshot = None
            return None
        return snap.query

    def clear(self) -> None:
        self._snapshot = None
