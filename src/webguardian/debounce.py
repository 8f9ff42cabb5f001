# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-tab redirect debouncer.

Navigation lifecycles emit several events for one logical navigation
(before-navigate, committed, history update).  Without debouncing, each
would fire its own redirect and thrash the tab.

Design choices:

- **Record before await** — the entry is written before the redirect
  action runs, so two overlapping handlers for the same tab fire once.
- **Failure rollback** — a redirect action that raises drops the entry so
  the next event can retry.
- **Pruner** — ``done_callback`` crash-restart pattern, same as the rate
  limiter reaper.
- **Clock** — injectable, ``time.monotonic()`` by default.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Redirect action collaborator
# ---------------------------------------------------------------------------


@runtime_checkable
class TabUpdater(Protocol):
    """Host action that points a tab at a new URL."""

    async def update_tab(self, tab_id: int, url: str) -> None: ...


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DebounceConfig:
    """Immutable configuration for the redirect debouncer."""

    window: float = 3.0  # identical redirects within this many seconds are dropped
    prune_interval: float = 30.0
    max_age: float = 30.0  # entries older than this are pruned

    def __post_init__(self) -> None:
        if self.window <= 0:
            raise ValueError(f"window must be > 0, got {self.window}")
        if self.prune_interval <= 0:
            raise ValueError(f"prune_interval must be > 0, got {self.prune_interval}")
        if self.max_age < self.window:
            raise ValueError(f"max_age must be >= window, got {self.max_age}")


@dataclass(frozen=True, slots=True)
class RedirectDebounceEntry:
    target_url: str
    timestamp: float
    key: str = ""  # dedupe key; defaults to target_url


# ---------------------------------------------------------------------------
# RedirectDebouncer
# ---------------------------------------------------------------------------


class RedirectDebouncer:
    """Fire each (tab, target) redirect at most once per window.

    Usage::

        async with RedirectDebouncer(updater) as debouncer:
            await debouncer.fire_once(7, block_url)
    """

    def __init__(
        self,
        updater: TabUpdater,
        config: DebounceConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._updater = updater
        self._config = config or DebounceConfig()
        self._clock = clock
        self._entries: dict[int, RedirectDebounceEntry] = {}
        self._pruner_task: asyncio.Task | None = None
        self._fired = 0
        self._suppressed = 0

    # -- Async context manager --

    async def __aenter__(self) -> RedirectDebouncer:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # -- Public API --

    async def fire_once(self, tab_id: int, target_url: str, *, key: str | None = None) -> bool:
        """Redirect *tab_id* to *target_url* unless it just happened.

        *key* identifies the logical navigation (default: *target_url*).  Two
        redirects with the same key inside the window fire once even if their
        target URLs differ.

        Returns True if the redirect action ran successfully.
        """
        key = target_url if key is None else key
        now = self._clock()
        entry = self._entries.get(tab_id)
        if entry is not None and entry.key == key and (now - entry.timestamp) < self._config.window:
            self._suppressed += 1
            logger.debug("Redirect debounced: tab=%d", tab_id)
            return False

        recorded = RedirectDebounceEntry(target_url=target_url, timestamp=now, key=key)
        self._entries[tab_id] = recorded
        try:
            await self._updater.update_tab(tab_id, target_url)
        except Exception as e:
            logger.warning("Redirect failed for tab %d: %s", tab_id, e)
            if self._entries.get(tab_id) is recorded:
                del self._entries[tab_id]
            return False

        self._fired += 1
        return True

    def prune(self) -> int:
        """Drop entries older than ``max_age``.  Returns the number removed."""
        now = self._clock()
        stale = [tid for tid, e in self._entries.items() if (now - e.timestamp) > self._config.max_age]
        for tid in stale:
            del self._entries[tid]
        if stale:
            logger.debug("Pruned %d redirect debounce entr(ies)", len(stale))
        return len(stale)

    def forget(self, tab_id: int) -> None:
        """Drop the entry for a closed tab."""
        self._entries.pop(tab_id, None)

    def start(self) -> None:
        """Launch (or re-launch) the periodic pruner."""
        if self._pruner_task is not None and not self._pruner_task.done():
            return
        self._pruner_task = asyncio.get_running_loop().create_task(self._prune_loop())
        self._pruner_task.add_done_callback(self._pruner_done)

    async def shutdown(self) -> None:
        """Cancel the pruner and clear state."""
        if self._pruner_task is not None and not self._pruner_task.done():
            self._pruner_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pruner_task
        self._pruner_task = None
        self._entries.clear()

    # -- Introspection --

    @property
    def pending(self) -> int:
        return len(self._entries)

    @property
    def fired(self) -> int:
        return self._fired

    @property
    def suppressed(self) -> int:
        return self._suppressed

    # -- Internal: pruner --

    def _pruner_done(self, task: asyncio.Task) -> None:
        """Restart the pruner if it crashed (not cancelled)."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Redirect debounce pruner crashed, restarting: %s", exc)
            with contextlib.suppress(RuntimeError):
                self.start()

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.prune_interval)
            self.prune()
