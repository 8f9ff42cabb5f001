# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Guardian — composition root and lifecycle for the decision pipeline.

Owns the store, verdict cache, remote classifier client, redirect
debouncer and interceptor.  Host adapters call ``dispatch()``, which runs
each event as its own task; handlers for different tabs (and overlapping
handlers for one tab) interleave at I/O awaits.

Startup probes ``GET /health`` once to log connectivity.  A failed probe
never disables anything: rules and cache keep working and each remote
call independently falls back to UNKNOWN.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType

import httpx

from . import Decision, NavigationEvent, Verdict
from .baseline import load_baseline
from .classifier_client import ClassifierConfig, RemoteClassifierClient
from .debounce import DebounceConfig, RedirectDebouncer, TabUpdater
from .events import NavigationAdapter, build_adapters
from .interceptor import InterceptorConfig, NavigationInterceptor
from .rules import RuleEngine
from .store import InMemoryStore, KeyValueStore
from .verdict_cache import VerdictCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GuardianConfig:
    """Aggregate configuration.  ``db_path=""`` keeps verdicts in memory."""

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    debounce: DebounceConfig = field(default_factory=DebounceConfig)
    interceptor: InterceptorConfig = field(default_factory=InterceptorConfig)
    db_path: str = ""


class LoggingTabUpdater:
    """Redirect action for runs without a browser host: records and logs."""

    def __init__(self) -> None:
        self.redirects: list[tuple[int, str]] = []

    async def update_tab(self, tab_id: int, url: str) -> None:
        self.redirects.append((tab_id, url))
        logger.info("update_tab(%d, %s)", tab_id, url)


class Guardian:
    """Builds and owns every pipeline component.

    Usage::

        async with Guardian(config, tab_updater=host) as guardian:
            listeners = guardian.adapters  # register with the host
            decision = await guardian.handle(event)
    """

    def __init__(
        self,
        config: GuardianConfig | None = None,
        *,
        tab_updater: TabUpdater | None = None,
        store: KeyValueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        rules: RuleEngine | None = None,
    ) -> None:
        self._config = config or GuardianConfig()
        self._tab_updater = tab_updater or LoggingTabUpdater()
        self._store = store
        self._owns_store = store is None
        self._http_client = http_client
        self._rules = rules
        self._cache: VerdictCache | None = None
        self._classifier: RemoteClassifierClient | None = None
        self._debouncer: RedirectDebouncer | None = None
        self._interceptor: NavigationInterceptor | None = None
        self._tasks: set[asyncio.Task] = set()
        self._classifier_online = False

    # -- Async context manager --

    async def __aenter__(self) -> Guardian:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # -- Lifecycle --

    async def start(self) -> None:
        if self._interceptor is not None:
            return

        if self._store is None:
            if self._config.db_path:
                from .store_sqlite import SqliteStore

                self._store = await SqliteStore.create(self._config.db_path)
                logger.info("SQLite verdict store: %s", self._config.db_path)
            else:
                self._store = InMemoryStore()
                logger.info("In-memory verdict store (no --db-path)")

        self._cache = VerdictCache(self._store)

        if self._config.classifier.enabled:
            self._classifier = RemoteClassifierClient(self._config.classifier, http_client=self._http_client)
            self._classifier_online = await self._classifier.check_health()
            if self._classifier_online:
                logger.info("Remote classifier reachable at %s", self._config.classifier.base_url)
            else:
                logger.warning(
                    "Remote classifier unreachable at %s; continuing with rules and cache",
                    self._config.classifier.base_url,
                )
        else:
            logger.info("Remote classifier disabled")

        self._debouncer = RedirectDebouncer(self._tab_updater, self._config.debounce)
        self._debouncer.start()

        self._interceptor = NavigationInterceptor(
            cache=self._cache,
            debouncer=self._debouncer,
            rules=self._rules,
            classifier=self._classifier,
            config=self._config.interceptor,
        )

    async def shutdown(self) -> None:
        """Let in-flight handlers finish, then release every resource."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._debouncer is not None:
            await self._debouncer.shutdown()
        if self._classifier is not None:
            await self._classifier.close()
        if self._store is not None and self._owns_store:
            await self._store.close()
        self._interceptor = None
        self._debouncer = None
        self._classifier = None
        self._cache = None
        if self._owns_store:
            self._store = None

    # -- Ingress --

    def dispatch(self, event: NavigationEvent) -> asyncio.Task[Decision]:
        """Schedule *event* as an independent task (fire-and-forget for hosts)."""
        task = asyncio.get_running_loop().create_task(self.handle(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle(self, event: NavigationEvent) -> Decision:
        return await self.interceptor.handle(event)

    @property
    def adapters(self) -> dict[str, NavigationAdapter]:
        """Host hook name -> listener; each feeds ``dispatch``."""
        return build_adapters(self.dispatch)

    # -- Operator actions --

    async def seed_baseline(
        self,
        path: str | Path | None = None,
        *,
        entries: Mapping[str, Verdict] | None = None,
    ) -> int:
        """Merge a baseline into the cache without overwriting.  Returns entries added."""
        baseline = entries if entries is not None else load_baseline(path)
        return await self.cache.merge_defaults(baseline)

    async def block_domain(self, target: str, *, tab_id: int | None = None) -> Decision:
        return await self.interceptor.block_domain(target, tab_id=tab_id)

    async def check_page(self, tab_id: int, url: str, **signals: str) -> Decision:
        return await self.interceptor.check_page(tab_id, url, **signals)

    # -- Accessors --

    @property
    def interceptor(self) -> NavigationInterceptor:
        if self._interceptor is None:
            raise RuntimeError("Guardian is not started")
        return self._interceptor

    @property
    def cache(self) -> VerdictCache:
        if self._cache is None:
            raise RuntimeError("Guardian is not started")
        return self._cache

    @property
    def classifier(self) -> RemoteClassifierClient | None:
        return self._classifier

    @property
    def classifier_online(self) -> bool:
        """Result of the startup health probe (informational only)."""
        return self._classifier_online

    @property
    def in_flight(self) -> int:
        return len(self._tasks)
