# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Navigation interceptor — per-event decision state machine.

    START ─┬─ guard fails ───────────────────────────────────────────► IGNORE
           ├─ search page ─► SEARCH_CHECK: flat rules ─► remote ─────► ALLOW | REDIRECT
           └─ other page ──► SITE_CHECK:   cache ─► flat rules ─► remote ─► ALLOW | REDIRECT

Write-back rules (SITE_CHECK and the in-page re-check):
- BLOCK from rules or remote -> cached as BLOCK
- SAFE from remote           -> cached as SAFE
- UNKNOWN                    -> never cached; the domain stays open for re-evaluation

Search pages are never cached: only the query is judged, and an UNKNOWN
query still lets the results page render.  Every redirect goes through the
debouncer.  No stage failure aborts event handling; the worst case is ALLOW.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote, urlencode

from . import Action, Decision, NavigationEvent, Verdict
from .classifier_client import RemoteClassifierClient
from .debounce import RedirectDebouncer
from .domain import coerce_domain, normalize_domain
from .rules import MatchMode, RuleEngine, RuleMatch
from .search_context import DEFAULT_CONTEXT_TTL, SearchContext
from .surfaces import DEFAULT_VIDEO_PLATFORM, SearchSurface, detect_search
from .verdict_cache import VerdictCache

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_PAGE = "chrome-extension://webguardian/block.html"
PAGE_BODY_LIMIT = 4000  # chars of body text considered by the in-page re-check

# ---------------------------------------------------------------------------
# Stage names (Decision.stage)
# ---------------------------------------------------------------------------

STAGE_GUARD = "guard"
STAGE_EXEMPT = "exempt"
STAGE_NO_DOMAIN = "no_domain"
STAGE_CACHE = "cache"
STAGE_SEARCH_RULES = "search_rules"
STAGE_SEARCH_REMOTE = "search_remote"
STAGE_SITE_RULES = "site_rules"
STAGE_SITE_REMOTE = "site_remote"
STAGE_PAGE_RULES = "page_rules"
STAGE_PAGE_REMOTE = "page_remote"
STAGE_MANUAL = "manual"
STAGE_ERROR = "error"

# ---------------------------------------------------------------------------
# Block reasons (shown on the block page)
# ---------------------------------------------------------------------------

REASON_CACHED = "This site is blocked (DB override)."
REASON_SITE_RULES = "This page matches restricted keywords."
REASON_SITE_REMOTE = "This site was classified as restricted content."
REASON_PAGE_RULES = "This page looks like restricted content (title/body)."
REASON_MANUAL = "Manually blocked via Web Guardian"


def _search_reason(query: str) -> str:
    return f'Blocked search query: "{query}"'


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InterceptorConfig:
    """Immutable configuration for the navigation interceptor."""

    block_page_url: str = DEFAULT_BLOCK_PAGE
    video_platform_host: str = DEFAULT_VIDEO_PLATFORM  # exempt from SITE_CHECK, search still filtered
    search_context_ttl: float = DEFAULT_CONTEXT_TTL
    page_body_limit: int = PAGE_BODY_LIMIT

    def __post_init__(self) -> None:
        if not self.block_page_url or "?" in self.block_page_url:
            raise ValueError(f"block_page_url must be non-empty and query-free, got {self.block_page_url!r}")
        if self.search_context_ttl <= 0:
            raise ValueError(f"search_context_ttl must be > 0, got {self.search_context_ttl}")
        if self.page_body_limit <= 0:
            raise ValueError(f"page_body_limit must be > 0, got {self.page_body_limit}")


def _is_valid_tab(tab_id: object) -> bool:
    return isinstance(tab_id, int) and not isinstance(tab_id, bool) and tab_id >= 0


# ---------------------------------------------------------------------------
# NavigationInterceptor
# ---------------------------------------------------------------------------


class NavigationInterceptor:
    """Composes cache, rules, remote classifier and debouncer into one decision.

    ``classifier`` may be None: the remote tier is then skipped and every
    inconclusive event resolves to UNKNOWN (ALLOW, nothing cached).
    """

    def __init__(
        self,
        *,
        cache: VerdictCache,
        debouncer: RedirectDebouncer,
        rules: RuleEngine | None = None,
        classifier: RemoteClassifierClient | None = None,
        search_context: SearchContext | None = None,
        config: InterceptorConfig | None = None,
    ) -> None:
        self._config = config or InterceptorConfig()
        self._cache = cache
        self._debouncer = debouncer
        self._rules = rules or RuleEngine()
        self._classifier = classifier
        self._search_context = search_context or SearchContext(ttl=self._config.search_context_ttl)

    @property
    def search_context(self) -> SearchContext:
        return self._search_context

    @property
    def config(self) -> InterceptorConfig:
        return self._config

    # ── Ingress ───────────────────────────────────────────────────

    async def handle(self, event: NavigationEvent) -> Decision:
        """Run one navigation event through the pipeline."""
        try:
            return await self._handle(event)
        except Exception:
            logger.exception("Interceptor failed on tab %s, allowing %s", event.tab_id, event.url)
            return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_ERROR, reason="internal error")

    async def check_page(
        self,
        tab_id: int,
        url: str,
        *,
        title: str = "",
        meta_description: str = "",
        body_text: str = "",
    ) -> Decision:
        """In-page re-check with text the content side already extracted."""
        try:
            return await self._check_page(tab_id, url, title, meta_description, body_text)
        except Exception:
            logger.exception("Page check failed on tab %s, allowing %s", tab_id, url)
            return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_ERROR, reason="internal error")

    async def block_domain(self, target: str, *, tab_id: int | None = None) -> Decision:
        """Manual override: cache *target*'s domain as BLOCK, optionally redirect a tab.

        Raises:
            ValueError: If *target* has no classifiable domain.
        """
        domain = coerce_domain(target)
        if not domain:
            raise ValueError(f"cannot derive a domain from {target!r}")

        stored = await self._cache.set(domain, Verdict.BLOCK)
        if not stored:
            logger.warning("Manual block of %s was not persisted", domain)
        logger.info("Manual block: %s", domain)

        if tab_id is None or not _is_valid_tab(tab_id):
            return Decision(Action.ALLOW, Verdict.BLOCK, STAGE_MANUAL, REASON_MANUAL, domain)
        url = target if "://" in target else f"https://{domain}/"
        return await self._redirect(tab_id, url, REASON_MANUAL, STAGE_MANUAL, domain)

    # ── State machine ─────────────────────────────────────────────

    async def _handle(self, event: NavigationEvent) -> Decision:
        if not event.is_top_level or not _is_valid_tab(event.tab_id):
            return Decision(Action.IGNORE, Verdict.UNKNOWN, STAGE_GUARD)
        if self.is_block_page(event.url):
            return Decision(Action.IGNORE, Verdict.UNKNOWN, STAGE_GUARD, reason="block page")
        if not self._is_http(event.url):
            return Decision(Action.IGNORE, Verdict.UNKNOWN, STAGE_GUARD)

        surface = detect_search(event.url, video_platform=self._config.video_platform_host)
        if surface is not None:
            return await self._search_check(event, surface)
        return await self._site_check(event)

    async def _search_check(self, event: NavigationEvent, surface: SearchSurface) -> Decision:
        query = surface.query
        logger.debug("SEARCH_CHECK tab=%d engine=%s", event.tab_id, surface.engine)
        if not surface.is_video:
            self._search_context.record(query)

        if self._rules.classify(query, MatchMode.FLAT) is Verdict.BLOCK:
            return await self._redirect(event.tab_id, event.url, _search_reason(query), STAGE_SEARCH_RULES)

        if query and self._classifier is not None:
            verdict = await self._classifier.classify_search_query(query, video_platform=surface.is_video)
            if verdict is Verdict.BLOCK:
                return await self._redirect(event.tab_id, event.url, _search_reason(query), STAGE_SEARCH_REMOTE)
            return Decision(Action.ALLOW, verdict, STAGE_SEARCH_REMOTE)

        return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_SEARCH_RULES)

    async def _site_check(self, event: NavigationEvent) -> Decision:
        domain = normalize_domain(event.url)
        if not domain:
            return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_NO_DOMAIN)
        if self._is_exempt(domain):
            return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_EXEMPT, domain=domain)
        logger.debug("SITE_CHECK tab=%d domain=%s", event.tab_id, domain)

        cached = await self._cached_decision(event.tab_id, event.url, domain)
        if cached is not None:
            return cached

        match = self._rules.evaluate(event.url, MatchMode.FLAT)
        if match.blocked:
            return await self._block(event.tab_id, event.url, domain, REASON_SITE_RULES, STAGE_SITE_RULES, match)

        return await self._remote_site(event.tab_id, event.url, domain, None, STAGE_SITE_REMOTE, REASON_SITE_REMOTE)

    async def _check_page(
        self,
        tab_id: int,
        url: str,
        title: str,
        meta_description: str,
        body_text: str,
    ) -> Decision:
        if not _is_valid_tab(tab_id) or self.is_block_page(url) or not self._is_http(url):
            return Decision(Action.IGNORE, Verdict.UNKNOWN, STAGE_GUARD)
        if detect_search(url, video_platform=self._config.video_platform_host) is not None:
            return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_GUARD, reason="search page")

        domain = normalize_domain(url)
        if not domain:
            return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_NO_DOMAIN)
        if self._is_exempt(domain):
            return Decision(Action.ALLOW, Verdict.UNKNOWN, STAGE_EXEMPT, domain=domain)

        cached = await self._cached_decision(tab_id, url, domain)
        if cached is not None:
            return cached

        # Flat pre-check on URL and title wins; body text only counts when gated
        for text in (url, title):
            match = self._rules.evaluate(text, MatchMode.FLAT)
            if match.blocked:
                return await self._block(tab_id, url, domain, REASON_PAGE_RULES, STAGE_PAGE_RULES, match)

        body = body_text[: self._config.page_body_limit]
        combined = "\n".join(part for part in (title, meta_description, body) if part)
        match = self._rules.evaluate(combined, MatchMode.GATED)
        if match.blocked:
            return await self._block(tab_id, url, domain, REASON_PAGE_RULES, STAGE_PAGE_RULES, match)

        return await self._remote_site(tab_id, url, domain, title or None, STAGE_PAGE_REMOTE, REASON_SITE_REMOTE)

    # ── Shared steps ──────────────────────────────────────────────

    async def _cached_decision(self, tab_id: int, url: str, domain: str) -> Decision | None:
        cached = await self._cache.get(domain)
        if cached is Verdict.SAFE:
            return Decision(Action.ALLOW, Verdict.SAFE, STAGE_CACHE, domain=domain)
        if cached is Verdict.BLOCK:
            return await self._redirect(tab_id, url, REASON_CACHED, STAGE_CACHE, domain)
        return None

    async def _remote_site(
        self,
        tab_id: int,
        url: str,
        domain: str,
        title: str | None,
        stage: str,
        reason: str,
    ) -> Decision:
        if self._classifier is None:
            return Decision(Action.ALLOW, Verdict.UNKNOWN, stage, domain=domain)

        verdict = await self._classifier.classify_website(
            domain,
            url,
            title=title,
            weak_context=self._search_context.current(),
        )
        if verdict is Verdict.BLOCK:
            return await self._block(tab_id, url, domain, reason, stage)
        if verdict is Verdict.SAFE:
            await self._cache.set(domain, Verdict.SAFE)
            return Decision(Action.ALLOW, Verdict.SAFE, stage, domain=domain)
        # UNKNOWN is never cached
        return Decision(Action.ALLOW, Verdict.UNKNOWN, stage, domain=domain)

    async def _block(
        self,
        tab_id: int,
        url: str,
        domain: str,
        reason: str,
        stage: str,
        match: RuleMatch | None = None,
    ) -> Decision:
        if match is not None:
            logger.debug("Rule match %s on %s: %s", match.mode.value, domain, ",".join(match.terms))
        await self._cache.set(domain, Verdict.BLOCK)
        return await self._redirect(tab_id, url, reason, stage, domain)

    async def _redirect(self, tab_id: int, url: str, reason: str, stage: str, domain: str = "") -> Decision:
        target = self.block_page_for(url, reason)
        # Keyed on the navigated URL: lifecycle events for one navigation may
        # reach different stages and carry different reasons
        fired = await self._debouncer.fire_once(tab_id, target, key=url)
        if fired:
            logger.info("Redirected tab %d to block page: stage=%s domain=%s", tab_id, stage, domain or "-")
        return Decision(
            Action.REDIRECT,
            Verdict.BLOCK,
            stage,
            reason=reason,
            domain=domain,
            redirect_url=target,
            redirected=fired,
        )

    # ── Helpers ───────────────────────────────────────────────────

    def block_page_for(self, url: str, reason: str) -> str:
        """Build the block page URL carrying *reason* and the original *url*."""
        query = urlencode({"reason": reason, "url": url}, quote_via=quote)
        return f"{self._config.block_page_url}?{query}"

    def is_block_page(self, url: str) -> bool:
        base = self._config.block_page_url
        return url == base or url.startswith((f"{base}?", f"{base}#"))

    def _is_exempt(self, domain: str) -> bool:
        return domain == self._config.video_platform_host

    @staticmethod
    def _is_http(url: str) -> bool:
        return isinstance(url, str) and url.lower().startswith(("http://", "https://"))
