# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for webguardian.interceptor — navigation decision state machine."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from tests._helpers import classifier_transport, mock_http_client
from webguardian import Action, EventKind, NavigationEvent, Verdict
from webguardian.classifier_client import VIDEO_SEARCH_MARKER, RemoteClassifierClient
from webguardian.interceptor import (
    DEFAULT_BLOCK_PAGE,
    REASON_CACHED,
    REASON_MANUAL,
    STAGE_CACHE,
    STAGE_ERROR,
    STAGE_EXEMPT,
    STAGE_GUARD,
    STAGE_MANUAL,
    STAGE_PAGE_REMOTE,
    STAGE_PAGE_RULES,
    STAGE_SEARCH_REMOTE,
    STAGE_SEARCH_RULES,
    STAGE_SITE_REMOTE,
    STAGE_SITE_RULES,
    InterceptorConfig,
    NavigationInterceptor,
)
from webguardian.search_context import SearchContext

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def make_interceptor(cache, debouncer, clock, requests):
    """Factory: interceptor wired to a MockTransport classifier."""

    def _make(transport: httpx.MockTransport | None = None, **transport_kwargs) -> NavigationInterceptor:
        transport = transport or classifier_transport(requests=requests, **transport_kwargs)
        classifier = RemoteClassifierClient(http_client=mock_http_client(transport))
        return NavigationInterceptor(
            cache=cache,
            debouncer=debouncer,
            classifier=classifier,
            search_context=SearchContext(clock=clock),
        )

    return _make


def _nav(url: str, tab_id: int = 7, frame_id: int = 0) -> NavigationEvent:
    return NavigationEvent(tab_id=tab_id, frame_id=frame_id, url=url)


def _paths(requests: list[httpx.Request]) -> list[str]:
    return [r.url.path for r in requests]


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_keyword_domain_blocked_and_cached(self, make_interceptor, cache, updater, requests):
        interceptor = make_interceptor()
        decision = await interceptor.handle(_nav("https://mangadex.org/title/1"))

        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_SITE_RULES
        assert decision.redirected is True
        assert await cache.get("mangadex.org") is Verdict.BLOCK
        assert len(updater.calls) == 1
        assert requests == []

    async def test_search_keyword_blocked_without_remote(self, make_interceptor, updater, requests):
        interceptor = make_interceptor()
        decision = await interceptor.handle(_nav("https://www.google.com/search?q=readmanhwa+chapter+5"))

        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_SEARCH_RULES
        assert decision.reason == 'Blocked search query: "readmanhwa chapter 5"'
        assert "/classify-search" not in _paths(requests)
        assert len(updater.calls) == 1

    async def test_unknown_domain_remote_safe_cached(self, make_interceptor, cache, updater):
        interceptor = make_interceptor(website="SAFE")
        decision = await interceptor.handle(_nav("https://weather-report.example.net/today"))

        assert decision.action is Action.ALLOW
        assert decision.verdict is Verdict.SAFE
        assert decision.stage == STAGE_SITE_REMOTE
        assert await cache.get("example.net") is Verdict.SAFE
        assert updater.calls == []

    async def test_remote_timeout_allows_without_caching(self, make_interceptor, cache, store, updater):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        interceptor = make_interceptor(httpx.MockTransport(handler))
        decision = await interceptor.handle(_nav("https://weather-report.example.net/today"))

        assert decision.action is Action.ALLOW
        assert decision.verdict is Verdict.UNKNOWN
        assert store.data == {}
        assert updater.calls == []


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestGuards:
    async def test_subframe_ignored(self, make_interceptor, store, updater, requests):
        interceptor = make_interceptor()
        decision = await interceptor.handle(_nav("https://mangadex.org/", frame_id=3))
        assert decision.action is Action.IGNORE
        assert decision.stage == STAGE_GUARD
        assert store.data == {}
        assert updater.calls == []
        assert requests == []

    async def test_block_page_ignored(self, make_interceptor, updater):
        interceptor = make_interceptor()
        url = interceptor.block_page_for("https://mangadex.org/", "x")
        decision = await interceptor.handle(_nav(url))
        assert decision.action is Action.IGNORE
        assert decision.reason == "block page"
        assert updater.calls == []

    @pytest.mark.parametrize("url", ["chrome://settings", "about:blank", "file:///etc/hosts"])
    async def test_non_http_ignored(self, make_interceptor, url):
        decision = await make_interceptor().handle(_nav(url))
        assert decision.action is Action.IGNORE

    async def test_negative_tab_ignored(self, make_interceptor):
        decision = await make_interceptor().handle(_nav("https://mangadex.org/", tab_id=-1))
        assert decision.action is Action.IGNORE


# ---------------------------------------------------------------------------
# Cache stage
# ---------------------------------------------------------------------------


class TestCacheStage:
    async def test_cached_block_redirects_without_remote(self, make_interceptor, cache, requests):
        await cache.set("bad.example", Verdict.BLOCK)
        decision = await make_interceptor().handle(_nav("https://www.bad.example/page"))
        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_CACHE
        assert decision.reason == REASON_CACHED
        assert requests == []

    async def test_lookalike_search_host_still_checked(self, make_interceptor, cache, updater):
        await cache.set("mangadex.org", Verdict.BLOCK)
        decision = await make_interceptor().handle(_nav("https://google.mangadex.org/search?q="))
        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_CACHE
        assert len(updater.calls) == 1

    async def test_malformed_record_does_not_break_pipeline(self, make_interceptor, store, cache, updater):
        store.data["domainDB"] = '{"old.example": {"v": 1}}'
        decision = await make_interceptor().handle(_nav("https://mangadex.org/"))
        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_SITE_RULES
        assert await cache.get("mangadex.org") is Verdict.BLOCK
        assert len(updater.calls) == 1

    async def test_cached_safe_allows_without_remote(self, make_interceptor, cache, requests):
        await cache.set("good.example", Verdict.SAFE)
        decision = await make_interceptor(website="BLOCK").handle(_nav("https://good.example/"))
        assert decision.action is Action.ALLOW
        assert decision.stage == STAGE_CACHE
        assert requests == []

    async def test_remote_block_cached(self, make_interceptor, cache):
        decision = await make_interceptor(website="BLOCK").handle(_nav("https://quiet.example/"))
        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_SITE_REMOTE
        assert await cache.get("quiet.example") is Verdict.BLOCK

    async def test_no_classifier_is_unknown(self, cache, debouncer, store):
        interceptor = NavigationInterceptor(cache=cache, debouncer=debouncer)
        decision = await interceptor.handle(_nav("https://quiet.example/"))
        assert decision.action is Action.ALLOW
        assert decision.verdict is Verdict.UNKNOWN
        assert store.data == {}


# ---------------------------------------------------------------------------
# Search surfaces and context
# ---------------------------------------------------------------------------


class TestSearch:
    async def test_clean_query_goes_remote(self, make_interceptor, requests):
        decision = await make_interceptor(search="SAFE").handle(_nav("https://www.bing.com/search?q=weather"))
        assert decision.action is Action.ALLOW
        assert decision.stage == STAGE_SEARCH_REMOTE
        assert json.loads(requests[0].content) == {"query": "weather"}

    async def test_remote_block_on_search_not_cached(self, make_interceptor, store):
        decision = await make_interceptor(search="BLOCK").handle(_nav("https://www.google.co.uk/search?q=something"))
        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_SEARCH_REMOTE
        assert store.data == {}

    async def test_empty_query_allowed(self, make_interceptor, requests):
        decision = await make_interceptor().handle(_nav("https://www.google.com/search?q="))
        assert decision.action is Action.ALLOW
        assert requests == []

    async def test_query_passed_as_weak_context(self, make_interceptor, requests):
        interceptor = make_interceptor()
        await interceptor.handle(_nav("https://www.google.com/search?q=free+comics"))
        await interceptor.handle(_nav("https://comics.example.org/", tab_id=8))
        website = [r for r in requests if r.url.path == "/classify-website"][0]
        assert json.loads(website.content)["lastSearchQuery"] == "free comics"

    async def test_video_search_marked_and_not_recorded(self, make_interceptor, requests):
        interceptor = make_interceptor()
        await interceptor.handle(_nav("https://www.youtube.com/results?search_query=lofi+mix"))
        assert json.loads(requests[0].content)["query"] == f"{VIDEO_SEARCH_MARKER} lofi mix"
        assert interceptor.search_context.current() is None

    async def test_video_search_keyword_blocked(self, make_interceptor, updater):
        decision = await make_interceptor().handle(_nav("https://www.youtube.com/results?search_query=anime+recap"))
        assert decision.action is Action.REDIRECT
        assert len(updater.calls) == 1

    async def test_video_platform_pages_exempt(self, make_interceptor, store, requests):
        decision = await make_interceptor().handle(_nav("https://www.youtube.com/watch?v=abc"))
        assert decision.action is Action.ALLOW
        assert decision.stage == STAGE_EXEMPT
        assert store.data == {}
        assert requests == []


# ---------------------------------------------------------------------------
# Redirects and debouncing
# ---------------------------------------------------------------------------


class TestRedirect:
    async def test_lifecycle_events_fire_once(self, make_interceptor, updater):
        interceptor = make_interceptor()
        first = await interceptor.handle(_nav("https://mangadex.org/title/1"))
        second = await interceptor.handle(_nav("https://mangadex.org/title/1"))
        assert first.redirected is True
        assert second.action is Action.REDIRECT
        assert second.redirected is False
        assert len(updater.calls) == 1

    async def test_cache_hit_after_rule_block_does_not_refire(self, make_interceptor, updater):
        interceptor = make_interceptor()
        first = await interceptor.handle(_nav("https://mangadex.org/title/1"))
        second = await interceptor.handle(NavigationEvent(7, 0, "https://mangadex.org/title/1", EventKind.COMMITTED))
        assert first.stage == STAGE_SITE_RULES
        assert second.stage == STAGE_CACHE
        assert second.redirected is False
        assert len(updater.calls) == 1

    async def test_block_page_carries_reason_and_url(self, make_interceptor):
        decision = await make_interceptor().handle(_nav("https://mangadex.org/title/1?x=1&y=2"))
        parts = urlsplit(decision.redirect_url)
        assert decision.redirect_url.startswith(DEFAULT_BLOCK_PAGE + "?")
        params = parse_qs(parts.query)
        assert params["url"] == ["https://mangadex.org/title/1?x=1&y=2"]
        assert params["reason"] == [decision.reason]

    def test_config_validation(self):
        with pytest.raises(ValueError, match="block_page_url"):
            InterceptorConfig(block_page_url="")
        with pytest.raises(ValueError, match="page_body_limit"):
            InterceptorConfig(page_body_limit=0)


# ---------------------------------------------------------------------------
# In-page re-check
# ---------------------------------------------------------------------------


class TestCheckPage:
    async def test_gated_body_blocks(self, make_interceptor, cache):
        decision = await make_interceptor().check_page(
            7, "https://reader.example.com/s/1", title="Solo Leveling", body_text="read anime online"
        )
        assert decision.action is Action.REDIRECT
        assert decision.stage == STAGE_PAGE_RULES
        assert await cache.get("example.com") is Verdict.BLOCK

    async def test_body_root_alone_does_not_block(self, make_interceptor, requests):
        decision = await make_interceptor(website="SAFE").check_page(
            7, "https://reviews.example.com/", title="Weekly reviews", body_text="our manga reviews this week"
        )
        assert decision.action is Action.ALLOW
        assert decision.stage == STAGE_PAGE_REMOTE
        assert json.loads(requests[0].content)["title"] == "Weekly reviews"

    async def test_title_flat_match(self, make_interceptor):
        decision = await make_interceptor().check_page(7, "https://x.example.com/", title="Webtoon hub")
        assert decision.stage == STAGE_PAGE_RULES

    async def test_body_beyond_limit_ignored(self, make_interceptor):
        body = "x" * 4000 + " read anime online"
        decision = await make_interceptor(website="SAFE").check_page(7, "https://x.example.com/", body_text=body)
        assert decision.action is Action.ALLOW

    async def test_search_page_skipped(self, make_interceptor, requests):
        decision = await make_interceptor().check_page(7, "https://www.google.com/search?q=x", title="manga")
        assert decision.action is Action.ALLOW
        assert requests == []


# ---------------------------------------------------------------------------
# Manual override and fail-open
# ---------------------------------------------------------------------------


class TestManualBlock:
    async def test_block_with_tab_redirects(self, make_interceptor, cache, updater):
        decision = await make_interceptor().block_domain("https://sub.quiet.example/page", tab_id=4)
        assert decision.stage == STAGE_MANUAL
        assert decision.reason == REASON_MANUAL
        assert decision.action is Action.REDIRECT
        assert await cache.get("quiet.example") is Verdict.BLOCK
        assert updater.calls[0][0] == 4

    async def test_block_without_tab(self, make_interceptor, cache, updater):
        decision = await make_interceptor().block_domain("quiet.example")
        assert decision.action is Action.ALLOW
        assert decision.verdict is Verdict.BLOCK
        assert await cache.get("quiet.example") is Verdict.BLOCK
        assert updater.calls == []

    async def test_overrides_safe(self, make_interceptor, cache):
        await cache.set("quiet.example", Verdict.SAFE)
        await make_interceptor().block_domain("quiet.example")
        assert await cache.get("quiet.example") is Verdict.BLOCK

    async def test_no_domain_raises(self, make_interceptor):
        with pytest.raises(ValueError, match="domain"):
            await make_interceptor().block_domain("   ")


class TestFailOpen:
    async def test_handler_error_allows(self, cache, debouncer, updater):
        classifier = AsyncMock(spec=RemoteClassifierClient)
        classifier.classify_website.side_effect = RuntimeError("bug")
        interceptor = NavigationInterceptor(cache=cache, debouncer=debouncer, classifier=classifier)
        decision = await interceptor.handle(_nav("https://quiet.example/"))
        assert decision.action is Action.ALLOW
        assert decision.stage == STAGE_ERROR
        assert updater.calls == []
