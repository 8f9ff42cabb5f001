# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for webguardian.events — host hook adapters."""

from __future__ import annotations

import pytest

from webguardian import EventKind, NavigationEvent
from webguardian.events import HOST_HOOKS, NavigationAdapter, build_adapters, parse_details


class TestParseDetails:
    def test_valid(self):
        event = parse_details({"tabId": 3, "frameId": 0, "url": "https://a.com/"}, EventKind.COMMITTED)
        assert event == NavigationEvent(3, 0, "https://a.com/", EventKind.COMMITTED)

    def test_missing_frame_is_not_top_level(self):
        assert parse_details({"tabId": 3, "url": "https://a.com/"}, EventKind.BEFORE_NAVIGATE) is None

    @pytest.mark.parametrize(
        "details",
        [
            {"frameId": 0, "url": "https://a.com/"},
            {"tabId": "3", "url": "https://a.com/"},
            {"tabId": True, "url": "https://a.com/"},
            {"tabId": 3, "frameId": None, "url": "https://a.com/"},
            {"tabId": 3, "url": ""},
            {"tabId": 3},
        ],
    )
    def test_malformed(self, details):
        assert parse_details(details, EventKind.COMMITTED) is None


class TestAdapters:
    def test_one_adapter_per_hook(self):
        adapters = build_adapters(lambda event: None)
        assert set(adapters) == set(HOST_HOOKS)
        assert adapters["onHistoryStateUpdated"].kind is EventKind.HISTORY_STATE_UPDATED

    def test_all_feed_same_ingress(self):
        seen: list[NavigationEvent] = []
        adapters = build_adapters(seen.append)
        for hook in HOST_HOOKS:
            adapters[hook]({"tabId": 1, "frameId": 0, "url": "https://a.com/"})
        assert [e.kind for e in seen] == list(HOST_HOOKS.values())

    def test_malformed_dropped(self):
        seen: list[NavigationEvent] = []
        adapter = NavigationAdapter(EventKind.COMMITTED, seen.append)
        assert adapter({"url": 5}) is None
        assert seen == []

    def test_returns_ingress_result(self):
        adapter = NavigationAdapter(EventKind.COMMITTED, lambda event: event.tab_id * 2)
        assert adapter({"tabId": 21, "frameId": 0, "url": "https://a.com/"}) == 42
        assert "committed" in repr(adapter)
