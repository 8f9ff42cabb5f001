# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Search-surface recognition: which URLs are search-results pages.

Allow-listed surfaces:
  - Google ``/search?q=...`` on any ``google.<tld>`` host
  - Bing ``/search?q=...``
  - the video platform's ``/results?search_query=...``
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from .domain import extract_host, registrable_domain

DEFAULT_VIDEO_PLATFORM = "youtube.com"


@dataclass(frozen=True, slots=True)
class SearchSurface:
    """A recognized search-results page and its extracted query."""

    engine: str  # "google" | "bing" | "video"
    query: str

    @property
    def is_video(self) -> bool:
        return self.engine == "video"


def _first_param(query_string: str, name: str) -> str:
    values = parse_qs(query_string, keep_blank_values=True).get(name)
    return values[0].strip() if values else ""


def _is_google_host(host: str) -> bool:
    # google.com, google.de, google.co.uk; not google.<other-site>
    return registrable_domain(host).split(".")[0] == "google"


def detect_search(url: str, *, video_platform: str = DEFAULT_VIDEO_PLATFORM) -> SearchSurface | None:
    """Return the search surface for *url*, or None if it is not one."""
    host = extract_host(url)
    if not host:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    path = parts.path.rstrip("/") or "/"

    if path == "/search":
        if _is_google_host(host):
            return SearchSurface("google", _first_param(parts.query, "q"))
        if registrable_domain(host) == "bing.com":
            return SearchSurface("bing", _first_param(parts.query, "q"))
        return None

    if path == "/results" and registrable_domain(host) == video_platform:
        return SearchSurface("video", _first_param(parts.query, "search_query"))

    return None
