# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Remote classifier client — async boundary to the external verdict service.

The service is opaque: it answers ``{"classification": "SAFE" | "BLOCK"}``
for a search query or a website.  Only those two values are authoritative.
Every failure mode maps to ``Verdict.UNKNOWN`` and nothing raises out of
the public methods, so an outage degrades the pipeline to rule-engine-only
filtering instead of blocking or hanging navigation.

Failure modes mapped to UNKNOWN:
- transport error / timeout
- non-2xx response
- non-JSON body or body failing schema validation
- any classification other than SAFE / BLOCK
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from . import Verdict
from .errors import ClassifierError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"
VIDEO_SEARCH_MARKER = "[VIDEO_SEARCH]"


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ClassifierConfig:
    """Immutable configuration for the remote classifier client."""

    base_url: str = DEFAULT_BASE_URL
    timeout: float = 5.0  # seconds, applies to connect and read
    enabled: bool = True  # False removes the remote tier entirely

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {self.base_url!r}")


# ---------------------------------------------------------------------------
# Wire schemas
# ---------------------------------------------------------------------------


class SearchRequest(BaseModel):
    query: str


class WebsiteRequest(BaseModel):
    domain: str
    url: str
    title: str = ""
    lastSearchQuery: str = ""  # noqa: N815 (wire name)


class ClassificationResponse(BaseModel):
    classification: str

    def to_verdict(self) -> Verdict:
        value = self.classification.strip().upper()
        if value == Verdict.BLOCK:
            return Verdict.BLOCK
        if value == Verdict.SAFE:
            return Verdict.SAFE
        return Verdict.UNKNOWN


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RemoteClassifierClient:
    """HTTP client for ``/classify-search``, ``/classify-website``, ``/health``.

    Owns its ``httpx.AsyncClient`` unless one is injected (tests pass one
    built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: ClassifierConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or ClassifierConfig()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout),
            headers={"Content-Type": "application/json"},
        )
        self._failures = 0

    # -- Async context manager --

    async def __aenter__(self) -> RemoteClassifierClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- Public API --

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def failures(self) -> int:
        """Number of calls that fell back to UNKNOWN because of an error."""
        return self._failures

    async def classify_search_query(self, query: str, *, video_platform: bool = False) -> Verdict:
        """Classify a search query.  Video-platform queries carry a mode marker."""
        query = query.strip()
        if not query or not self._config.enabled:
            return Verdict.UNKNOWN
        if video_platform:
            query = f"{VIDEO_SEARCH_MARKER} {query}"
        payload = SearchRequest(query=query)
        return await self._classify("/classify-search", payload.model_dump())

    async def classify_website(
        self,
        domain: str,
        url: str,
        title: str | None = None,
        weak_context: str | None = None,
    ) -> Verdict:
        """Classify a website.  *weak_context* is the last search query, if any."""
        if not self._config.enabled:
            return Verdict.UNKNOWN
        payload = WebsiteRequest(
            domain=domain,
            url=url,
            title=title or "",
            lastSearchQuery=weak_context or "",
        )
        return await self._classify("/classify-website", payload.model_dump())

    async def check_health(self) -> bool:
        """GET /health.  True only on a 2xx answer."""
        if not self._config.enabled:
            return False
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as e:
            logger.debug("Classifier health probe failed: %s", e)
            return False
        return response.is_success

    # -- Internal --

    async def _classify(self, path: str, body: dict[str, Any]) -> Verdict:
        try:
            verdict = await self._post(path, body)
        except ClassifierError as e:
            self._failures += 1
            logger.warning("Remote classifier %s unavailable, verdict UNKNOWN: %s", path, e)
            return Verdict.UNKNOWN
        logger.debug("Remote classifier %s -> %s", path, verdict.value)
        return verdict

    async def _post(self, path: str, body: dict[str, Any]) -> Verdict:
        try:
            response = await self._client.post(path, json=body)
        except httpx.TimeoutException as e:
            raise ClassifierError(f"timeout: {e!r}") from e
        except httpx.HTTPError as e:
            raise ClassifierError(f"transport error: {e!r}") from e

        if not response.is_success:
            raise ClassifierError(f"HTTP {response.status_code}", status_code=response.status_code)

        try:
            parsed = ClassificationResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise ClassifierError(f"malformed response: {e.error_count()} error(s)") from e
        return parsed.to_verdict()
