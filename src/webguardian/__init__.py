# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Web Guardian: pre-render navigation filtering for a browser host.

Navigation and search events flow through a layered decision pipeline:
- verdict cache: persisted per-domain SAFE/BLOCK verdicts
- rule engine: normalized keyword matching (flat and gated)
- remote classifier: consulted only when the first two are inconclusive
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Verdict(StrEnum):
    """Outcome of any classification stage.  UNKNOWN is never persisted."""

    SAFE = "SAFE"
    BLOCK = "BLOCK"
    UNKNOWN = "UNKNOWN"


class Action(StrEnum):
    """What the interceptor did with an event."""

    ALLOW = "allow"
    REDIRECT = "redirect"
    IGNORE = "ignore"


class EventKind(StrEnum):
    """Navigation-lifecycle hook that produced an event."""

    BEFORE_NAVIGATE = "before_navigate"
    COMMITTED = "committed"
    HISTORY_STATE_UPDATED = "history_state_updated"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class NavigationEvent:
    """A single navigation observed by the host."""

    tab_id: int
    frame_id: int  # 0 = top-level frame
    url: str
    kind: EventKind = EventKind.BEFORE_NAVIGATE

    @property
    def is_top_level(self) -> bool:
        return self.frame_id == 0


@dataclass(frozen=True, slots=True)
class Decision:
    """Result of running one event through the pipeline."""

    action: Action
    verdict: Verdict
    stage: str  # guard, search_rules, search_remote, cache, site_rules, site_remote, page_rules, ...
    reason: str = ""
    domain: str = ""
    redirect_url: str = ""
    redirected: bool = False  # False when the debouncer suppressed the redirect

    @property
    def blocked(self) -> bool:
        return self.action is Action.REDIRECT

    def __str__(self) -> str:
        parts = [f"{self.action.value}", f"verdict={self.verdict.value}", f"stage={self.stage}"]
        if self.domain:
            parts.append(f"domain={self.domain}")
        if self.reason:
            parts.append(f'reason="{self.reason}"')
        return " ".join(parts)
