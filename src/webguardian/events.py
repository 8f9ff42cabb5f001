# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Navigation event adapters — one per host lifecycle hook, one ingress.

The host delivers ``{"tabId", "frameId", "url"}`` payloads from three hooks
(before-navigate, committed, history-state-updated).  Subscribing to all
three catches single-page-app routing as well as full navigations.  Each
adapter turns a raw payload into a ``NavigationEvent`` and hands it to the
same ingress callable, so the state machine never sees host specifics.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from . import EventKind, NavigationEvent

logger = logging.getLogger(__name__)

Ingress = Callable[[NavigationEvent], object]

HOST_HOOKS: dict[str, EventKind] = {
    "onBeforeNavigate": EventKind.BEFORE_NAVIGATE,
    "onCommitted": EventKind.COMMITTED,
    "onHistoryStateUpdated": EventKind.HISTORY_STATE_UPDATED,
}


def parse_details(details: Mapping[str, Any], kind: EventKind) -> NavigationEvent | None:
    """Convert a host payload to a ``NavigationEvent``.

    Malformed -> None.  A missing ``frameId`` is malformed: it must not be
    mistaken for the top-level frame.
    """
    tab_id = details.get("tabId")
    frame_id = details.get("frameId")
    url = details.get("url")
    if not isinstance(url, str) or not url:
        return None
    if isinstance(tab_id, bool) or not isinstance(tab_id, int):
        return None
    if isinstance(frame_id, bool) or not isinstance(frame_id, int):
        return None
    return NavigationEvent(tab_id=tab_id, frame_id=frame_id, url=url, kind=kind)


class NavigationAdapter:
    """Callable listener for one host hook, feeding the shared ingress."""

    def __init__(self, kind: EventKind, ingress: Ingress) -> None:
        self.kind = kind
        self._ingress = ingress

    def __call__(self, details: Mapping[str, Any]) -> object:
        event = parse_details(details, self.kind)
        if event is None:
            logger.debug("Dropped malformed %s payload", self.kind.value)
            return None
        return self._ingress(event)

    def __repr__(self) -> str:
        return f"NavigationAdapter(kind={self.kind.value})"


def build_adapters(ingress: Ingress) -> dict[str, NavigationAdapter]:
    """Return ``{host_hook_name: adapter}`` for every lifecycle hook."""
    return {hook: NavigationAdapter(kind, ingress) for hook, kind in HOST_HOOKS.items()}
