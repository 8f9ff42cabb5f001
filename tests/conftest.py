# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import webguardian  # noqa: F401
except ImportError:
    raise ImportError("webguardian is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from tests._helpers import FakeClock, RecordingUpdater
from webguardian.debounce import RedirectDebouncer
from webguardian.store import InMemoryStore
from webguardian.verdict_cache import VerdictCache


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def updater():
    return RecordingUpdater()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache(store):
    return VerdictCache(store, retry_delay=0)


@pytest.fixture
def debouncer(updater, clock):
    return RedirectDebouncer(updater, clock=clock)
