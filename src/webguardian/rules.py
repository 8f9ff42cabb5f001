# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Deterministic keyword rule engine — runs before any network round trip.

Two matching modes over heavily normalized text:

  FLAT   – any keyword substring blocks.  Used for search queries and URLs.
  GATED  – a content-root term must co-occur with an intent term, unless a
           combo phrase (which carries both) matches on its own.  Used for
           page-body text where bare topical mentions are common.

The engine never returns SAFE: no match is UNKNOWN.  Only the remote
classifier or a prior cache entry can assert that a domain is safe.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from . import Verdict

# ---------------------------------------------------------------------------
# Term sets
# ---------------------------------------------------------------------------

FLAT_KEYWORDS: tuple[str, ...] = (
    "manga",
    "manhwa",
    "manhua",
    "webtoon",
    "scanlation",
    "scans",
    "chapter",
    "read manga",
    "read manhwa",
    "toon",
    "anime",
    "mangadex",
    "mangakakalot",
    "manganato",
)

CONTENT_ROOTS: tuple[str, ...] = (
    "manga",
    "manhwa",
    "manhua",
    "webtoon",
    "doujin",
    "doujinshi",
    "scanlation",
    "scanlator",
    "scanlat",
    "hentai",
    "ecchi",
    "nsfw",
    "r18",
    "18plus",
    "anime",
)

INTENT_WORDS: tuple[str, ...] = (
    "read",
    "chapter",
    "chapters",
    "online",
    "free",
    "raw",
    "translated",
    "scan",
    "scans",
    "viewer",
    "full",
    "latest",
)

COMBO_PHRASES: tuple[str, ...] = (
    "readmanga",
    "readmanhwa",
    "readmanhua",
    "readwebtoon",
    "mangaread",
    "manhwaread",
    "webtoonread",
    "rawchapter",
    "rawchapters",
)

# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_LEET_TABLE = str.maketrans({"0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t"})


def normalize_text(text: str) -> str:
    """Lowercase, strip diacritics, drop non-alphanumerics, undo leetspeak.

    ``"R3ad M@ngá!"`` -> ``"readmnga"``; ``"m4nhw4"`` -> ``"manhwa"``.
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub("", stripped).translate(_LEET_TABLE)


def _normalize_terms(terms: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for term in terms:
        norm = normalize_text(term)
        if norm:
            seen.setdefault(norm, None)
    return tuple(seen)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class MatchMode(StrEnum):
    FLAT = "flat"
    GATED = "gated"


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """Outcome of a rule evaluation with the terms that fired."""

    verdict: Verdict
    mode: MatchMode
    terms: tuple[str, ...] = ()

    @property
    def blocked(self) -> bool:
        return self.verdict is Verdict.BLOCK


# ---------------------------------------------------------------------------
# RuleEngine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleEngine:
    """Keyword classifier over normalized text.

    Term lists are normalized once at construction so that a configured
    keyword like ``"read manga"`` matches the normalized ``"readmanga"``.
    """

    flat_keywords: tuple[str, ...] = FLAT_KEYWORDS
    content_roots: tuple[str, ...] = CONTENT_ROOTS
    intent_words: tuple[str, ...] = INTENT_WORDS
    combo_phrases: tuple[str, ...] = COMBO_PHRASES
    _flat: tuple[str, ...] = field(init=False, repr=False)
    _roots: tuple[str, ...] = field(init=False, repr=False)
    _intents: tuple[str, ...] = field(init=False, repr=False)
    _combos: tuple[str, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_flat", _normalize_terms(self.flat_keywords))
        object.__setattr__(self, "_roots", _normalize_terms(self.content_roots))
        object.__setattr__(self, "_intents", _normalize_terms(self.intent_words))
        object.__setattr__(self, "_combos", _normalize_terms(self.combo_phrases))

    def classify(self, text: str, mode: MatchMode = MatchMode.FLAT) -> Verdict:
        """Return BLOCK or UNKNOWN for *text*.  Never SAFE."""
        return self.evaluate(text, mode).verdict

    def evaluate(self, text: str, mode: MatchMode = MatchMode.FLAT) -> RuleMatch:
        """Classify *text* and report which terms fired."""
        normalized = normalize_text(text)
        if not normalized:
            return RuleMatch(Verdict.UNKNOWN, mode)
        if mode is MatchMode.GATED:
            return self._evaluate_gated(normalized)
        return self._evaluate_flat(normalized)

    def _evaluate_flat(self, normalized: str) -> RuleMatch:
        hits = tuple(k for k in self._flat if k in normalized)
        if hits:
            return RuleMatch(Verdict.BLOCK, MatchMode.FLAT, hits)
        return RuleMatch(Verdict.UNKNOWN, MatchMode.FLAT)

    def _evaluate_gated(self, normalized: str) -> RuleMatch:
        combos = tuple(p for p in self._combos if p in normalized)
        if combos:
            # A combo phrase carries both a root and an intent on its own
            return RuleMatch(Verdict.BLOCK, MatchMode.GATED, combos)

        roots = tuple(r for r in self._roots if r in normalized)
        if not roots:
            return RuleMatch(Verdict.UNKNOWN, MatchMode.GATED)
        intents = tuple(w for w in self._intents if w in normalized)
        if not intents:
            return RuleMatch(Verdict.UNKNOWN, MatchMode.GATED)
        return RuleMatch(Verdict.BLOCK, MatchMode.GATED, roots + intents)


DEFAULT_ENGINE = RuleEngine()


def classify(text: str, mode: MatchMode = MatchMode.FLAT) -> Verdict:
    """Module-level shortcut for :data:`DEFAULT_ENGINE`."""
    return DEFAULT_ENGINE.classify(text, mode)
