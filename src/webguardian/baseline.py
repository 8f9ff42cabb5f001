# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SAFE/BLOCK baseline lists loaded from YAML.

File format::

    safe:
      - github.com
    block:
      - mangadex.org

Entries are collapsed to DomainKeys so they match what the interceptor
looks up.  A domain listed under both keys is BLOCK.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from . import Verdict
from .domain import coerce_domain
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASELINE_PATH = Path(__file__).parent / "safe_domains.yaml"


def parse_baseline(data: object) -> dict[str, Verdict]:
    """Validate a decoded YAML document and return ``{domain: verdict}``."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("baseline must be a mapping with 'safe' and/or 'block' lists")

    unknown = set(data) - {"safe", "block"}
    if unknown:
        raise ConfigError(f"unknown baseline keys: {', '.join(sorted(map(str, unknown)))}")

    result: dict[str, Verdict] = {}
    for section, verdict in (("safe", Verdict.SAFE), ("block", Verdict.BLOCK)):
        entries = data.get(section) or []
        if not isinstance(entries, list):
            raise ConfigError(f"baseline '{section}' must be a list")
        for entry in entries:
            domain = coerce_domain(str(entry))
            if not domain:
                logger.warning("Skipping baseline entry without a domain: %r", entry)
                continue
            result[domain] = verdict
    return result


def load_baseline(path: str | Path | None = None) -> dict[str, Verdict]:
    """Read a baseline YAML file (the packaged SAFE list by default)."""
    p = Path(path) if path else DEFAULT_BASELINE_PATH
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read baseline {p}: {e.strerror or e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {p}: {e}") from e
    return parse_baseline(data)
