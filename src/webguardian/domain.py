# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Domain normalization — URL to registrable domain key for the verdict cache.

Pure functions, no I/O.  The registrable domain is approximated without a
public-suffix list: a short second-to-last label next to a short last label
(``co.uk``, ``com.au``, ``org.br``) is treated as a two-label suffix.
"""

from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit

_SHORT_LABEL = 3  # max length of each label in a country-code second-level suffix


def is_ip_literal(host: str) -> bool:
    """Return True if *host* is an IPv4 or IPv6 address literal."""
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def extract_host(url: str) -> str:
    """Return the lowercased hostname of *url*, or ``""`` when there is none."""
    try:
        host = urlsplit(url.strip()).hostname
    except (ValueError, AttributeError):
        return ""
    if not host:
        return ""
    return host.rstrip(".")


def registrable_domain(host: str) -> str:
    """Collapse *host* to its registrable domain.

    ``news.example.co.uk`` -> ``example.co.uk``; ``a.b.example.com`` -> ``example.com``.
    IP literals and single-label hosts are returned unchanged.
    """
    if not host:
        return ""
    if is_ip_literal(host):
        return host
    labels = [label for label in host.split(".") if label]
    if len(labels) <= 2:
        return ".".join(labels)

    last, second_last = labels[-1], labels[-2]
    if len(last) <= _SHORT_LABEL and len(second_last) <= _SHORT_LABEL:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def normalize_domain(url: str) -> str:
    """Canonicalize *url* to its DomainKey.

    Returns ``""`` for malformed URLs or URLs without a host.  Callers must
    treat ``""`` as "not classifiable by domain", never as SAFE.
    """
    return registrable_domain(extract_host(url))


def coerce_domain(value: str) -> str:
    """Accept either a URL or a bare domain and return its DomainKey.

    Used by manual overrides, where operators type ``example.com`` as often
    as a full URL.
    """
    value = value.strip()
    if not value:
        return ""
    if "://" not in value:
        value = f"http://{value}"
    return normalize_domain(value)
