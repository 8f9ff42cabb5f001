# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Web Guardian exception hierarchy.

All Web Guardian errors inherit from WebGuardianError.  None of them escape
the interception pipeline: stores and the classifier client raise them, and
the cache and client boundaries turn them into a miss or UNKNOWN.
"""

from __future__ import annotations


class WebGuardianError(Exception):
    """Base exception for all Web Guardian errors."""


class StoreError(WebGuardianError):
    """Persistent key-value store read or write failure."""

    def __init__(self, message: str, *, key: str = "") -> None:
        super().__init__(message)
        self.key = key


class ClassifierError(WebGuardianError):
    """Remote classifier transport or protocol failure."""

    def __init__(self, message: str, *, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigError(WebGuardianError):
    """Invalid configuration (bad flag, env var, or baseline file)."""
