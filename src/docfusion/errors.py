"""Exceptions raised by DocFusion."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when a chunker, cache or fusion configuration is invalid."""
