"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "ResolutionStatus", "ResolutionOutcome", "CacheStatus", "DeviceType"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class ResolutionStatus(StrEnum):
    """Non-error outcomes of resolving a link id."""

    REDIRECT = "redirect"
    GATED = "gated"


class ResolutionOutcome(StrEnum):
    """Resolution outcome labels for metrics and logging."""

    REDIRECT = "redirect"
    GATED = "gated"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class DeviceType(StrEnum):
    """Device classes derived from the User-Agent header."""

    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    BOT = "bot"
    UNKNOWN = "unknown"
