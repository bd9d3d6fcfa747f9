"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["CacheStatus", "DeviceType", "HealthStatus", "RequestStatus", "ResolutionStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache lookup results for metrics."""

    HIT = "hit"
    MISS = "miss"
    TOMBSTONE = "tombstone"
    ERROR = "error"


class ResolutionStatus(StrEnum):
    """Terminal outcomes of resolving a short code.

    Exactly one of these is produced per resolution. ``GONE`` covers both
    expired and deactivated links and is kept apart from ``NOT_FOUND`` so
    callers can tell "existed but is no longer available" from "never existed".
    """

    NOT_FOUND = "not_found"
    GONE = "gone"
    PASSWORD_REQUIRED = "password_required"
    RATE_LIMITED = "rate_limited"
    REDIRECT = "redirect"
    PREVIEW = "preview"


class DeviceType(StrEnum):
    """Device classes derived from the visitor's user agent."""

    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    TV = "tv"
    UNKNOWN = "unknown"
