"""Pydantic schemas for request/response validation in the short-link service.

This module defines Pydantic models for API input validation, output serialization
and the Redis cache payload shared by the resolver and the write path.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ original_url: str (http/https, <= 2048 chars)
    ├─ custom_alias: str | None (3-50 chars, [A-Za-z0-9_-])
    ├─ title / description: str | None (bounded)
    ├─ expires_at: datetime | None (must be in the future)
    ├─ is_public: bool
    └─ password: str | None (<= 72 bytes UTF-8 encoded)

    LinkUpdate (Input, typed patch)
    └─ every field optional; only fields present in the request are applied

    LinkResponse / LinkStats / LinkPreview (Output)

    CachedLinkPayload (Redis)
    └─ projection of ShortLink, including password_hash for the password gate

    HealthResponse (Output)

Key Behaviours
===============
- URL validation uses the validators library plus an explicit http/https check.
- Validators raise the ValueError-based domain errors, so FastAPI answers 422.
- Naive datetimes in requests are read as UTC.
- LinkUpdate distinguishes "not sent" from "sent as null" via ``model_fields_set``.

Classes:
    LinkCreate:  Input schema for link creation.
    LinkUpdate:  Input schema for owner updates.
    LinkResponse:  Output schema for a stored link.
    LinkPreview:  Metadata-only view returned instead of a redirect.
    LinkStats:  Link record plus click breakdown.
    CachedLinkPayload:  Redis cache payload.
    HealthResponse:  Output schema for health checks.
"""

import datetime
import uuid
from urllib.parse import urlsplit

import validators
from pydantic import BaseModel, Field, field_validator, model_validator

from shortlinks.codegen import validate_alias
from shortlinks.config import get_settings
from shortlinks.enums import HealthStatus
from shortlinks.exceptions import InvalidExpiry, InvalidUrl
from shortlinks.security import validate_password
from shortlinks.utils import as_utc, utcnow

__all__ = [
    "CachedLinkPayload",
    "HealthResponse",
    "LinkCreate",
    "LinkPreview",
    "LinkResponse",
    "LinkStats",
    "LinkUpdate",
    "validate_expiry",
    "validate_original_url",
]

settings = get_settings()

LOCAL_HOSTNAMES = {"localhost", "127.0.0.1", "::1"}


def validate_original_url(value: str) -> str:
    value = value.strip()
    if len(value) > settings.ORIGINAL_URL_MAX_LENGTH:
        raise InvalidUrl(f"URL is too long (maximum {settings.ORIGINAL_URL_MAX_LENGTH} characters)")
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https"):
        raise InvalidUrl("URL must use HTTP or HTTPS protocol")
    if not validators.url(value, simple_host=not settings.is_production, strict_query=False):
        raise InvalidUrl("Invalid URL format")
    if settings.is_production and parts.hostname in LOCAL_HOSTNAMES:
        raise InvalidUrl("Localhost URLs are not allowed in production")
    return value


def validate_expiry(value: datetime.datetime | None) -> datetime.datetime | None:
    value = as_utc(value)
    if value is not None and value <= utcnow():
        raise InvalidExpiry("Expiration date must be in the future")
    return value


class LinkCreate(BaseModel):
    original_url: str
    custom_alias: str | None = None
    title: str | None = Field(None, max_length=settings.TITLE_MAX_LENGTH)
    description: str | None = Field(None, max_length=settings.DESCRIPTION_MAX_LENGTH)
    expires_at: datetime.datetime | None = None
    is_public: bool = True
    password: str | None = Field(None, min_length=1)

    @field_validator("original_url")
    @classmethod
    def check_original_url(cls, v: str) -> str:
        return validate_original_url(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str | None) -> str | None:
        return validate_password(v) if v is not None else v

    @field_validator("custom_alias")
    @classmethod
    def check_custom_alias(cls, v: str | None) -> str | None:
        if v is not None:
            validate_alias(v, settings.CUSTOM_ALIAS_MIN_LENGTH, settings.CUSTOM_ALIAS_MAX_LENGTH)
        return v

    @field_validator("expires_at")
    @classmethod
    def check_expires_at(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return validate_expiry(v)


class LinkUpdate(BaseModel):
    """Owner patch. Absent fields are left untouched; ``None`` clears nullable fields."""

    original_url: str | None = None
    title: str | None = Field(None, max_length=settings.TITLE_MAX_LENGTH)
    description: str | None = Field(None, max_length=settings.DESCRIPTION_MAX_LENGTH)
    is_active: bool | None = None
    is_public: bool | None = None
    expires_at: datetime.datetime | None = None
    password: str | None = Field(None, min_length=1)

    @field_validator("original_url")
    @classmethod
    def check_original_url(cls, v: str | None) -> str | None:
        return validate_original_url(v) if v is not None else v

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str | None) -> str | None:
        return validate_password(v) if v is not None else v

    @field_validator("expires_at")
    @classmethod
    def check_expires_at(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return validate_expiry(v)

    @model_validator(mode="after")
    def check_non_nullable(self) -> "LinkUpdate":
        for name in ("original_url", "is_active", "is_public"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a short link."""

    id: uuid.UUID
    short_code: str
    custom_alias: str | None = None
    original_url: str
    title: str | None = None
    description: str | None = None
    is_active: bool
    is_public: bool
    password_hash: str | None = None
    click_count: int
    owner_id: str | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}


class LinkResponse(BaseModel):
    id: uuid.UUID
    short_code: str
    custom_alias: str | None
    short_url: str
    original_url: str
    title: str | None
    description: str | None
    is_active: bool
    is_public: bool
    has_password: bool
    click_count: int
    created_at: datetime.datetime
    updated_at: datetime.datetime
    expires_at: datetime.datetime | None
    last_accessed_at: datetime.datetime | None = None

    @classmethod
    def from_link(cls, link, base_url: str) -> "LinkResponse":
        return cls(
            id=link.id,
            short_code=link.short_code,
            custom_alias=link.custom_alias,
            short_url=f"{base_url}/{link.short_code}",
            original_url=link.original_url,
            title=link.title,
            description=link.description,
            is_active=link.is_active,
            is_public=link.is_public,
            has_password=link.password_hash is not None,
            click_count=link.click_count,
            created_at=link.created_at,
            updated_at=link.updated_at,
            expires_at=link.expires_at,
            last_accessed_at=getattr(link, "last_accessed_at", None),
        )


class LinkPreview(BaseModel):
    """Link metadata. The destination is withheld for password-protected links."""

    short_code: str
    original_url: str | None
    title: str | None
    description: str | None
    click_count: int
    created_at: datetime.datetime
    is_public: bool
    has_password: bool
    is_bot: bool = False

    @classmethod
    def from_payload(cls, link: CachedLinkPayload, is_bot: bool = False) -> "LinkPreview":
        protected = link.password_hash is not None
        return cls(
            short_code=link.short_code,
            original_url=None if protected else link.original_url,
            has_password=protected,
            title=link.title,
            description=link.description,
            click_count=link.click_count,
            created_at=link.created_at,
            is_public=link.is_public,
            is_bot=is_bot,
        )


class LinkStats(LinkResponse):
    human_clicks_by_device: dict[str, int] = Field(default_factory=dict)
    human_clicks_by_country: dict[str, int] = Field(default_factory=dict)
    bot_clicks: int = 0


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
