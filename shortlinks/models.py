"""SQLAlchemy ORM models for the short-link service.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for short links and their clicks.

Data Model Layout
=================
::
    short_links table
    ├─ id (UUID PRIMARY KEY)
    ├─ short_code (VARCHAR(50) UNIQUE, INDEXED)
    ├─ custom_alias (VARCHAR(50) UNIQUE, NULL)
    ├─ original_url (VARCHAR(2048) NOT NULL)
    ├─ title / description (NULL)
    ├─ is_active / is_public (BOOLEAN)
    ├─ password_hash (VARCHAR(255) NULL)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ owner_id (VARCHAR(64) NULL, INDEXED)
    ├─ created_at / updated_at (TIMESTAMPTZ)
    ├─ expires_at (TIMESTAMPTZ NULL)
    └─ last_accessed_at (TIMESTAMPTZ NULL)

    click_events table (append-only)
    ├─ id (UUID PRIMARY KEY)
    ├─ short_link_id (UUID FK -> short_links.id ON DELETE CASCADE)
    ├─ ip_address / user_agent / referer
    ├─ country / region / city
    ├─ device_type / browser / os
    ├─ is_bot (BOOLEAN)
    └─ clicked_at (TIMESTAMPTZ, INDEXED)

    retired_codes table
    ├─ code (VARCHAR(50) PRIMARY KEY)
    └─ retired_at (TIMESTAMPTZ)

How to Use
===========
**Step 1 — Import**::
    from shortlinks.models import ShortLink

**Step 2 — Query a link**::
    result = await db.execute(select(ShortLink).where(ShortLink.short_code == "abc123"))
    link = result.scalar_one_or_none()

Key Behaviours
===============
- short_code is unique and indexed for fast lookups during redirects.
- A chosen custom alias is stored both as ``custom_alias`` and as ``short_code``.
- click_count is only ever bumped with ``UPDATE ... SET click_count = click_count + 1``.
- Click events are never updated after insert.

Classes:
    ShortLink:  A short code mapped to an original URL.
    ClickEvent:  One recorded visit to a short link.
    RetiredCode:  A code freed by deletion that must not be handed out again.
"""

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlinks.database import Base
from shortlinks.utils import utcnow

__all__ = ["ClickEvent", "RetiredCode", "ShortLink"]


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    short_code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    custom_alias: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    original_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_accessed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, short_code='{self.short_code}', clicks={self.click_count})>"


class ClickEvent(Base):
    __tablename__ = "click_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    short_link_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("short_links.id", ondelete="CASCADE"), index=True, nullable=False
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(String(2), index=True, nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    device_type: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_bot: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ClickEvent(id={self.id}, short_link_id={self.short_link_id}, is_bot={self.is_bot})>"


class RetiredCode(Base):
    __tablename__ = "retired_codes"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    retired_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
