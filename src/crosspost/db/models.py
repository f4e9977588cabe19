"""ORM models for connections, posts and publish events."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from crosspost.db.base import Base
from crosspost.types import AccountIdentity, Mention, Platform

# Utility for cross-dialect JSON support (JSONB on Postgres, JSON on SQLite)
JSON_VARIANT = JSON().with_variant(JSONB, "postgresql")


class AccountIdentityType(TypeDecorator):
    """Stores an AccountIdentity as ``username|platformAccountId|parentAccountId``.

    This is the only place the delimited form is produced or parsed.
    """

    impl = String(512)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = AccountIdentity.deserialize(value)
        return value.serialize()

    def process_result_value(self, value, dialect):
        return AccountIdentity.deserialize(value)


def _new_post_id() -> str:
    return str(uuid.uuid4())


class SocialConnection(Base):
    """Stored OAuth credential set for one social platform."""

    __tablename__ = "social_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    identity: Mapped[AccountIdentity] = mapped_column(
        AccountIdentityType(), nullable=True
    )
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def platform_enum(self) -> Platform:
        return Platform(self.platform)

    def __repr__(self) -> str:
        return f"<SocialConnection {self.platform} active={self.is_active}>"


class SocialPost(Base):
    """A piece of content scheduled for one or more platforms."""

    __tablename__ = "social_posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_post_id)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    media_assets: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON_VARIANT, nullable=True)
    platforms: Mapped[List[str]] = mapped_column(JSON_VARIANT, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="scheduled", nullable=False)

    # platform -> ISO-8601 timestamp of the successful publish
    published_on: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON_VARIANT, nullable=True)
    # platform -> remote post id returned by the platform
    remote_post_ids: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON_VARIANT, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    comments: Mapped[Optional[List[str]]] = mapped_column(JSON_VARIANT, nullable=True)
    mentions: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON_VARIANT, nullable=True)

    __table_args__ = (
        Index("ix_social_posts_status_scheduled", "status", "scheduled_for"),
    )

    def platform_entries(self) -> List[Tuple[str, Optional[Platform]]]:
        """Stored platform names paired with their Platform, None when unrecognized."""
        entries: List[Tuple[str, Optional[Platform]]] = []
        for value in self.platforms or []:
            try:
                entries.append((str(value), Platform.parse(value)))
            except ValueError:
                entries.append((str(value), None))
        return entries

    @property
    def mention_list(self) -> List[Mention]:
        return [Mention.from_dict(m) for m in (self.mentions or [])]

    @property
    def comment_list(self) -> List[str]:
        return [c for c in (self.comments or []) if isinstance(c, str) and c.strip()]

    def __repr__(self) -> str:
        return f"<SocialPost {self.id} status={self.status}>"


class PublishEvent(Base):
    """Audit trail of per-platform publish attempts."""

    __tablename__ = "publish_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("social_posts.id", ondelete="SET NULL"), nullable=True
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    remote_post_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON_VARIANT, nullable=True)

    __table_args__ = (
        Index("ix_publish_events_post", "post_id", "platform"),
    )
