"""Service for the post record store."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from crosspost.db.models import SocialPost
from crosspost.errors import AlreadyPublishedError, ConfigurationError, PostNotFoundError
from crosspost.types import MediaAsset, Mention, Platform, PostStatus, render_mentions

CHARACTER_LIMITS: Dict[Platform, int] = {
    Platform.LINKEDIN: 3000,
    Platform.TWITTER: 280,
    Platform.INSTAGRAM: 2200,
    Platform.THREADS: 500,
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PostService:
    """Service for creating, selecting and finalizing posts."""

    @staticmethod
    def validate_content(content: str, platforms: Sequence[Platform]) -> List[str]:
        """Return one message per platform whose character limit is exceeded."""
        errors = []
        for platform in platforms:
            limit = CHARACTER_LIMITS[platform]
            if len(content) > limit:
                errors.append(f"{platform.value}: Content exceeds {limit} characters")
        return errors

    @staticmethod
    def _parse_platforms(platforms: Optional[Sequence[str]]) -> List[Platform]:
        if not platforms:
            raise ConfigurationError("At least one target platform must be selected")
        parsed: List[Platform] = []
        for value in platforms:
            try:
                platform = value if isinstance(value, Platform) else Platform.parse(value)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
            if platform not in parsed:
                parsed.append(platform)
        return parsed

    @staticmethod
    def create_post(
        session: Session,
        *,
        content: str,
        platforms: Sequence[str],
        scheduled_for: datetime,
        media_assets: Optional[Sequence[Mapping[str, Any]]] = None,
        comments: Optional[Sequence[str]] = None,
        mentions: Optional[Sequence[Mapping[str, Any]]] = None,
        status: str = PostStatus.SCHEDULED.value,
        now: Optional[datetime] = None,
    ) -> SocialPost:
        """Validate and store a new post.

        Nothing is written unless the platform list is non-empty and the
        scheduled time lies in the future.
        """
        if not content or not content.strip():
            raise ConfigurationError("Post content is required")

        targets = PostService._parse_platforms(platforms)

        if scheduled_for is None:
            raise ConfigurationError("A scheduled time is required")
        now = as_utc(now) or datetime.now(timezone.utc)
        scheduled_for = as_utc(scheduled_for)
        if scheduled_for <= now:
            raise ConfigurationError("Scheduled time must be in the future")

        if status not in (PostStatus.DRAFT.value, PostStatus.SCHEDULED.value):
            raise ConfigurationError(f"New posts must be draft or scheduled, not {status}")

        assets = [MediaAsset.from_dict(a).to_dict() for a in (media_assets or [])]
        mention_list = [Mention.from_dict(m) for m in (mentions or [])]

        if mention_list and Platform.LINKEDIN in targets:
            content = render_mentions(content, mention_list)

        for warning in PostService.validate_content(content, targets):
            logger.warning(f"[POSTS] {warning}")

        post = SocialPost(
            content=content,
            platforms=[p.value for p in targets],
            scheduled_for=scheduled_for,
            media_assets=assets or None,
            comments=[c for c in (comments or []) if c and c.strip()] or None,
            mentions=[m.to_dict() for m in mention_list] or None,
            status=status,
        )
        session.add(post)
        session.commit()
        session.refresh(post)
        logger.info(f"[POSTS] Created post {post.id} for {post.platforms} at {scheduled_for.isoformat()}")
        return post

    @staticmethod
    def get_post(session: Session, post_id: str) -> SocialPost:
        post = session.get(SocialPost, post_id)
        if post is None:
            raise PostNotFoundError(f"Post {post_id} not found")
        return post

    @staticmethod
    def get_due_posts(
        session: Session, now: Optional[datetime] = None, limit: int = 10
    ) -> List[SocialPost]:
        """Scheduled posts whose time has come, oldest first."""
        now = as_utc(now) or datetime.now(timezone.utc)
        stmt = (
            select(SocialPost)
            .where(
                SocialPost.status == PostStatus.SCHEDULED.value,
                SocialPost.scheduled_for <= now,
            )
            .order_by(SocialPost.scheduled_for)
            .limit(limit)
        )
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def is_fully_published(post: SocialPost) -> bool:
        return post.status == PostStatus.PUBLISHED.value and not post.error_message

    @staticmethod
    def ensure_publishable(post: SocialPost) -> None:
        """Refuse to send a post that already went out to every platform."""
        if PostService.is_fully_published(post):
            raise AlreadyPublishedError(f"Post {post.id} has already been published")

    @staticmethod
    def record_publish_result(
        session: Session,
        post: SocialPost,
        *,
        status: PostStatus,
        published_on: Mapping[str, str],
        remote_post_ids: Mapping[str, str],
        errors: Sequence[str],
        published_at: Optional[datetime],
    ) -> SocialPost:
        """Write the aggregated outcome of a publish attempt."""
        post.status = status.value
        post.published_on = dict(published_on)
        post.remote_post_ids = dict(remote_post_ids) or None
        post.error_message = "; ".join(errors) if errors else None
        if published_at is not None:
            post.published_at = published_at
        session.commit()
        session.refresh(post)
        return post
