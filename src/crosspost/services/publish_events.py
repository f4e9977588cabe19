"""Service for logging per-platform publish events."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from crosspost.db.models import PublishEvent


class PublishEventService:
    """Service for logging events to the publish_events table.

    Events are added to the caller's session and flushed; the caller owns the
    commit so an attempt's events land together with the post's final state.
    """

    EVENT_PUBLISH_SUCCEEDED = "PUBLISH_SUCCEEDED"
    EVENT_PUBLISH_FAILED = "PUBLISH_FAILED"
    EVENT_PUBLISH_SKIPPED = "PUBLISH_SKIPPED"
    EVENT_COMMENT_FAILED = "COMMENT_FAILED"
    EVENT_TOKEN_REFRESHED = "TOKEN_REFRESHED"

    @staticmethod
    def log_event(
        session: Session,
        *,
        platform: str,
        event_type: str,
        post_id: Optional[str] = None,
        remote_post_id: Optional[str] = None,
        message: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> PublishEvent:
        """Add an event row to the session."""
        event = PublishEvent(
            post_id=post_id,
            platform=platform,
            event_type=event_type,
            remote_post_id=remote_post_id,
            message=message[:2000] if message else None,
            payload=payload,
        )
        session.add(event)
        session.flush()
        return event

    @staticmethod
    def log_publish_succeeded(
        session: Session, post_id: str, platform: str, remote_post_id: str
    ) -> PublishEvent:
        return PublishEventService.log_event(
            session,
            post_id=post_id,
            platform=platform,
            event_type=PublishEventService.EVENT_PUBLISH_SUCCEEDED,
            remote_post_id=remote_post_id,
        )

    @staticmethod
    def log_publish_failed(
        session: Session, post_id: str, platform: str, error: str
    ) -> PublishEvent:
        return PublishEventService.log_event(
            session,
            post_id=post_id,
            platform=platform,
            event_type=PublishEventService.EVENT_PUBLISH_FAILED,
            message=error,
        )

    @staticmethod
    def log_comment_failed(
        session: Session,
        post_id: str,
        platform: str,
        remote_post_id: str,
        comment_index: int,
        error: str,
    ) -> PublishEvent:
        return PublishEventService.log_event(
            session,
            post_id=post_id,
            platform=platform,
            event_type=PublishEventService.EVENT_COMMENT_FAILED,
            remote_post_id=remote_post_id,
            message=error,
            payload={"comment_index": comment_index},
        )

    @staticmethod
    def list_events(session: Session, post_id: str) -> List[PublishEvent]:
        stmt = (
            select(PublishEvent)
            .where(PublishEvent.post_id == post_id)
            .order_by(PublishEvent.id)
        )
        return list(session.execute(stmt).scalars().all())
