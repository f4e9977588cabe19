"""Job runner that publishes stored posts to their target platforms."""
from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests
from dotenv import load_dotenv
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# Load env immediately to ensure DATABASE_URL is set for DB base
load_dotenv()

from connectors.base import PlatformAdapter
from connectors.registry import build_adapters
from crosspost.config import Settings, load_settings
from crosspost.db.base import SessionLocal
from crosspost.db.models import SocialConnection
from crosspost.errors import ConfigurationError, PublishingError, StorageError
from crosspost.services.connections import ConnectionService
from crosspost.services.media import MediaResolver
from crosspost.services.posts import PostService
from crosspost.services.publish_events import PublishEventService
from crosspost.services.token_refresh import TokenRefreshService
from crosspost.types import Mention, Platform, PostStatus

SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"

# Per-platform failures are caught and recorded; anything else propagates
PLATFORM_ERRORS = (PublishingError, requests.RequestException)


@dataclass
class PlatformOutcome:
    platform: str
    status: str
    remote_post_id: Optional[str] = None
    published_at: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status in (SUCCESS, SKIPPED)


@dataclass
class PublishReport:
    """What a caller of "publish now" gets back."""

    post_id: str
    status: PostStatus
    outcomes: List[PlatformOutcome]

    @property
    def errors(self) -> List[str]:
        return [error for outcome in self.outcomes for error in outcome.errors]

    @property
    def published(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == SKIPPED)

    @property
    def message(self) -> str:
        if self.failed == 0:
            return f"Published to {self.published + self.skipped} platform(s)"
        if self.status == PostStatus.PUBLISHED:
            return f"Published to {self.published + self.skipped} platform(s), failed on {self.failed}"
        return f"Failed to publish to all {self.failed} platform(s)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "post_id": self.post_id,
            "status": self.status.value,
            "message": self.message,
            "published": self.published,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
            "results": {
                o.platform: {
                    "status": o.status,
                    "post_id": o.remote_post_id,
                    "errors": o.errors,
                }
                for o in self.outcomes
            },
        }


def aggregate_status(outcomes: Sequence[PlatformOutcome]) -> PostStatus:
    """Published if the content went out anywhere, failed otherwise."""
    if any(o.succeeded for o in outcomes):
        return PostStatus.PUBLISHED
    return PostStatus.FAILED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PublishingJob:
    """Publishes one post at a time, platform by platform, and records the outcome.

    Platform attempts are independent: a failure on one never rolls back or
    blocks another. Only storage failures escape as errors.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        session_factory: Optional[Callable[[], Session]] = None,
        adapters: Optional[Mapping[Platform, PlatformAdapter]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or load_settings()
        self.session_factory = session_factory or SessionLocal
        self.adapters = adapters if adapters is not None else build_adapters(self.settings)
        self.clock = clock or _utcnow
        self.sleep = sleep
        self.tokens = TokenRefreshService(self.adapters, clock=self.clock)
        self.media = MediaResolver()

    def publish_post(self, post_id: str) -> PublishReport:
        """Publish a post to every target platform it has not already reached."""
        session = self.session_factory()
        try:
            post = PostService.get_post(session, post_id)
            PostService.ensure_publishable(post)

            entries = post.platform_entries()
            if not entries:
                raise ConfigurationError(f"Post {post_id} has no target platforms")

            scoped = self.settings.retry_scope == "failed_only"
            published_on: Dict[str, str] = dict(post.published_on or {}) if scoped else {}
            remote_ids: Dict[str, str] = dict(post.remote_post_ids or {}) if scoped else {}
            already_done = set(published_on)

            # Commits during token refresh expire the post; read what the loop needs first
            content = post.content
            raw_media = post.media_assets
            comments = post.comment_list
            invalid_mentions: Optional[str] = None
            try:
                mentions = post.mention_list
            except ConfigurationError as e:
                mentions = []
                invalid_mentions = str(e)

            logger.info(f"[JOB] Publishing post {post_id} to {[name for name, _ in entries]}")
            outcomes: List[PlatformOutcome] = []
            for name, platform in entries:
                if platform is None:
                    outcomes.append(self._failed(session, post_id, name, f"{name}: Unknown platform"))
                    continue
                if platform.value in already_done:
                    logger.info(f"[JOB] {platform.value} already published for {post_id}, skipping")
                    PublishEventService.log_event(
                        session,
                        post_id=post_id,
                        platform=platform.value,
                        event_type=PublishEventService.EVENT_PUBLISH_SKIPPED,
                        remote_post_id=remote_ids.get(platform.value),
                    )
                    outcomes.append(
                        PlatformOutcome(platform.value, SKIPPED, remote_post_id=remote_ids.get(platform.value))
                    )
                    continue
                if invalid_mentions:
                    outcomes.append(
                        self._failed(session, post_id, platform.value, f"{platform.value}: {invalid_mentions}")
                    )
                    continue

                outcome = self._publish_to_platform(
                    session, post_id, platform, content, raw_media, comments, mentions
                )
                outcomes.append(outcome)
                if outcome.status == SUCCESS:
                    published_on[platform.value] = outcome.published_at.isoformat()
                    remote_ids[platform.value] = outcome.remote_post_id

            status = aggregate_status(outcomes)
            report = PublishReport(post_id=post_id, status=status, outcomes=outcomes)
            first_success = next((o.published_at for o in outcomes if o.status == SUCCESS), None)

            PostService.record_publish_result(
                session,
                post,
                status=status,
                published_on=published_on,
                remote_post_ids=remote_ids,
                errors=report.errors,
                published_at=first_success,
            )

            if report.errors:
                logger.warning(f"[JOB] Post {post_id} {status.value} with errors: {'; '.join(report.errors)}")
            else:
                logger.info(f"[JOB] Post {post_id} {status.value}")
            return report

        except SQLAlchemyError as e:
            session.rollback()
            logger.exception(f"[JOB] Storage failure while publishing post {post_id}")
            raise StorageError(f"Storage failure while publishing post {post_id}: {e}") from e
        finally:
            session.close()

    def _publish_to_platform(
        self,
        session: Session,
        post_id: str,
        platform: Platform,
        content: str,
        raw_media: Optional[List[Dict[str, Any]]],
        comments: List[str],
        mentions: List[Mention],
    ) -> PlatformOutcome:
        connection = ConnectionService.get_active(session, platform)
        if connection is None:
            return self._failed(session, post_id, platform.value, f"{platform.value}: No active connection")

        adapter = self.adapters[platform]
        try:
            access_token = self.tokens.ensure_valid_token(session, connection)
            media = self.media.resolve(adapter, access_token, connection, raw_media)
            result = adapter.publish(content, access_token, connection, media, mentions)
        except PLATFORM_ERRORS as e:
            return self._failed(session, post_id, platform.value, f"{platform.value}: {e}")

        published_at = self.clock()
        logger.info(f"[JOB] {platform.value} published {result.post_id}")
        PublishEventService.log_publish_succeeded(session, post_id, platform.value, result.post_id)

        outcome = PlatformOutcome(
            platform.value, SUCCESS, remote_post_id=result.post_id, published_at=published_at
        )
        outcome.errors.extend(
            self._post_comments(session, post_id, adapter, access_token, connection, result.post_id, comments)
        )
        return outcome

    def _failed(self, session: Session, post_id: str, platform: str, error: str) -> PlatformOutcome:
        logger.error(f"[JOB] {error}")
        # publish_events.platform is String(20)
        PublishEventService.log_publish_failed(session, post_id, platform[:20], error)
        return PlatformOutcome(platform, FAILED, errors=[error])

    def _post_comments(
        self,
        session: Session,
        post_id: str,
        adapter: PlatformAdapter,
        access_token: str,
        connection: SocialConnection,
        remote_post_id: str,
        comments: List[str],
    ) -> List[str]:
        """Post trailing comments in order. Failures are collected, never raised."""
        errors: List[str] = []
        platform = adapter.platform.value
        for index, text in enumerate(comments, start=1):
            if index > 1:
                self.sleep(self.settings.comment_delay_seconds)
            try:
                adapter.comment(access_token, connection, remote_post_id, text)
                logger.info(f"[JOB] {platform} comment {index}/{len(comments)} posted")
            except PLATFORM_ERRORS as e:
                error = f"{platform}: comment {index} failed: {e}"
                logger.error(f"[JOB] {error}")
                PublishEventService.log_comment_failed(
                    session, post_id, platform, remote_post_id, index, str(e)
                )
                errors.append(error)
        return errors

    def process_due_posts(self, limit: int = 10) -> Dict[str, int]:
        """Publish a batch of scheduled posts whose time has come."""
        session = self.session_factory()
        try:
            post_ids = [p.id for p in PostService.get_due_posts(session, now=self.clock(), limit=limit)]
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load due posts: {e}") from e
        finally:
            session.close()

        stats = {"processed": 0, "successful": 0, "failed": 0}
        if not post_ids:
            logger.info("[JOB] No due posts found.")
            return stats

        logger.info(f"[JOB] Found {len(post_ids)} due posts")
        for post_id in post_ids:
            stats["processed"] += 1
            try:
                report = self.publish_post(post_id)
            except PublishingError as e:
                logger.error(f"[JOB] Post {post_id} not published: {e}")
                stats["failed"] += 1
                continue
            except Exception:
                logger.exception(f"[JOB] Unexpected error publishing post {post_id}")
                stats["failed"] += 1
                continue
            if report.status == PostStatus.PUBLISHED:
                stats["successful"] += 1
            else:
                stats["failed"] += 1

        logger.info(f"[JOB] Batch complete: {stats}")
        return stats


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Social publishing job runner")
    parser.add_argument("--post-id", help="Publish a specific post now")
    parser.add_argument("--limit", type=int, default=10, help="Number of due posts to process")
    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stdout, level="INFO")

    job = PublishingJob()
    try:
        if args.post_id:
            report = job.publish_post(args.post_id)
            logger.info(f"[JOB] {report.message}")
            return 0 if report.status == PostStatus.PUBLISHED else 1
        stats = job.process_due_posts(limit=args.limit)
        return 0 if stats["failed"] == 0 else 1
    except PublishingError as e:
        logger.error(f"[JOB] {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
