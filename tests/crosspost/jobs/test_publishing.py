from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests
from sqlalchemy.exc import OperationalError

from connectors.base import MediaReference, PublishResult, TokenGrant
from crosspost.config import Settings
from crosspost.db.models import SocialPost
from crosspost.errors import (
    AlreadyPublishedError,
    AuthError,
    CommentError,
    ConfigurationError,
    MediaResolutionError,
    PostNotFoundError,
    PublishError,
    StorageError,
)
from crosspost.jobs.publishing import PublishingJob, SKIPPED, SUCCESS, main
from crosspost.services.connections import ConnectionService
from crosspost.services.publish_events import PublishEventService
from crosspost.types import AccountIdentity, Platform, PostStatus

NOW = datetime(2026, 6, 15, 8, 30, tzinfo=timezone.utc)


class FakeAdapter:
    """Records every call the orchestrator makes."""

    def __init__(self, platform, margin=timedelta(minutes=5)):
        self.platform = platform
        self.expiry_margin = margin
        self.published = []
        self.comments = []
        self.uploads = []
        self.publish_error = None
        self.upload_error = None
        self.comment_errors = {}
        self.refresh_grant = None
        self.refresh_error = None

    def select_media(self, assets):
        return list(assets)

    def upload_media(self, access_token, connection, asset):
        self.uploads.append((access_token, asset))
        if self.upload_error:
            raise self.upload_error
        return MediaReference(asset=asset, ref=f"{self.platform.value}:{asset.filename}")

    def can_refresh(self, connection):
        return bool(connection.refresh_token)

    def refresh_token(self, connection):
        if self.refresh_error:
            raise self.refresh_error
        return self.refresh_grant

    def publish(self, content, access_token, connection, media=(), mentions=()):
        self.published.append({"content": content, "token": access_token, "media": list(media)})
        if self.publish_error:
            raise self.publish_error
        return PublishResult(post_id=f"{self.platform.value}-remote-1")

    def comment(self, access_token, connection, post_id, text):
        self.comments.append((post_id, text))
        error = self.comment_errors.get(len(self.comments))
        if error:
            raise error
        return f"comment-{len(self.comments)}"


@pytest.fixture
def adapters():
    return {platform: FakeAdapter(platform) for platform in Platform}


@pytest.fixture
def sleep():
    return MagicMock()


def _job(session_factory, adapters, sleep, **settings):
    return PublishingJob(
        Settings(**settings),
        session_factory=session_factory,
        adapters=adapters,
        sleep=sleep,
        clock=lambda: NOW,
    )


def _connect(session_factory, platform, **kwargs):
    session = session_factory()
    try:
        kwargs.setdefault("access_token", f"{platform.value}-token")
        ConnectionService.upsert(session, platform=platform, **kwargs)
    finally:
        session.close()


def _post(session_factory, platforms, **fields):
    session = session_factory()
    try:
        post = SocialPost(
            content=fields.pop("content", "Shipping v2 today"),
            platforms=[getattr(p, "value", p) for p in platforms],
            scheduled_for=fields.pop("scheduled_for", NOW - timedelta(minutes=1)),
            status=fields.pop("status", "scheduled"),
            **fields,
        )
        session.add(post)
        session.commit()
        return post.id
    finally:
        session.close()


def _load(session_factory, post_id):
    session = session_factory()
    post = session.get(SocialPost, post_id)
    session.expunge(post)
    session.close()
    return post


def test_missing_connection_fails_only_that_platform(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    post_id = _post(session_factory, [Platform.LINKEDIN, Platform.TWITTER])

    report = _job(session_factory, adapters, sleep).publish_post(post_id)

    assert report.status == PostStatus.PUBLISHED
    assert report.published == 1 and report.failed == 1
    assert report.errors == ["linkedin: No active connection"]
    assert adapters[Platform.LINKEDIN].published == []

    post = _load(session_factory, post_id)
    assert post.status == "published"
    assert post.error_message == "linkedin: No active connection"
    assert post.published_on == {"twitter": NOW.isoformat()}
    assert post.remote_post_ids == {"twitter": "twitter-remote-1"}
    assert post.published_at.replace(tzinfo=timezone.utc) == NOW


def test_expired_token_is_refreshed_before_publishing(session_factory, adapters, sleep):
    _connect(
        session_factory,
        Platform.LINKEDIN,
        access_token="stale",
        refresh_token="refresh-1",
        expires_at=NOW - timedelta(minutes=10),
    )
    adapters[Platform.LINKEDIN].refresh_grant = TokenGrant(access_token="fresh", expires_in=3600)
    post_id = _post(session_factory, [Platform.LINKEDIN])

    report = _job(session_factory, adapters, sleep).publish_post(post_id)

    assert report.status == PostStatus.PUBLISHED
    assert adapters[Platform.LINKEDIN].published[0]["token"] == "fresh"

    session = session_factory()
    connection = ConnectionService.get_active(session, Platform.LINKEDIN)
    assert connection.access_token == "fresh"
    assert connection.expires_at.replace(tzinfo=timezone.utc) == NOW + timedelta(hours=1)
    session.close()


def test_all_platforms_failing_marks_post_failed(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    _connect(session_factory, Platform.THREADS, identity=AccountIdentity("w", "123"))
    adapters[Platform.TWITTER].publish_error = PublishError("Create tweet failed (403): duplicate content")
    adapters[Platform.THREADS].publish_error = PublishError("Create Threads container failed (500): oops")
    post_id = _post(session_factory, [Platform.TWITTER, Platform.THREADS])

    report = _job(session_factory, adapters, sleep).publish_post(post_id)

    assert report.status == PostStatus.FAILED
    post = _load(session_factory, post_id)
    assert post.status == "failed"
    assert post.error_message.split("; ") == [
        "twitter: Create tweet failed (403): duplicate content",
        "threads: Create Threads container failed (500): oops",
    ]
    assert post.published_on == {}
    assert post.published_at is None


def test_comment_failure_does_not_stop_queue_or_downgrade_publish(session_factory, adapters, sleep):
    _connect(session_factory, Platform.LINKEDIN)
    adapters[Platform.LINKEDIN].comment_errors = {1: CommentError("Create LinkedIn comment failed (429): slow down")}
    post_id = _post(session_factory, [Platform.LINKEDIN], comments=["first", "second"])

    report = _job(session_factory, adapters, sleep, comment_delay_seconds=2.0).publish_post(post_id)

    outcome = report.outcomes[0]
    assert outcome.status == SUCCESS
    assert adapters[Platform.LINKEDIN].comments == [
        ("linkedin-remote-1", "first"),
        ("linkedin-remote-1", "second"),
    ]
    assert report.errors == ["linkedin: comment 1 failed: Create LinkedIn comment failed (429): slow down"]
    sleep.assert_called_once_with(2.0)

    post = _load(session_factory, post_id)
    assert post.status == "published"
    assert post.error_message == report.errors[0]
    assert "linkedin" in post.published_on


def test_fully_published_post_is_rejected_without_outbound_calls(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    post_id = _post(session_factory, [Platform.TWITTER])
    job = _job(session_factory, adapters, sleep)

    job.publish_post(post_id)
    with pytest.raises(AlreadyPublishedError):
        job.publish_post(post_id)

    assert len(adapters[Platform.TWITTER].published) == 1


def test_retry_only_reattempts_previously_failed_platforms(session_factory, adapters, sleep):
    _connect(session_factory, Platform.LINKEDIN)
    _connect(session_factory, Platform.TWITTER)
    adapters[Platform.TWITTER].publish_error = requests.Timeout("read timed out")
    post_id = _post(session_factory, [Platform.LINKEDIN, Platform.TWITTER])
    job = _job(session_factory, adapters, sleep)

    first = job.publish_post(post_id)
    assert first.status == PostStatus.PUBLISHED
    assert first.errors == ["twitter: read timed out"]

    adapters[Platform.TWITTER].publish_error = None
    second = job.publish_post(post_id)

    assert [o.status for o in second.outcomes] == [SKIPPED, SUCCESS]
    assert len(adapters[Platform.LINKEDIN].published) == 1
    assert len(adapters[Platform.TWITTER].published) == 2

    post = _load(session_factory, post_id)
    assert post.status == "published"
    assert post.error_message is None
    assert set(post.published_on) == {"linkedin", "twitter"}


def test_retry_scope_all_reattempts_every_platform(session_factory, adapters, sleep):
    _connect(session_factory, Platform.LINKEDIN)
    post_id = _post(
        session_factory,
        [Platform.LINKEDIN, Platform.TWITTER],
        status="published",
        error_message="twitter: No active connection",
        published_on={"linkedin": (NOW - timedelta(days=1)).isoformat()},
    )

    report = _job(session_factory, adapters, sleep, retry_scope="all").publish_post(post_id)

    assert len(adapters[Platform.LINKEDIN].published) == 1
    assert report.errors == ["twitter: No active connection"]
    assert _load(session_factory, post_id).published_on == {"linkedin": NOW.isoformat()}


def test_auth_and_media_failures_are_isolated_per_platform(session_factory, adapters, sleep):
    _connect(session_factory, Platform.LINKEDIN, refresh_token="r", expires_at=NOW - timedelta(hours=1))
    _connect(session_factory, Platform.TWITTER)
    _connect(session_factory, Platform.INSTAGRAM, identity=AccountIdentity("b", "1", "2"))
    adapters[Platform.LINKEDIN].refresh_error = AuthError("Refresh LinkedIn token failed (401): revoked")
    adapters[Platform.TWITTER].upload_error = MediaResolutionError("image is 9000000 bytes, over the 5242880 byte limit")
    post_id = _post(
        session_factory,
        [Platform.LINKEDIN, Platform.TWITTER, Platform.INSTAGRAM],
        media_assets=[{"type": "image", "url": "/uploads/pic.png", "filename": "pic.png"}],
    )

    report = _job(session_factory, adapters, sleep).publish_post(post_id)

    assert report.status == PostStatus.PUBLISHED
    assert report.errors == [
        "linkedin: Refresh LinkedIn token failed (401): revoked",
        "twitter: image is 9000000 bytes, over the 5242880 byte limit",
    ]
    assert adapters[Platform.LINKEDIN].published == []
    assert adapters[Platform.TWITTER].published == []
    assert adapters[Platform.INSTAGRAM].published[0]["media"][0].ref == "instagram:pic.png"


def test_events_record_each_attempt(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    post_id = _post(session_factory, [Platform.TWITTER, Platform.THREADS])

    _job(session_factory, adapters, sleep).publish_post(post_id)

    session = session_factory()
    events = PublishEventService.list_events(session, post_id)
    assert [(e.platform, e.event_type) for e in events] == [
        ("twitter", PublishEventService.EVENT_PUBLISH_SUCCEEDED),
        ("threads", PublishEventService.EVENT_PUBLISH_FAILED),
    ]
    session.close()


def test_post_without_platforms_is_a_configuration_error(session_factory, adapters, sleep):
    post_id = _post(session_factory, [])
    with pytest.raises(ConfigurationError):
        _job(session_factory, adapters, sleep).publish_post(post_id)


def test_unknown_post_raises(session_factory, adapters, sleep):
    with pytest.raises(PostNotFoundError):
        _job(session_factory, adapters, sleep).publish_post("missing")


def test_storage_failure_is_surfaced(adapters, sleep):
    session = MagicMock()
    session.get.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    job = _job(lambda: session, adapters, sleep)

    with pytest.raises(StorageError, match="database is locked"):
        job.publish_post("p1")
    session.rollback.assert_called_once()
    session.close.assert_called_once()


def test_process_due_posts_reports_stats(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    ok = _post(session_factory, [Platform.TWITTER])
    bad = _post(session_factory, [Platform.THREADS])
    _post(session_factory, [Platform.TWITTER], scheduled_for=NOW + timedelta(days=1))

    stats = _job(session_factory, adapters, sleep).process_due_posts(limit=10)

    assert stats == {"processed": 2, "successful": 1, "failed": 1}
    assert _load(session_factory, ok).status == "published"
    assert _load(session_factory, bad).status == "failed"


def test_report_to_dict(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    post_id = _post(session_factory, [Platform.TWITTER, Platform.LINKEDIN])

    result = _job(session_factory, adapters, sleep).publish_post(post_id).to_dict()

    assert result["status"] == "published"
    assert result["published"] == 1
    assert result["failed"] == 1
    assert result["errors"] == ["linkedin: No active connection"]
    assert result["results"]["twitter"]["post_id"] == "twitter-remote-1"
    assert result["message"] == "Published to 1 platform(s), failed on 1"


def test_unknown_stored_platform_fails_only_that_entry(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    post_id = _post(session_factory, [Platform.TWITTER, "facebook"])

    report = _job(session_factory, adapters, sleep).publish_post(post_id)

    assert report.status == PostStatus.PUBLISHED
    assert report.errors == ["facebook: Unknown platform"]
    assert report.to_dict()["results"]["facebook"]["status"] == "failed"
    assert len(adapters[Platform.TWITTER].published) == 1

    post = _load(session_factory, post_id)
    assert post.status == "published"
    assert post.error_message == "facebook: Unknown platform"
    assert post.published_on == {"twitter": NOW.isoformat()}


def test_malformed_stored_mentions_fail_the_post_without_raising(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    post_id = _post(session_factory, [Platform.TWITTER], mentions=["@bob"])

    report = _job(session_factory, adapters, sleep).publish_post(post_id)

    assert report.status == PostStatus.FAILED
    assert report.errors == ["twitter: Invalid mention entry: '@bob'"]
    assert adapters[Platform.TWITTER].published == []
    assert _load(session_factory, post_id).status == "failed"


def test_sweep_continues_past_a_post_that_crashes(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    _connect(session_factory, Platform.THREADS)
    adapters[Platform.THREADS].publish_error = RuntimeError("unexpected payload")
    broken = _post(session_factory, [Platform.THREADS], scheduled_for=NOW - timedelta(minutes=10))
    good = _post(session_factory, [Platform.TWITTER])

    stats = _job(session_factory, adapters, sleep).process_due_posts(limit=10)

    assert stats == {"processed": 2, "successful": 1, "failed": 1}
    assert _load(session_factory, broken).status == "scheduled"
    assert _load(session_factory, good).status == "published"
    assert len(adapters[Platform.TWITTER].published) == 1


def test_sweep_records_malformed_post_and_publishes_the_rest(session_factory, adapters, sleep):
    _connect(session_factory, Platform.TWITTER)
    bad = _post(session_factory, [Platform.TWITTER], mentions=["@bob"], scheduled_for=NOW - timedelta(minutes=10))
    good = _post(session_factory, [Platform.TWITTER])

    stats = _job(session_factory, adapters, sleep).process_due_posts(limit=10)

    assert stats == {"processed": 2, "successful": 1, "failed": 1}
    assert _load(session_factory, bad).status == "failed"
    assert _load(session_factory, good).status == "published"


class TestMain:
    def _run(self, argv, job):
        with patch("crosspost.jobs.publishing.PublishingJob", return_value=job):
            return main(argv)

    def test_single_post_exit_codes(self):
        job = MagicMock()
        job.publish_post.return_value = MagicMock(status=PostStatus.PUBLISHED, message="Published to 1 platform(s)")
        assert self._run(["--post-id", "p1"], job) == 0
        job.publish_post.assert_called_once_with("p1")

        job.publish_post.return_value = MagicMock(status=PostStatus.FAILED, message="Failed")
        assert self._run(["--post-id", "p1"], job) == 1

    def test_sweep_exit_codes(self):
        job = MagicMock()
        job.process_due_posts.return_value = {"processed": 2, "successful": 2, "failed": 0}
        assert self._run(["--limit", "5"], job) == 0
        job.process_due_posts.assert_called_once_with(limit=5)

        job.process_due_posts.return_value = {"processed": 2, "successful": 1, "failed": 1}
        assert self._run([], job) == 1

    def test_publishing_error_exits_with_two(self):
        job = MagicMock()
        job.publish_post.side_effect = PostNotFoundError("Post missing not found")
        assert self._run(["--post-id", "missing"], job) == 2
