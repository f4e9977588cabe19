"""Error taxonomy for the publishing core."""

from __future__ import annotations

from typing import Optional


class PublishingError(Exception):
    """Base class for every error raised by the publishing core."""

    def __init__(
        self,
        msg: str,
        platform: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(msg)
        self.platform = platform
        self.status_code = status_code


class ConfigurationError(PublishingError):
    """Missing target platforms, connection, or app credentials."""


class AuthError(PublishingError):
    """Access token missing, expired without a refresh path, or refresh rejected."""


class PublishError(PublishingError):
    """The platform rejected the post. Carries the platform's own error text."""


class MediaResolutionError(PublishError):
    """A media asset could not be parsed, fetched, or uploaded."""


class CommentError(PublishingError):
    """A trailing comment failed after a successful publish."""


class AlreadyPublishedError(PublishingError):
    """The post already went out everywhere; refusing to send it again."""


class PostNotFoundError(PublishingError):
    pass


class StorageError(PublishingError):
    """The post or connection record could not be loaded or saved."""
