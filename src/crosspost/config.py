"""Configuration models for the publishing core."""

from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

# Load .env automatically on import (local dev)
load_dotenv()


class LinkedInConfig(BaseModel):
    """OAuth app credentials for LinkedIn."""

    client_id: str
    client_secret: str
    redirect_uri: str
    api_version: str = "202411"
    scopes: str = "openid profile email w_member_social"


class TwitterConfig(BaseModel):
    """OAuth 2.0 (PKCE) app credentials for Twitter/X."""

    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: str = "tweet.read tweet.write users.read media.write offline.access"


class InstagramConfig(BaseModel):
    """Facebook app credentials used for Instagram Business publishing."""

    app_id: str
    app_secret: str
    redirect_uri: str
    graph_version: str = "v24.0"
    scopes: str = (
        "instagram_basic,instagram_content_publish,instagram_manage_comments,"
        "pages_show_list,pages_read_engagement"
    )
    container_timeout_seconds: int = 300
    container_poll_seconds: float = 5.0


class ThreadsConfig(BaseModel):
    """Threads app credentials."""

    app_id: str
    app_secret: str
    redirect_uri: str
    scopes: str = "threads_basic,threads_content_publish,threads_manage_replies"
    container_timeout_seconds: int = 300
    container_poll_seconds: float = 5.0


class Settings(BaseModel):
    """Global settings for the publishing core."""

    linkedin: Optional[LinkedInConfig] = None
    twitter: Optional[TwitterConfig] = None
    instagram: Optional[InstagramConfig] = None
    threads: Optional[ThreadsConfig] = None

    base_url: str = "http://localhost:3000"
    http_timeout_seconds: float = 30.0
    comment_delay_seconds: float = 2.0
    retry_scope: Literal["failed_only", "all"] = "failed_only"

    def redirect_uri_for(self, platform: str) -> str:
        """Default OAuth callback URL for a platform."""
        return f"{self.base_url.rstrip('/')}/api/social/callback/{platform}"


def _env_optional(name: str) -> str | None:
    value = os.environ.get(name)
    if not value:
        return None
    return value


def load_settings() -> Settings:
    """Build Settings from environment variables (.env for local dev).

    A platform block is only populated when its client/app id is set, so a
    deployment can run with any subset of platforms configured.
    """
    base_url = os.getenv("BASE_URL", "http://localhost:3000")
    defaults = Settings(base_url=base_url)

    try:
        linkedin = None
        if _env_optional("LINKEDIN_CLIENT_ID"):
            linkedin = LinkedInConfig(
                client_id=os.environ["LINKEDIN_CLIENT_ID"],
                client_secret=os.getenv("LINKEDIN_CLIENT_SECRET", ""),
                redirect_uri=os.getenv("LINKEDIN_REDIRECT_URI") or defaults.redirect_uri_for("linkedin"),
                api_version=os.getenv("LINKEDIN_API_VERSION", "202411"),
            )

        twitter = None
        if _env_optional("TWITTER_CLIENT_ID"):
            twitter = TwitterConfig(
                client_id=os.environ["TWITTER_CLIENT_ID"],
                client_secret=os.getenv("TWITTER_CLIENT_SECRET", ""),
                redirect_uri=os.getenv("TWITTER_REDIRECT_URI") or defaults.redirect_uri_for("twitter"),
            )

        instagram = None
        if _env_optional("INSTAGRAM_APP_ID"):
            instagram = InstagramConfig(
                app_id=os.environ["INSTAGRAM_APP_ID"],
                app_secret=os.getenv("INSTAGRAM_APP_SECRET", ""),
                redirect_uri=os.getenv("INSTAGRAM_REDIRECT_URI") or defaults.redirect_uri_for("instagram"),
                graph_version=os.getenv("INSTAGRAM_GRAPH_VERSION", "v24.0"),
            )

        threads = None
        if _env_optional("THREADS_APP_ID"):
            threads = ThreadsConfig(
                app_id=os.environ["THREADS_APP_ID"],
                app_secret=os.getenv("THREADS_APP_SECRET", ""),
                redirect_uri=os.getenv("THREADS_REDIRECT_URI") or defaults.redirect_uri_for("threads"),
            )

        return Settings(
            linkedin=linkedin,
            twitter=twitter,
            instagram=instagram,
            threads=threads,
            base_url=base_url,
            http_timeout_seconds=_env_optional("HTTP_TIMEOUT_SECONDS") or 30.0,
            comment_delay_seconds=_env_optional("COMMENT_DELAY_SECONDS") or 2.0,
            retry_scope=os.getenv("RETRY_SCOPE", "failed_only"),
        )
    except ValidationError as e:
        raise RuntimeError(f"Invalid settings: {e}") from e
