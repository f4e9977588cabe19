"""Builds one connector per platform from settings."""
from __future__ import annotations

from typing import Callable, Dict, Optional

import requests

from crosspost.config import Settings
from crosspost.types import Platform

from .base import PlatformAdapter
from .instagram_client import InstagramClient
from .linkedin_client import LinkedInClient
from .threads_client import ThreadsClient
from .twitter_client import TwitterClient


def build_adapters(
    settings: Settings,
    http: Optional[requests.Session] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Dict[Platform, PlatformAdapter]:
    """Instantiate every platform connector, sharing one HTTP session."""
    http = http or requests.Session()
    common = {
        "http": http,
        "timeout": settings.http_timeout_seconds,
        "base_url": settings.base_url,
    }
    if sleep is not None:
        common["sleep"] = sleep

    return {
        Platform.LINKEDIN: LinkedInClient(settings.linkedin, **common),
        Platform.TWITTER: TwitterClient(settings.twitter, **common),
        Platform.INSTAGRAM: InstagramClient(settings.instagram, **common),
        Platform.THREADS: ThreadsClient(settings.threads, **common),
    }
