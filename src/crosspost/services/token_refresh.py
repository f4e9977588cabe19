"""Keeps platform access tokens valid before they are used."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

import requests
from loguru import logger
from sqlalchemy.orm import Session

from crosspost.db.models import SocialConnection
from crosspost.errors import AuthError, PublishingError
from crosspost.services.connections import ConnectionService
from crosspost.services.posts import as_utc
from crosspost.services.publish_events import PublishEventService
from crosspost.types import Platform


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRefreshService:
    """Platform-aware token validation and refresh.

    A token with no expiry is assumed valid until the platform rejects it. A
    token inside its platform's safety margin is exchanged through the
    connector's refresh path and the new pair is written back to the
    connection store before it is returned.
    """

    def __init__(
        self,
        adapters: Mapping[Platform, object],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.adapters = adapters
        self.clock = clock or _utcnow

    def ensure_valid_token(self, session: Session, connection: SocialConnection) -> str:
        platform = Platform(connection.platform)
        if not connection.access_token:
            raise AuthError(f"No access token stored for {platform.value}", platform=platform.value)

        expires_at = as_utc(connection.expires_at)
        if expires_at is None:
            return connection.access_token

        adapter = self.adapters[platform]
        now = self.clock()
        if expires_at - adapter.expiry_margin > now:
            return connection.access_token

        if not adapter.can_refresh(connection):
            if expires_at > now:
                logger.warning(
                    f"[TOKENS] {platform.value} token expires at {expires_at.isoformat()} "
                    "and cannot be refreshed; using it as-is"
                )
                return connection.access_token
            raise AuthError(
                f"{platform.value} token expired and no refresh path is available; reconnect the account",
                platform=platform.value,
            )

        logger.info(f"[TOKENS] Refreshing {platform.value} token (expires {expires_at.isoformat()})")
        try:
            grant = adapter.refresh_token(connection)
        except AuthError:
            raise
        except (PublishingError, requests.RequestException) as e:
            raise AuthError(f"Token refresh failed: {e}", platform=platform.value) from e

        new_expiry = now + timedelta(seconds=grant.expires_in) if grant.expires_in else None
        PublishEventService.log_event(
            session,
            platform=platform.value,
            event_type=PublishEventService.EVENT_TOKEN_REFRESHED,
            payload={"expires_at": new_expiry.isoformat() if new_expiry else None},
        )
        ConnectionService.update_tokens(
            session,
            platform,
            access_token=grant.access_token,
            expires_at=new_expiry,
            refresh_token=grant.refresh_token,
        )
        logger.info(f"[TOKENS] {platform.value} token refreshed")
        return grant.access_token
