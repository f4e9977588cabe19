"""OAuth connect flow: authorization URLs, code exchange and connection upsert."""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from loguru import logger
from sqlalchemy.orm import Session

from connectors.base import AuthorizationRequest, PlatformAdapter
from crosspost.db.models import SocialConnection
from crosspost.services.connections import ConnectionService
from crosspost.types import Platform


class OAuthService:
    """Connects and disconnects platform accounts."""

    def __init__(self, adapters: Mapping[Platform, PlatformAdapter]):
        self.adapters = adapters

    def begin(self, platform: Platform, state: Optional[str] = None) -> AuthorizationRequest:
        """Build the platform's consent URL.

        For Twitter the returned ``code_verifier`` must be kept by the caller
        and handed back to :meth:`complete`.
        """
        state = state or secrets.token_urlsafe(24)
        return self.adapters[platform].authorization_request(state)

    def complete(
        self,
        session: Session,
        platform: Platform,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> SocialConnection:
        """Exchange the callback code and store (or overwrite) the connection."""
        adapter = self.adapters[platform]
        grant = adapter.exchange_code(code, code_verifier)
        account = adapter.resolve_account(grant)

        expires_at = None
        if account.expires_in:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=account.expires_in)

        connection = ConnectionService.upsert(
            session,
            platform=platform,
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            expires_at=expires_at,
            identity=account.identity,
            profile_image_url=account.profile_image_url,
        )
        logger.info(f"[OAUTH] Connected {platform.value} as {account.identity.username or '(unnamed)'}")
        return connection

    @staticmethod
    def disconnect(session: Session, platform: Platform) -> bool:
        return ConnectionService.deactivate(session, platform)
