"""Threads client: text/image/video threads and replies via the Threads Graph API."""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Optional, Sequence
from urllib.parse import urlencode

from loguru import logger

from crosspost.config import ThreadsConfig
from crosspost.errors import AuthError, CommentError, PublishError
from crosspost.types import AccountIdentity, Mention, Platform

from .base import (
    AuthorizationRequest,
    BaseClient,
    ConnectedAccount,
    MediaReference,
    PublishResult,
    TokenGrant,
    grant_from_json,
)

AUTHORIZE_URL = "https://threads.net/oauth/authorize"
GRAPH_URL = "https://graph.threads.net"
API_URL = f"{GRAPH_URL}/v1.0"

MAX_TEXT = 500


class ThreadsClient(BaseClient):
    """Client for publishing to Threads.

    Every publish and reply is addressed to the Threads account id held in the
    connection identity.
    """

    platform = Platform.THREADS
    tag = "THREADS"
    expiry_margin = timedelta(days=7)

    def __init__(self, config: Optional[ThreadsConfig] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    @property
    def poll_seconds(self) -> float:
        return self.config.container_poll_seconds if self.config else 5.0

    @property
    def container_timeout(self) -> int:
        return self.config.container_timeout_seconds if self.config else 300

    # --- OAuth -----------------------------------------------------------

    def authorization_request(self, state: str) -> AuthorizationRequest:
        config = self._require_config(self.config)
        params = {
            "client_id": config.app_id,
            "redirect_uri": config.redirect_uri,
            "scope": config.scopes,
            "response_type": "code",
            "state": state,
        }
        return AuthorizationRequest(url=f"{AUTHORIZE_URL}?{urlencode(params)}", state=state)

    def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenGrant:
        config = self._require_config(self.config)
        response = self._request(
            "POST",
            f"{GRAPH_URL}/oauth/access_token",
            what="Exchange Threads authorization code",
            error_cls=AuthError,
            data={
                "client_id": config.app_id,
                "client_secret": config.app_secret,
                "grant_type": "authorization_code",
                "redirect_uri": config.redirect_uri,
                "code": code,
            },
        )
        short = grant_from_json(
            self._json(response, what="Threads token exchange", error_cls=AuthError),
            "Threads token exchange",
            self.platform,
        )
        try:
            response = self._request(
                "GET",
                f"{GRAPH_URL}/access_token",
                what="Exchange for long-lived Threads token",
                error_cls=AuthError,
                params={
                    "grant_type": "th_exchange_token",
                    "client_secret": config.app_secret,
                    "access_token": short.access_token,
                },
            )
            data = self._json(response, what="Threads long-lived token", error_cls=AuthError)
            return grant_from_json(data, "Threads long-lived token", self.platform)
        except AuthError as e:
            logger.warning(f"[THREADS] Long-lived exchange failed, keeping short-lived token: {e}")
            return short

    def resolve_account(self, grant: TokenGrant) -> ConnectedAccount:
        response = self._request(
            "GET",
            f"{API_URL}/me",
            what="Fetch Threads profile",
            error_cls=AuthError,
            params={
                "fields": "id,username,threads_profile_picture_url",
                "access_token": grant.access_token,
            },
        )
        profile = self._json(response, what="Threads profile", error_cls=AuthError)
        return ConnectedAccount(
            access_token=grant.access_token,
            expires_in=grant.expires_in,
            identity=AccountIdentity(
                username=profile.get("username", ""),
                platform_account_id=str(profile["id"]) if profile.get("id") else None,
            ),
            profile_image_url=profile.get("threads_profile_picture_url"),
        )

    def can_refresh(self, connection: Any) -> bool:
        return bool(connection.access_token)

    def refresh_token(self, connection: Any) -> TokenGrant:
        # Long-lived Threads tokens refresh themselves; no app secret involved
        response = self._request(
            "GET",
            f"{GRAPH_URL}/refresh_access_token",
            what="Refresh Threads token",
            error_cls=AuthError,
            params={"grant_type": "th_refresh_token", "access_token": connection.access_token},
        )
        data = self._json(response, what="Threads token refresh", error_cls=AuthError)
        return grant_from_json(data, "Threads token refresh", self.platform)

    # --- Publishing ------------------------------------------------------

    def _account_id(self, connection: Any, error_cls) -> str:
        identity: AccountIdentity = connection.identity or AccountIdentity()
        account_id = identity.platform_account_id
        if not account_id:
            raise error_cls(
                "Threads account id is missing from the connection; reconnect Threads",
                platform=self.platform.value,
            )
        if not account_id.isdigit():
            raise error_cls(
                f"Threads account id must be numeric, got {account_id!r}",
                platform=self.platform.value,
            )
        return account_id

    def _create_container(self, access_token: str, account_id: str, params: dict, what: str, error_cls) -> str:
        response = self._request(
            "POST",
            f"{API_URL}/{account_id}/media",
            what=what,
            error_cls=error_cls,
            headers=self._bearer(access_token),
            params=params,
        )
        container_id = self._json(response, what=what, error_cls=error_cls).get("id")
        if not container_id:
            raise error_cls(f"{what}: no container id returned", platform=self.platform.value)
        return str(container_id)

    def _wait_for_container(self, access_token: str, container_id: str) -> None:
        deadline = time.monotonic() + self.container_timeout
        while True:
            response = self._request(
                "GET",
                f"{API_URL}/{container_id}",
                what="Check Threads container status",
                error_cls=PublishError,
                headers=self._bearer(access_token),
                params={"fields": "status,error_message"},
            )
            data = self._json(response, what="Threads container status", error_cls=PublishError)
            status = data.get("status")
            if status in ("FINISHED", "PUBLISHED"):
                return
            if status in ("ERROR", "EXPIRED"):
                raise PublishError(
                    f"Threads media container {status}: {data.get('error_message', '')}".rstrip(": "),
                    platform=self.platform.value,
                )
            if time.monotonic() >= deadline:
                raise PublishError(
                    f"Threads media container not ready after {self.container_timeout}s",
                    platform=self.platform.value,
                )
            self.sleep(self.poll_seconds)

    def _publish_container(self, access_token: str, account_id: str, container_id: str, what: str, error_cls) -> str:
        response = self._request(
            "POST",
            f"{API_URL}/{account_id}/threads_publish",
            what=what,
            error_cls=error_cls,
            headers=self._bearer(access_token),
            params={"creation_id": container_id},
        )
        thread_id = self._json(response, what=what, error_cls=error_cls).get("id")
        if not thread_id:
            raise error_cls(f"{what}: no thread id returned", platform=self.platform.value)
        return str(thread_id)

    def publish(
        self,
        content: str,
        access_token: str,
        connection: Any,
        media: Sequence[MediaReference] = (),
        mentions: Sequence[Mention] = (),
    ) -> PublishResult:
        account_id = self._account_id(connection, PublishError)
        params = {"text": content[:MAX_TEXT]}
        if not media:
            params["media_type"] = "TEXT"
        elif media[0].asset.is_video:
            params.update({"media_type": "VIDEO", "video_url": media[0].ref})
        else:
            params.update({"media_type": "IMAGE", "image_url": media[0].ref})

        container_id = self._create_container(
            access_token, account_id, params, "Create Threads container", PublishError
        )
        if media and media[0].asset.is_video:
            self._wait_for_container(access_token, container_id)

        thread_id = self._publish_container(
            access_token, account_id, container_id, "Publish Threads container", PublishError
        )
        logger.info(f"[THREADS] Published thread {thread_id}")
        return PublishResult(post_id=thread_id)

    def comment(self, access_token: str, connection: Any, post_id: str, text: str) -> str:
        account_id = self._account_id(connection, CommentError)
        if len(text) > MAX_TEXT:
            raise CommentError(f"Reply exceeds {MAX_TEXT} characters", platform=self.platform.value)
        container_id = self._create_container(
            access_token,
            account_id,
            {"media_type": "TEXT", "text": text, "reply_to_id": post_id},
            "Create Threads reply container",
            CommentError,
        )
        reply_id = self._publish_container(
            access_token, account_id, container_id, "Publish Threads reply", CommentError
        )
        logger.info(f"[THREADS] Replied to {post_id} with {reply_id}")
        return reply_id
