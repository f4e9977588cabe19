"""Instagram client: Business Account publishing through the Facebook Graph API."""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Optional, Sequence
from urllib.parse import urlencode

from loguru import logger

from crosspost.config import InstagramConfig
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

MAX_CAPTION = 2200
MAX_COMMENT = 2200
READY_STATES = ("FINISHED", "PUBLISHED")
FAILED_STATES = ("ERROR", "EXPIRED")


class InstagramClient(BaseClient):
    """Client for publishing to an Instagram Business Account.

    The stored access token is the Facebook Page token found during OAuth, and
    the identity carries the Instagram account id plus the owning Page id.
    """

    platform = Platform.INSTAGRAM
    tag = "INSTAGRAM"
    expiry_margin = timedelta(days=7)

    def __init__(self, config: Optional[InstagramConfig] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    @property
    def graph_url(self) -> str:
        version = self.config.graph_version if self.config else "v24.0"
        return f"https://graph.facebook.com/{version}"

    @property
    def poll_seconds(self) -> float:
        return self.config.container_poll_seconds if self.config else 5.0

    @property
    def container_timeout(self) -> int:
        return self.config.container_timeout_seconds if self.config else 300

    # --- OAuth -----------------------------------------------------------

    def authorization_request(self, state: str) -> AuthorizationRequest:
        config = self._require_config(self.config)
        version = config.graph_version
        params = {
            "client_id": config.app_id,
            "redirect_uri": config.redirect_uri,
            "state": state,
            "scope": config.scopes,
            "response_type": "code",
        }
        return AuthorizationRequest(
            url=f"https://www.facebook.com/{version}/dialog/oauth?{urlencode(params)}", state=state
        )

    def _long_lived(self, token: str, what: str) -> TokenGrant:
        config = self._require_config(self.config)
        response = self._request(
            "GET",
            f"{self.graph_url}/oauth/access_token",
            what=what,
            error_cls=AuthError,
            params={
                "grant_type": "fb_exchange_token",
                "client_id": config.app_id,
                "client_secret": config.app_secret,
                "fb_exchange_token": token,
            },
        )
        return grant_from_json(self._json(response, what=what, error_cls=AuthError), what, self.platform)

    def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenGrant:
        config = self._require_config(self.config)
        response = self._request(
            "GET",
            f"{self.graph_url}/oauth/access_token",
            what="Exchange Facebook authorization code",
            error_cls=AuthError,
            params={
                "client_id": config.app_id,
                "redirect_uri": config.redirect_uri,
                "client_secret": config.app_secret,
                "code": code,
            },
        )
        data = self._json(response, what="Facebook token exchange", error_cls=AuthError)
        short = grant_from_json(data, "Facebook token exchange", self.platform)
        try:
            return self._long_lived(short.access_token, "Exchange for long-lived Facebook token")
        except AuthError as e:
            logger.warning(f"[INSTAGRAM] Long-lived exchange failed, keeping short-lived token: {e}")
            return short

    def resolve_account(self, grant: TokenGrant) -> ConnectedAccount:
        """Walk the user's Pages to the first one with a linked Business Account."""
        response = self._request(
            "GET",
            f"{self.graph_url}/me/accounts",
            what="List Facebook Pages",
            error_cls=AuthError,
            params={
                "fields": "id,name,access_token,instagram_business_account{id,username,profile_picture_url}",
                "access_token": grant.access_token,
            },
        )
        pages = self._json(response, what="Facebook Pages", error_cls=AuthError).get("data") or []
        for page in pages:
            account = page.get("instagram_business_account")
            if not account or not page.get("access_token"):
                continue
            logger.info(f"[INSTAGRAM] Using page {page.get('name')} -> @{account.get('username')}")
            return ConnectedAccount(
                access_token=page["access_token"],
                expires_in=grant.expires_in,
                identity=AccountIdentity(
                    username=account.get("username", ""),
                    platform_account_id=account["id"],
                    parent_account_id=page["id"],
                ),
                profile_image_url=account.get("profile_picture_url"),
            )
        raise AuthError(
            "No Facebook Page with a linked Instagram Business Account was found",
            platform=self.platform.value,
        )

    def can_refresh(self, connection: Any) -> bool:
        return self.config is not None and bool(connection.access_token)

    def refresh_token(self, connection: Any) -> TokenGrant:
        return self._long_lived(connection.access_token, "Refresh Instagram token")

    # --- Publishing ------------------------------------------------------

    def _account_id(self, connection: Any, error_cls) -> str:
        identity: AccountIdentity = connection.identity or AccountIdentity()
        if not identity.platform_account_id:
            raise error_cls(
                "Instagram Business Account id is missing from the connection; reconnect Instagram",
                platform=self.platform.value,
            )
        return identity.platform_account_id

    def _wait_for_container(self, access_token: str, container_id: str) -> None:
        deadline = time.monotonic() + self.container_timeout
        while True:
            response = self._request(
                "GET",
                f"{self.graph_url}/{container_id}",
                what="Check Instagram container status",
                error_cls=PublishError,
                headers=self._bearer(access_token),
                params={"fields": "status_code"},
            )
            status = self._json(response, what="Instagram container status", error_cls=PublishError).get("status_code")
            if status in READY_STATES:
                return
            if status in FAILED_STATES:
                raise PublishError(f"Instagram media container {status}", platform=self.platform.value)
            if time.monotonic() >= deadline:
                raise PublishError(
                    f"Instagram media container not ready after {self.container_timeout}s (last status {status})",
                    platform=self.platform.value,
                )
            self.sleep(self.poll_seconds)

    def publish(
        self,
        content: str,
        access_token: str,
        connection: Any,
        media: Sequence[MediaReference] = (),
        mentions: Sequence[Mention] = (),
    ) -> PublishResult:
        if not media:
            raise PublishError(
                "Instagram requires at least one image or video per post", platform=self.platform.value
            )
        account_id = self._account_id(connection, PublishError)
        item = media[0]
        body = {"caption": content[:MAX_CAPTION]}
        if item.asset.is_video:
            body.update({"media_type": "REELS", "video_url": item.ref})
        else:
            body["image_url"] = item.ref

        headers = {**self._bearer(access_token), "Content-Type": "application/json"}
        response = self._request(
            "POST",
            f"{self.graph_url}/{account_id}/media",
            what="Create Instagram media container",
            error_cls=PublishError,
            headers=headers,
            json=body,
        )
        container_id = self._json(response, what="Instagram container", error_cls=PublishError).get("id")
        if not container_id:
            raise PublishError("Instagram did not return a container id", platform=self.platform.value)

        self._wait_for_container(access_token, container_id)

        response = self._request(
            "POST",
            f"{self.graph_url}/{account_id}/media_publish",
            what="Publish Instagram media",
            error_cls=PublishError,
            headers=headers,
            json={"creation_id": container_id},
        )
        media_id = self._json(response, what="Instagram publish", error_cls=PublishError).get("id")
        if not media_id:
            raise PublishError("Instagram did not return a media id", platform=self.platform.value)
        logger.info(f"[INSTAGRAM] Published media {media_id}")
        return PublishResult(post_id=str(media_id))

    def comment(self, access_token: str, connection: Any, post_id: str, text: str) -> str:
        if len(text) > MAX_COMMENT:
            raise CommentError(f"Comment exceeds {MAX_COMMENT} characters", platform=self.platform.value)
        response = self._request(
            "POST",
            f"{self.graph_url}/{post_id}/comments",
            what="Create Instagram comment",
            error_cls=CommentError,
            headers=self._bearer(access_token),
            params={"message": text},
        )
        comment_id = self._json(response, what="Instagram comment", error_cls=CommentError).get("id", "")
        logger.info(f"[INSTAGRAM] Commented on {post_id}")
        return str(comment_id)
