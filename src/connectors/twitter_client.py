"""Twitter/X client: tweets, replies and chunked media upload (API v2)."""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Any, Optional, Sequence
from urllib.parse import urlencode

from loguru import logger

from crosspost.config import TwitterConfig
from crosspost.errors import AuthError, CommentError, MediaResolutionError, PublishError
from crosspost.types import AccountIdentity, MediaAsset, Mention, Platform

from .base import (
    AuthorizationRequest,
    BaseClient,
    ConnectedAccount,
    MediaReference,
    PublishResult,
    TokenGrant,
    grant_from_json,
)

AUTHORIZE_URL = "https://twitter.com/i/oauth2/authorize"
TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
ME_URL = "https://api.twitter.com/2/users/me"
TWEETS_URL = "https://api.twitter.com/2/tweets"
MEDIA_URL = "https://api.twitter.com/2/media/upload"

MAX_TWEET = 280
MAX_IMAGES = 4
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_VIDEO_BYTES = 512 * 1024 * 1024
CHUNK_SIZE = 5 * 1024 * 1024
MAX_STATUS_CHECKS = 60


def _pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(64)[:96]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _media_category(asset: MediaAsset, content_type: str) -> str:
    if asset.is_video:
        return "amplify_video"
    if content_type == "image/gif":
        return "tweet_gif"
    return "tweet_image"


class TwitterClient(BaseClient):
    """Client for posting to Twitter/X with an OAuth 2.0 user token."""

    platform = Platform.TWITTER
    tag = "TWITTER"

    def __init__(self, config: Optional[TwitterConfig] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    # --- OAuth -----------------------------------------------------------

    def authorization_request(self, state: str) -> AuthorizationRequest:
        config = self._require_config(self.config)
        verifier, challenge = _pkce_pair()
        params = {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": config.scopes,
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
        return AuthorizationRequest(
            url=f"{AUTHORIZE_URL}?{urlencode(params)}", state=state, code_verifier=verifier
        )

    def _token_request(self, what: str, data: dict) -> TokenGrant:
        config = self._require_config(self.config)
        response = self._request(
            "POST",
            TOKEN_URL,
            what=what,
            error_cls=AuthError,
            auth=(config.client_id, config.client_secret),
            data={**data, "client_id": config.client_id},
        )
        return grant_from_json(self._json(response, what=what, error_cls=AuthError), what, self.platform)

    def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenGrant:
        if not code_verifier:
            raise AuthError("Twitter authorization requires the PKCE code verifier", platform=self.platform.value)
        config = self._require_config(self.config)
        return self._token_request(
            "Exchange Twitter authorization code",
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.redirect_uri,
                "code_verifier": code_verifier,
            },
        )

    def resolve_account(self, grant: TokenGrant) -> ConnectedAccount:
        response = self._request(
            "GET",
            ME_URL,
            what="Fetch Twitter profile",
            error_cls=AuthError,
            headers=self._bearer(grant.access_token),
            params={"user.fields": "profile_image_url"},
        )
        user = self._json(response, what="Twitter profile", error_cls=AuthError).get("data") or {}
        return ConnectedAccount(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_in=grant.expires_in,
            identity=AccountIdentity(username=user.get("username", ""), platform_account_id=user.get("id")),
            profile_image_url=user.get("profile_image_url"),
        )

    def can_refresh(self, connection: Any) -> bool:
        return bool(connection.refresh_token)

    def refresh_token(self, connection: Any) -> TokenGrant:
        if not connection.refresh_token:
            raise AuthError("No Twitter refresh token available", platform=self.platform.value)
        return self._token_request(
            "Refresh Twitter token",
            {"grant_type": "refresh_token", "refresh_token": connection.refresh_token},
        )

    # --- Media -----------------------------------------------------------

    def select_media(self, assets: Sequence[MediaAsset]) -> list[MediaAsset]:
        # A tweet carries either one video or up to four images
        for asset in assets:
            if asset.is_video:
                return [asset]
        return [a for a in assets if a.is_image][:MAX_IMAGES]

    def upload_media(self, access_token: str, connection: Any, asset: MediaAsset) -> MediaReference:
        body, content_type = self.download(asset)
        limit = MAX_VIDEO_BYTES if asset.is_video else MAX_IMAGE_BYTES
        if len(body) > limit:
            raise MediaResolutionError(
                f"{asset.type} is {len(body)} bytes, over the {limit} byte limit",
                platform=self.platform.value,
            )

        headers = self._bearer(access_token)
        init = self._request(
            "POST",
            f"{MEDIA_URL}/initialize",
            what="Initialize Twitter media upload",
            error_cls=MediaResolutionError,
            headers=headers,
            json={
                "media_type": content_type,
                "media_category": _media_category(asset, content_type),
                "total_bytes": len(body),
            },
        )
        media_id = (self._json(init, what="Twitter media init", error_cls=MediaResolutionError).get("data") or {}).get("id")
        if not media_id:
            raise MediaResolutionError("Twitter media init returned no id", platform=self.platform.value)

        for index, start in enumerate(range(0, len(body), CHUNK_SIZE)):
            self._request(
                "POST",
                f"{MEDIA_URL}/{media_id}/append",
                what=f"Append Twitter media segment {index}",
                error_cls=MediaResolutionError,
                headers=headers,
                data={"segment_index": str(index)},
                files={"media": body[start:start + CHUNK_SIZE]},
            )

        final = self._request(
            "POST",
            f"{MEDIA_URL}/{media_id}/finalize",
            what="Finalize Twitter media upload",
            error_cls=MediaResolutionError,
            headers=headers,
        )
        processing = (self._json(final, what="Twitter media finalize", error_cls=MediaResolutionError).get("data") or {}).get("processing_info")
        if processing:
            self._wait_for_processing(access_token, media_id, processing)

        logger.info(f"[TWITTER] Uploaded {asset.type} as media {media_id}")
        return MediaReference(asset=asset, ref=str(media_id))

    def _wait_for_processing(self, access_token: str, media_id: str, processing: dict) -> None:
        for _ in range(MAX_STATUS_CHECKS):
            state = processing.get("state")
            if state == "succeeded":
                return
            if state == "failed":
                error = (processing.get("error") or {}).get("message", "unknown error")
                raise MediaResolutionError(f"Twitter media processing failed: {error}", platform=self.platform.value)

            self.sleep(processing.get("check_after_secs", 5))
            response = self._request(
                "GET",
                MEDIA_URL,
                what="Check Twitter media status",
                error_cls=MediaResolutionError,
                headers=self._bearer(access_token),
                params={"command": "STATUS", "media_id": media_id},
            )
            data = self._json(response, what="Twitter media status", error_cls=MediaResolutionError).get("data") or {}
            processing = data.get("processing_info") or {"state": "succeeded"}

        raise MediaResolutionError("Twitter media processing timed out", platform=self.platform.value)

    # --- Publishing ------------------------------------------------------

    def _create_tweet(self, access_token: str, payload: dict, what: str, error_cls) -> str:
        response = self._request(
            "POST",
            TWEETS_URL,
            what=what,
            error_cls=error_cls,
            headers={**self._bearer(access_token), "Content-Type": "application/json"},
            json=payload,
        )
        tweet_id = (self._json(response, what=what, error_cls=error_cls).get("data") or {}).get("id")
        if not tweet_id:
            raise error_cls(f"{what}: no tweet id returned", platform=self.platform.value)
        return str(tweet_id)

    def publish(
        self,
        content: str,
        access_token: str,
        connection: Any,
        media: Sequence[MediaReference] = (),
        mentions: Sequence[Mention] = (),
    ) -> PublishResult:
        if len(content) > MAX_TWEET:
            raise PublishError(f"Tweet exceeds {MAX_TWEET} characters", platform=self.platform.value)

        payload: dict = {"text": content}
        if media:
            payload["media"] = {"media_ids": [m.ref for m in media]}

        tweet_id = self._create_tweet(access_token, payload, "Create tweet", PublishError)
        logger.info(f"[TWITTER] Published tweet {tweet_id}")
        username = (connection.identity or AccountIdentity()).username or "i"
        return PublishResult(post_id=tweet_id, url=f"https://x.com/{username}/status/{tweet_id}")

    def comment(self, access_token: str, connection: Any, post_id: str, text: str) -> str:
        if len(text) > MAX_TWEET:
            raise CommentError(f"Reply exceeds {MAX_TWEET} characters", platform=self.platform.value)
        reply_id = self._create_tweet(
            access_token,
            {"text": text, "reply": {"in_reply_to_tweet_id": post_id}},
            "Create reply tweet",
            CommentError,
        )
        logger.info(f"[TWITTER] Replied to {post_id} with {reply_id}")
        return reply_id
