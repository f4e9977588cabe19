"""LinkedIn client: member posts, comments and media via the REST API."""

from __future__ import annotations

import re
from typing import Any, Optional, Sequence
from urllib.parse import quote, urlencode

from loguru import logger

from crosspost.config import LinkedInConfig
from crosspost.errors import AuthError, CommentError, MediaResolutionError, PublishError
from crosspost.types import AccountIdentity, MediaAsset, Mention, Platform, render_mentions

from .base import (
    AuthorizationRequest,
    BaseClient,
    ConnectedAccount,
    MediaReference,
    PublishResult,
    TokenGrant,
    grant_from_json,
)

AUTHORIZE_URL = "https://www.linkedin.com/oauth/v2/authorization"
TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
ASSETS_URL = "https://api.linkedin.com/v2/assets?action=registerUpload"
POSTS_URL = "https://api.linkedin.com/rest/posts"
SOCIAL_ACTIONS_URL = "https://api.linkedin.com/v2/socialActions"

MAX_COMMENTARY = 3000
UPLOAD_MECHANISM = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"

# Reserved characters of LinkedIn's "little text" commentary format
_LITTLE_TEXT_RESERVED = re.compile(r"([\\()\[\]{}<>|~_*])")


def escape_commentary(text: str) -> str:
    return _LITTLE_TEXT_RESERVED.sub(r"\\\1", text)


def normalize_post_urn(post_id: str) -> str:
    """Turn a bare post id into the full URN LinkedIn expects as a comment target."""
    if post_id.startswith("urn:li:"):
        return post_id
    return f"urn:li:ugcPost:{post_id}"


def _asset_to_media_urn(asset_urn: str, is_video: bool) -> str:
    # urn:li:digitalmediaAsset:X -> urn:li:image:X / urn:li:video:X
    asset_id = asset_urn.rsplit(":", 1)[-1]
    kind = "video" if is_video else "image"
    return f"urn:li:{kind}:{asset_id}"


class LinkedInClient(BaseClient):
    """Client for publishing to a LinkedIn member feed."""

    platform = Platform.LINKEDIN
    tag = "LINKEDIN"

    def __init__(self, config: Optional[LinkedInConfig] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    @property
    def api_version(self) -> str:
        return self.config.api_version if self.config else "202411"

    def _rest_headers(self, access_token: str) -> dict:
        return {
            **self._bearer(access_token),
            "Content-Type": "application/json",
            "X-Restli-Protocol-Version": "2.0.0",
            "Linkedin-Version": self.api_version,
        }

    # --- OAuth -----------------------------------------------------------

    def authorization_request(self, state: str) -> AuthorizationRequest:
        config = self._require_config(self.config)
        params = {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "state": state,
            "scope": config.scopes,
        }
        return AuthorizationRequest(url=f"{AUTHORIZE_URL}?{urlencode(params)}", state=state)

    def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenGrant:
        config = self._require_config(self.config)
        response = self._request(
            "POST",
            TOKEN_URL,
            what="Exchange LinkedIn authorization code",
            error_cls=AuthError,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.redirect_uri,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
            },
        )
        data = self._json(response, what="LinkedIn token exchange", error_cls=AuthError)
        return grant_from_json(data, "LinkedIn token exchange", self.platform)

    def _userinfo(self, access_token: str, error_cls) -> dict:
        response = self._request(
            "GET",
            USERINFO_URL,
            what="Fetch LinkedIn profile",
            error_cls=error_cls,
            headers=self._bearer(access_token),
        )
        return self._json(response, what="LinkedIn profile", error_cls=error_cls)

    def resolve_account(self, grant: TokenGrant) -> ConnectedAccount:
        profile = self._userinfo(grant.access_token, AuthError)
        name = profile.get("name") or " ".join(
            p for p in (profile.get("given_name"), profile.get("family_name")) if p
        )
        return ConnectedAccount(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_in=grant.expires_in,
            identity=AccountIdentity(username=name or "", platform_account_id=profile.get("sub")),
            profile_image_url=profile.get("picture"),
        )

    def can_refresh(self, connection: Any) -> bool:
        return bool(connection.refresh_token)

    def refresh_token(self, connection: Any) -> TokenGrant:
        config = self._require_config(self.config)
        if not connection.refresh_token:
            raise AuthError("No LinkedIn refresh token available", platform=self.platform.value)
        response = self._request(
            "POST",
            TOKEN_URL,
            what="Refresh LinkedIn token",
            error_cls=AuthError,
            data={
                "grant_type": "refresh_token",
                "refresh_token": connection.refresh_token,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
            },
        )
        data = self._json(response, what="LinkedIn token refresh", error_cls=AuthError)
        return grant_from_json(data, "LinkedIn token refresh", self.platform)

    # --- Publishing ------------------------------------------------------

    def person_urn(self, access_token: str, connection: Any, error_cls=PublishError) -> str:
        identity: AccountIdentity = connection.identity or AccountIdentity()
        member_id = identity.platform_account_id
        if not member_id:
            member_id = self._userinfo(access_token, error_cls).get("sub")
        if not member_id:
            raise error_cls("Could not determine LinkedIn member id", platform=self.platform.value)
        return f"urn:li:person:{member_id}"

    def select_media(self, assets: Sequence[MediaAsset]) -> list[MediaAsset]:
        images = [a for a in assets if a.is_image]
        if len(images) > 1:
            return images
        return list(assets[:1])

    def upload_media(self, access_token: str, connection: Any, asset: MediaAsset) -> MediaReference:
        owner = self.person_urn(access_token, connection, MediaResolutionError)
        recipe = "feedshare-video" if asset.is_video else "feedshare-image"
        response = self._request(
            "POST",
            ASSETS_URL,
            what="Register LinkedIn upload",
            error_cls=MediaResolutionError,
            headers={**self._bearer(access_token), "Content-Type": "application/json"},
            json={
                "registerUploadRequest": {
                    "recipes": [f"urn:li:digitalmediaRecipe:{recipe}"],
                    "owner": owner,
                    "serviceRelationships": [
                        {"relationshipType": "OWNER", "identifier": "urn:li:userGeneratedContent"}
                    ],
                }
            },
        )
        value = self._json(response, what="LinkedIn upload registration", error_cls=MediaResolutionError).get("value") or {}
        try:
            upload_url = value["uploadMechanism"][UPLOAD_MECHANISM]["uploadUrl"]
            asset_urn = value["asset"]
        except (KeyError, TypeError) as e:
            raise MediaResolutionError(
                f"LinkedIn upload registration missing {e}", platform=self.platform.value
            ) from e

        body, content_type = self.download(asset)
        self._request(
            "PUT",
            upload_url,
            what="Upload LinkedIn media",
            error_cls=MediaResolutionError,
            headers={**self._bearer(access_token), "Content-Type": content_type},
            data=body,
        )
        media_urn = _asset_to_media_urn(asset_urn, asset.is_video)
        logger.info(f"[LINKEDIN] Uploaded {asset.type} as {media_urn}")
        return MediaReference(asset=asset, ref=media_urn)

    def build_post_payload(
        self, author: str, commentary: str, media: Sequence[MediaReference]
    ) -> dict:
        payload = {
            "author": author,
            "commentary": commentary,
            "visibility": "PUBLIC",
            "distribution": {
                "feedDistribution": "MAIN_FEED",
                "targetEntities": [],
                "thirdPartyDistributionChannels": [],
            },
            "lifecycleState": "PUBLISHED",
            "isReshareDisabledByAuthor": False,
        }
        if len(media) == 1:
            title = media[0].asset.filename or ""
            payload["content"] = {"media": {"id": media[0].ref, "title": title}}
        elif len(media) > 1:
            payload["content"] = {"multiImage": {"images": [{"id": m.ref} for m in media]}}
        return payload

    def publish(
        self,
        content: str,
        access_token: str,
        connection: Any,
        media: Sequence[MediaReference] = (),
        mentions: Sequence[Mention] = (),
    ) -> PublishResult:
        text = render_mentions(content, mentions)
        if len(text) > MAX_COMMENTARY:
            raise PublishError(
                f"Content exceeds {MAX_COMMENTARY} characters", platform=self.platform.value
            )
        commentary = escape_commentary(text)

        author = self.person_urn(access_token, connection)
        response = self._request(
            "POST",
            POSTS_URL,
            what="Create LinkedIn post",
            error_cls=PublishError,
            headers=self._rest_headers(access_token),
            json=self.build_post_payload(author, commentary, media),
        )

        post_id = response.headers.get("x-restli-id")
        if not post_id and response.content:
            try:
                post_id = (response.json() or {}).get("id")
            except ValueError:
                post_id = None
        if not post_id:
            raise PublishError("LinkedIn did not return a post id", platform=self.platform.value)

        urn = normalize_post_urn(post_id)
        logger.info(f"[LINKEDIN] Published {urn}")
        return PublishResult(post_id=urn, url=f"https://www.linkedin.com/feed/update/{urn}/")

    def comment(self, access_token: str, connection: Any, post_id: str, text: str) -> str:
        target = normalize_post_urn(post_id)
        actor = self.person_urn(access_token, connection, CommentError)
        response = self._request(
            "POST",
            f"{SOCIAL_ACTIONS_URL}/{quote(target, safe='')}/comments",
            what="Create LinkedIn comment",
            error_cls=CommentError,
            headers={**self._bearer(access_token), "Content-Type": "application/json"},
            json={"actor": actor, "object": target, "message": {"text": text}},
        )
        comment_id = response.headers.get("x-restli-id")
        if not comment_id and response.content:
            try:
                comment_id = (response.json() or {}).get("id")
            except ValueError:
                comment_id = None
        logger.info(f"[LINKEDIN] Commented on {target}")
        return comment_id or ""
