"""Shared contract and HTTP plumbing for platform connectors."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional, Protocol, Sequence, Type
from urllib.parse import urljoin

import requests
from loguru import logger

from crosspost.errors import AuthError, MediaResolutionError, PublishingError
from crosspost.types import AccountIdentity, MediaAsset, Mention, Platform


@dataclass
class PublishResult:
    post_id: str                    # remote id, normalized for use as a comment target
    url: Optional[str] = None


@dataclass
class MediaReference:
    asset: MediaAsset
    ref: str                        # uploaded media id / asset URN / public URL


@dataclass
class TokenGrant:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None  # seconds


@dataclass
class AuthorizationRequest:
    url: str
    state: str
    code_verifier: Optional[str] = None


@dataclass
class ConnectedAccount:
    """Result of resolving who an OAuth grant publishes as."""

    access_token: str               # token to store (Instagram: the page token)
    identity: AccountIdentity
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    profile_image_url: Optional[str] = None
    extra: dict = field(default_factory=dict)


class PlatformAdapter(Protocol):
    platform: Platform
    expiry_margin: timedelta

    def publish(
        self,
        content: str,
        access_token: str,
        connection: Any,
        media: Sequence[MediaReference] = (),
        mentions: Sequence[Mention] = (),
    ) -> PublishResult:
        """Create a post and return its remote identifier."""
        ...

    def comment(self, access_token: str, connection: Any, post_id: str, text: str) -> str:
        """Reply to a previously published post. Returns the comment id."""
        ...

    def select_media(self, assets: Sequence[MediaAsset]) -> list[MediaAsset]:
        """Pick the subset of assets this platform can attach to one post."""
        ...

    def upload_media(self, access_token: str, connection: Any, asset: MediaAsset) -> MediaReference:
        ...

    def can_refresh(self, connection: Any) -> bool:
        ...

    def refresh_token(self, connection: Any) -> TokenGrant:
        ...

    def authorization_request(self, state: str) -> AuthorizationRequest:
        ...

    def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> TokenGrant:
        ...

    def resolve_account(self, grant: TokenGrant) -> ConnectedAccount:
        ...


def resolve_media_url(url: str, base_url: str) -> str:
    """Make a stored media URL absolute so the platform can fetch it."""
    if url.startswith(("http://", "https://")):
        return url
    return urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))


def grant_from_json(data: dict, what: str, platform: Platform) -> TokenGrant:
    token = data.get("access_token")
    if not token:
        raise AuthError(f"{what}: no access_token in response", platform=platform.value)
    expires_in = data.get("expires_in")
    return TokenGrant(
        access_token=token,
        refresh_token=data.get("refresh_token"),
        expires_in=int(expires_in) if expires_in else None,
    )


class BaseClient:
    """HTTP helpers shared by the platform clients.

    Every request carries its own timeout; a non-2xx response is raised as
    ``error_cls`` with the platform's response body kept verbatim.
    """

    platform: Platform
    tag: str = "CLIENT"
    expiry_margin: timedelta = timedelta(minutes=5)

    def __init__(
        self,
        *,
        http: Optional[requests.Session] = None,
        timeout: float = 30.0,
        base_url: str = "http://localhost:3000",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.http = http or requests.Session()
        self.timeout = timeout
        self.base_url = base_url
        self.sleep = sleep

    def _request(
        self,
        method: str,
        url: str,
        *,
        what: str,
        error_cls: Type[PublishingError],
        **kwargs: Any,
    ) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.http.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise error_cls(f"{what} failed: {e}", platform=self.platform.value) from e

        if not response.ok:
            body = (response.text or "").strip()
            logger.error(f"[{self.tag}] {what} failed ({response.status_code}): {body[:500]}")
            raise error_cls(
                f"{what} failed ({response.status_code}): {body}",
                platform=self.platform.value,
                status_code=response.status_code,
            )
        return response

    def _json(self, response: requests.Response, *, what: str, error_cls: Type[PublishingError]) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise error_cls(f"{what}: invalid JSON response", platform=self.platform.value) from e
        if not isinstance(data, dict):
            raise error_cls(f"{what}: unexpected response {data!r}", platform=self.platform.value)
        return data

    @staticmethod
    def _bearer(access_token: str) -> dict:
        return {"Authorization": f"Bearer {access_token}"}

    def absolute_url(self, asset: MediaAsset) -> str:
        return resolve_media_url(asset.url, self.base_url)

    def download(self, asset: MediaAsset) -> tuple[bytes, str]:
        """Fetch the asset bytes and content type for a binary upload."""
        url = self.absolute_url(asset)
        response = self._request(
            "GET", url, what=f"Download media {url}", error_cls=MediaResolutionError
        )
        default_type = "video/mp4" if asset.is_video else "image/jpeg"
        content_type = response.headers.get("content-type") or default_type
        return response.content, content_type.split(";")[0].strip()

    def select_media(self, assets: Sequence[MediaAsset]) -> list[MediaAsset]:
        """Default rule: the first image, otherwise the first video."""
        for asset in assets:
            if asset.is_image:
                return [asset]
        for asset in assets:
            if asset.is_video:
                return [asset]
        return []

    def upload_media(self, access_token: str, connection: Any, asset: MediaAsset) -> MediaReference:
        """Default: platforms that pull media by URL just need it to be absolute."""
        return MediaReference(asset=asset, ref=self.absolute_url(asset))

    def _require_config(self, config: Any):
        if config is None:
            raise AuthError(
                f"{self.platform.value} OAuth credentials are not configured",
                platform=self.platform.value,
            )
        return config
