"""Turns a post's media list into platform-specific attachment references."""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence

import requests
from loguru import logger

from connectors.base import MediaReference, PlatformAdapter
from crosspost.errors import MediaResolutionError, PublishingError
from crosspost.types import MediaAsset


class MediaResolver:
    """Resolves media once per platform per publish attempt.

    Upload targets differ between platforms, so nothing is cached across them.
    Any failure is raised as MediaResolutionError for the current platform.
    """

    @staticmethod
    def parse_assets(raw: Iterable[Mapping[str, Any]] | None) -> List[MediaAsset]:
        return [MediaAsset.from_dict(entry) for entry in (raw or [])]

    def resolve(
        self,
        adapter: PlatformAdapter,
        access_token: str,
        connection: Any,
        raw_assets: Sequence[Mapping[str, Any]] | None,
    ) -> List[MediaReference]:
        assets = self.parse_assets(raw_assets)
        if not assets:
            return []

        selected = adapter.select_media(assets)
        if len(selected) < len(assets):
            logger.info(
                f"[MEDIA] {adapter.platform.value} attaches {len(selected)} of {len(assets)} assets"
            )

        references: List[MediaReference] = []
        for asset in selected:
            try:
                references.append(adapter.upload_media(access_token, connection, asset))
            except MediaResolutionError:
                raise
            except (PublishingError, requests.RequestException) as e:
                raise MediaResolutionError(
                    f"Media {asset.filename or asset.url} failed: {e}",
                    platform=adapter.platform.value,
                ) from e
        return references
