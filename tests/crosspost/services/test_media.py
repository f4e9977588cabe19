from unittest.mock import MagicMock

import pytest
import requests

from connectors.base import MediaReference
from connectors.twitter_client import TwitterClient
from crosspost.errors import MediaResolutionError, PublishError
from crosspost.services.media import MediaResolver
from crosspost.types import MediaAsset, Platform


def _adapter(select=None):
    adapter = MagicMock()
    adapter.platform = Platform.TWITTER
    adapter.select_media.side_effect = select or (lambda assets: list(assets))
    adapter.upload_media.side_effect = lambda token, conn, asset: MediaReference(asset=asset, ref=f"id-{asset.filename}")
    return adapter


def test_no_assets_resolves_to_nothing():
    adapter = _adapter()
    assert MediaResolver().resolve(adapter, "tok", MagicMock(), None) == []
    adapter.upload_media.assert_not_called()


def test_selected_assets_are_uploaded_in_order():
    adapter = _adapter()
    refs = MediaResolver().resolve(
        adapter,
        "tok",
        MagicMock(),
        [
            {"type": "image", "url": "https://cdn/a.png", "filename": "a"},
            {"type": "image", "url": "https://cdn/b.png", "filename": "b"},
        ],
    )
    assert [r.ref for r in refs] == ["id-a", "id-b"]


def test_selection_rule_of_platform_is_applied():
    client = TwitterClient()
    adapter = _adapter(select=client.select_media)
    raw = [{"type": "image", "url": f"https://cdn/{i}.png", "filename": str(i)} for i in range(6)]

    refs = MediaResolver().resolve(adapter, "tok", MagicMock(), raw)

    assert len(refs) == 4


def test_invalid_asset_entry_fails_resolution():
    with pytest.raises(MediaResolutionError):
        MediaResolver().resolve(_adapter(), "tok", MagicMock(), [{"type": "gif"}])


@pytest.mark.parametrize("error", [PublishError("boom"), requests.ConnectionError("reset")])
def test_upload_errors_become_media_resolution_errors(error):
    adapter = _adapter()
    adapter.upload_media.side_effect = error

    with pytest.raises(MediaResolutionError) as excinfo:
        MediaResolver().resolve(adapter, "tok", MagicMock(), [{"type": "video", "url": "https://cdn/v.mp4"}])
    assert excinfo.value.platform == "twitter"


def test_parse_assets_builds_value_objects():
    assets = MediaResolver.parse_assets([{"type": "VIDEO", "url": "/v.mp4", "filename": "v.mp4"}])
    assert assets == [MediaAsset(type="video", url="/v.mp4", filename="v.mp4")]
