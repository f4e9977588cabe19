import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from requests.structures import CaseInsensitiveDict

from crosspost.types import AccountIdentity


@pytest.fixture
def make_response():
    def _make(status=200, json_data=None, headers=None, content=None, text=None):
        response = MagicMock()
        response.status_code = status
        response.ok = status < 400
        if json_data is None:
            response.json.side_effect = ValueError("No JSON")
        else:
            response.json.return_value = json_data
        response.headers = CaseInsensitiveDict(headers or {})
        if content is None:
            content = json.dumps(json_data).encode() if json_data is not None else b""
        response.content = content
        response.text = text if text is not None else content.decode("utf-8", "replace")
        return response

    return _make


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def make_connection():
    def _make(username="", account_id=None, parent_id=None, access_token="token", refresh_token=None):
        return SimpleNamespace(
            identity=AccountIdentity(username, account_id, parent_id),
            access_token=access_token,
            refresh_token=refresh_token,
        )

    return _make
