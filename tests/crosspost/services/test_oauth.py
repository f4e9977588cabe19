from unittest.mock import MagicMock

from connectors.base import AuthorizationRequest, ConnectedAccount, TokenGrant
from crosspost.services.connections import ConnectionService
from crosspost.services.oauth import OAuthService
from crosspost.types import AccountIdentity, Platform


def _adapter():
    adapter = MagicMock()
    adapter.exchange_code.return_value = TokenGrant(access_token="user-token", expires_in=5184000)
    adapter.resolve_account.return_value = ConnectedAccount(
        access_token="page-token",
        expires_in=5184000,
        identity=AccountIdentity("brand", "1784", "9921"),
    )
    return adapter


def test_complete_stores_page_token_and_identity(db_session):
    adapter = _adapter()
    service = OAuthService({Platform.INSTAGRAM: adapter})

    connection = service.complete(db_session, Platform.INSTAGRAM, "code-123")

    adapter.exchange_code.assert_called_once_with("code-123", None)
    assert connection.access_token == "page-token"
    assert connection.identity.parent_account_id == "9921"
    assert connection.expires_at is not None


def test_reconnect_overwrites_previous_connection(db_session):
    adapter = _adapter()
    service = OAuthService({Platform.INSTAGRAM: adapter})
    service.complete(db_session, Platform.INSTAGRAM, "code-1")

    adapter.resolve_account.return_value = ConnectedAccount(
        access_token="page-token-2", identity=AccountIdentity("brand2", "1785", "9922")
    )
    service.complete(db_session, Platform.INSTAGRAM, "code-2")

    connections = ConnectionService.list_connections(db_session)
    assert len(connections) == 1
    assert connections[0].access_token == "page-token-2"
    assert connections[0].expires_at is None


def test_begin_generates_state_when_not_given():
    adapter = MagicMock()
    adapter.authorization_request.side_effect = lambda state: AuthorizationRequest(url="https://x", state=state)

    request = OAuthService({Platform.LINKEDIN: adapter}).begin(Platform.LINKEDIN)

    assert len(request.state) > 16


def test_disconnect_deactivates(db_session):
    ConnectionService.upsert(db_session, platform=Platform.THREADS, access_token="t")
    assert OAuthService.disconnect(db_session, Platform.THREADS) is True
    assert ConnectionService.get_active(db_session, Platform.THREADS) is None
