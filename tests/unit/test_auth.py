"""
Unit tests for TokenAuthenticator and TargetDirectory.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from termrelay.config import AuthenticationConfig, TargetConfig, TransportConfig
from termrelay.errors import TargetForbidden, TargetNotFound, TransportConnectionError
from termrelay.protocol.frames import TerminalSize
from termrelay.server.auth import TokenAuthenticator, User
from termrelay.server.targets import TargetDirectory, open_shell


@pytest.fixture
def auth_config() -> AuthenticationConfig:
    return AuthenticationConfig(
        tokens=[
            AuthenticationConfig.Token(token="alice-token", user_id=1, username="alice"),
            AuthenticationConfig.Token(
                token="admin-token", user_id=99, username="root", role="admin"
            ),
        ]
    )


@pytest.fixture
def auth(auth_config: AuthenticationConfig) -> TokenAuthenticator:
    return TokenAuthenticator(auth_config)


@pytest.fixture
def target() -> TargetConfig:
    return TargetConfig(
        id="web-1", host="10.0.0.5", username="deploy", password="secret", allowed_user_ids=[1]
    )


class TestTokenAuthenticator:
    def test_known_token(self, auth: TokenAuthenticator):
        user = auth.authenticate("alice-token")
        assert user == User(id=1, username="alice", role="user")
        assert user.is_admin is False

    def test_admin_token(self, auth: TokenAuthenticator):
        assert auth.authenticate("admin-token").is_admin

    @pytest.mark.parametrize("token", [None, "", "wrong", "alice-token "])
    def test_rejected(self, auth: TokenAuthenticator, token):
        assert auth.authenticate(token) is None

    def test_no_tokens_configured(self):
        assert TokenAuthenticator(AuthenticationConfig()).authenticate("x") is None

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc", "abc"),
            ("bearer  abc ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            (None, None),
        ],
    )
    def test_token_from_header(self, header, expected):
        assert TokenAuthenticator.token_from_header(header) == expected


class TestTargetDirectory:
    def test_allowed_user(self, target: TargetConfig):
        directory = TargetDirectory([target])
        assert directory.lookup("web-1", User(1, "alice")) is target
        assert "web-1" in directory

    def test_admin_always_allowed(self, target: TargetConfig):
        directory = TargetDirectory([target])
        assert directory.lookup("web-1", User(99, "root", "admin")) is target

    def test_not_found(self, target: TargetConfig):
        with pytest.raises(TargetNotFound):
            TargetDirectory([target]).lookup("db-1", User(1, "alice"))

    def test_forbidden(self, target: TargetConfig):
        with pytest.raises(TargetForbidden):
            TargetDirectory([target]).lookup("web-1", User(2, "bob"))


class TestOpenShell:
    @pytest.mark.asyncio
    async def test_opens_pty_shell(self, target: TargetConfig):
        connection = MagicMock()
        connection.create_process = AsyncMock(return_value=MagicMock())
        with patch(
            "termrelay.server.targets.asyncssh.connect", AsyncMock(return_value=connection)
        ) as mock_connect:
            handle = await open_shell(target, TerminalSize(100, 30), TransportConfig())

        mock_connect.assert_awaited_once()
        assert mock_connect.call_args.args == ("10.0.0.5",)
        kwargs = mock_connect.call_args.kwargs
        assert kwargs["username"] == "deploy"
        assert kwargs["password"] == "secret"
        assert kwargs["known_hosts"] is None
        connection.create_process.assert_awaited_once_with(
            term_type="xterm-256color", term_size=(100, 30), encoding=None
        )
        assert handle.connection is connection

    @pytest.mark.asyncio
    async def test_key_auth(self, tmp_path):
        target = TargetConfig(id="k", host="h", username="u", key_path=tmp_path / "id_ed25519")
        connection = MagicMock()
        connection.create_process = AsyncMock(return_value=MagicMock())
        with patch(
            "termrelay.server.targets.asyncssh.connect", AsyncMock(return_value=connection)
        ) as mock_connect:
            await open_shell(target, TerminalSize(80, 24), TransportConfig())
        kwargs = mock_connect.call_args.kwargs
        assert kwargs["client_keys"] == [str(tmp_path / "id_ed25519")]
        assert "password" not in kwargs

    @pytest.mark.asyncio
    async def test_connect_failure(self, target: TargetConfig):
        with patch(
            "termrelay.server.targets.asyncssh.connect",
            AsyncMock(side_effect=ConnectionRefusedError("refused")),
        ):
            with pytest.raises(TransportConnectionError):
                await open_shell(target, TerminalSize(80, 24), TransportConfig())

    @pytest.mark.asyncio
    async def test_shell_failure_closes_connection(self, target: TargetConfig):
        connection = MagicMock()
        connection.create_process = AsyncMock(
            side_effect=asyncssh.ChannelOpenError(1, "administratively prohibited")
        )
        with patch(
            "termrelay.server.targets.asyncssh.connect", AsyncMock(return_value=connection)
        ):
            with pytest.raises(TransportConnectionError):
                await open_shell(target, TerminalSize(80, 24), TransportConfig())
        connection.close.assert_called_once()
