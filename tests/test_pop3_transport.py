"""Tests for Pop3TransportClient with poplib mocked out."""

from __future__ import annotations

import poplib
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from mail_access.core.converter import MailConverter
from mail_access.core.exceptions import ConfigurationError, TransportError
from mail_access.pipeline.receiver import Pop3MailReceiver
from mail_access.transport.pop3 import POP3_SSL_PORT, Pop3TransportClient

RAW_LINES = [
    b"From: alice@example.com",
    b"To: bob@example.com",
    b"Subject: Hi",
    b"Date: Mon, 15 Jan 2024 10:30:00 +0000",
    b"Content-Type: text/plain; charset=us-ascii",
    b"",
    b"Hello over POP3",
]


@pytest.fixture
def pop3_ssl() -> Iterator[MagicMock]:
    """Mocked poplib.POP3_SSL class with two messages on the server."""
    with patch("mail_access.transport.pop3.poplib.POP3_SSL") as session_cls:
        session = session_cls.return_value
        session.uidl.return_value = (b"+OK", [b"1 uid-a", b"2 uid-b"], 20)
        session.retr.return_value = (b"+OK", RAW_LINES, 120)
        yield session_cls


@pytest.fixture
def transport(pop3_ssl: MagicMock) -> Pop3TransportClient:
    """Connected POP3 transport."""
    transport = Pop3TransportClient("pop.example.com", "user", "secret")
    transport.connect()
    return transport


class TestConfiguration:
    """Folder and port handling."""

    def test_only_inbox(self) -> None:
        with pytest.raises(ConfigurationError, match="inbox"):
            Pop3TransportClient("pop.example.com", "user", "secret", folder="Archive")

    def test_inbox_case_insensitive(self) -> None:
        transport = Pop3TransportClient("pop.example.com", "user", "secret", folder="INBOX")
        assert transport.folder_name == "INBOX"

    def test_default_ssl_port(self, pop3_ssl: MagicMock) -> None:
        Pop3TransportClient("pop.example.com", "user", "secret").connect()
        pop3_ssl.assert_called_once_with("pop.example.com", POP3_SSL_PORT)

    def test_plain_connection(self) -> None:
        with patch("mail_access.transport.pop3.poplib.POP3") as pop3_cls:
            transport = Pop3TransportClient(
                "pop.example.com", "user", "secret", use_ssl=False, port=1110
            )
            transport.connect()
        pop3_cls.assert_called_once_with("pop.example.com", 1110)


class TestSession:
    """Login, logout and errors."""

    def test_login(self, pop3_ssl: MagicMock, transport: Pop3TransportClient) -> None:
        session = pop3_ssl.return_value
        session.user.assert_called_once_with("user")
        session.pass_.assert_called_once_with("secret")
        assert transport.is_connected

    def test_debug_level(self, pop3_ssl: MagicMock) -> None:
        Pop3TransportClient("pop.example.com", "user", "secret", debug=True).connect()
        pop3_ssl.return_value.set_debuglevel.assert_called_once_with(1)

    def test_login_failure(self, pop3_ssl: MagicMock) -> None:
        pop3_ssl.return_value.pass_.side_effect = poplib.error_proto(b"-ERR auth failed")
        transport = Pop3TransportClient("pop.example.com", "user", "secret")

        with pytest.raises(TransportError, match="login failed"):
            transport.connect()
        pop3_ssl.return_value.quit.assert_called_once()
        assert not transport.is_connected

    def test_unreachable_server(self, pop3_ssl: MagicMock) -> None:
        pop3_ssl.side_effect = OSError("connection refused")
        with pytest.raises(TransportError, match="connection refused"):
            Pop3TransportClient("pop.example.com", "user", "secret").connect()

    def test_close_quits(self, pop3_ssl: MagicMock, transport: Pop3TransportClient) -> None:
        transport.close()
        pop3_ssl.return_value.quit.assert_called_once()
        assert not transport.is_connected

    def test_close_when_not_connected(self, pop3_ssl: MagicMock) -> None:
        Pop3TransportClient("pop.example.com", "user", "secret").close()
        pop3_ssl.return_value.quit.assert_not_called()

    def test_quit_failure(self, pop3_ssl: MagicMock, transport: Pop3TransportClient) -> None:
        pop3_ssl.return_value.quit.side_effect = poplib.error_proto(b"-ERR")
        with pytest.raises(TransportError):
            transport.close()
        assert not transport.is_connected


class TestMessages:
    """UIDL handles and RETR."""

    def test_handles_are_uidl_strings(self, transport: Pop3TransportClient) -> None:
        assert transport.list_messages() == ["uid-a", "uid-b"]

    def test_retr_by_message_number(
        self, pop3_ssl: MagicMock, transport: Pop3TransportClient
    ) -> None:
        transport.list_messages()
        transport.get_envelope("uid-b")
        transport.get_content("uid-b")
        pop3_ssl.return_value.retr.assert_called_once_with(2)

    def test_unknown_handle(self, transport: Pop3TransportClient) -> None:
        transport.list_messages()
        with pytest.raises(TransportError, match="Unknown message"):
            transport.get_envelope("uid-z")

    def test_no_flags(self, transport: Pop3TransportClient) -> None:
        transport.list_messages()
        assert transport.get_flags("uid-a") == frozenset()

    def test_converts_to_unread_mail(self, transport: Pop3TransportClient) -> None:
        transport.list_messages()
        mail = MailConverter().convert(transport, "uid-a")
        assert mail.id == "inbox/1705314600000-Hi"
        assert mail.read is False
        assert mail.charset == "us-ascii"
        assert mail.body.strip() == "Hello over POP3"


class TestWithReceiver:
    """Pop3MailReceiver opening a session per fetch."""

    def test_session_per_fetch(self, pop3_ssl: MagicMock) -> None:
        receiver = Pop3MailReceiver(Pop3TransportClient("pop.example.com", "user", "secret"))

        assert receiver.fetch() == 2
        assert receiver.fetch() == 0

        assert pop3_ssl.call_count == 2
        assert pop3_ssl.return_value.quit.call_count == 2
        assert pop3_ssl.return_value.retr.call_count == 2
        assert len(receiver.get_unread_messages()) == 2
