import smtplib
from email.message import EmailMessage as PyEmailMessage
from unittest.mock import MagicMock, patch

import pytest

from mailadmin.config import SMTPConfig
from mailadmin.errors import AuthError, TransportError, TransportTimeout, TransportUnavailable
from mailadmin.smtp.client import SMTPClient


def _msg(**headers):
    msg = PyEmailMessage()
    msg["From"] = "me@example.com"
    msg["Subject"] = "hi"
    msg["Message-ID"] = "<m1@example.com>"
    for key, value in headers.items():
        msg[key] = value
    msg.set_content("body")
    return msg


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.noop.return_value = (250, b"OK")
    conn.send_message.return_value = {}
    return conn


@pytest.fixture
def smtp_cls(conn):
    with patch("mailadmin.smtp.client.smtplib.SMTP", return_value=conn) as cls:
        yield cls


def _client(**cfg):
    return SMTPClient(SMTPConfig(host="smtp.test", **cfg), "me@example.com", "secret")


def test_send_collects_all_recipients(smtp_cls, conn):
    result = _client().send(_msg(To="a@example.com, B <b@example.com>", Cc="c@example.com", Bcc="d@example.com"))

    conn.starttls.assert_called_once()
    conn.login.assert_called_once_with("me@example.com", "secret")
    kwargs = conn.send_message.call_args.kwargs
    assert kwargs["to_addrs"] == ["a@example.com", "b@example.com", "c@example.com", "d@example.com"]
    assert result.message_id == "<m1@example.com>"
    assert result.response.startswith("250")


def test_partial_refusal_is_reported(smtp_cls, conn):
    conn.send_message.return_value = {"b@example.com": (550, b"no such user")}

    result = _client().send(_msg(To="a@example.com, b@example.com"))

    assert "1 recipient" in result.response
    assert "b@example.com" in result.response


def test_connection_is_reused_while_alive(smtp_cls, conn):
    client = _client()
    client.send(_msg(To="a@example.com"))
    client.send(_msg(To="a@example.com"))
    assert smtp_cls.call_count == 1


def test_dead_connection_is_replaced(smtp_cls, conn):
    client = _client()
    client.send(_msg(To="a@example.com"))
    conn.noop.side_effect = smtplib.SMTPServerDisconnected("gone")

    client.send(_msg(To="a@example.com"))

    assert smtp_cls.call_count == 2


def test_ssl_mode_skips_starttls(conn):
    with patch("mailadmin.smtp.client.smtplib.SMTP_SSL", return_value=conn) as ssl_cls:
        _client(port=465, use_ssl=True, use_starttls=False).send(_msg(To="a@example.com"))
    ssl_cls.assert_called_once_with("smtp.test", 465, timeout=30)
    conn.starttls.assert_not_called()


def test_no_recipients(smtp_cls):
    with pytest.raises(TransportError):
        _client().send(_msg())


@pytest.mark.parametrize(
    "exc, expected",
    [
        (smtplib.SMTPAuthenticationError(535, b"bad credentials"), AuthError),
        (TimeoutError("timed out"), TransportTimeout),
        (ConnectionRefusedError(111, "refused"), TransportUnavailable),
    ],
)
def test_login_errors_are_translated(smtp_cls, conn, exc, expected):
    conn.login.side_effect = exc
    with pytest.raises(expected):
        _client().send(_msg(To="a@example.com"))


def test_all_recipients_refused(smtp_cls, conn):
    conn.send_message.side_effect = smtplib.SMTPRecipientsRefused({"a@example.com": (550, b"nope")})
    with pytest.raises(TransportError):
        _client().send(_msg(To="a@example.com"))


def test_disconnect_during_send_drops_connection(smtp_cls, conn):
    client = _client()
    conn.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")

    with pytest.raises(TransportUnavailable):
        client.send(_msg(To="a@example.com"))

    conn.quit.assert_called_once()


def test_close(smtp_cls, conn):
    client = _client()
    client.send(_msg(To="a@example.com"))
    client.close()
    conn.quit.assert_called_once()
