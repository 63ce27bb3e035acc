# mailadmin/smtp/client.py
from __future__ import annotations

import logging
import smtplib
import threading
from dataclasses import dataclass, field
from email.message import EmailMessage as PyEmailMessage
from email.utils import getaddresses
from typing import List, Optional

from mailadmin.config import SMTPConfig
from mailadmin.errors import (
    AuthError,
    MailAdminError,
    TransportError,
    TransportTimeout,
    TransportUnavailable,
)
from mailadmin.types import SendResult

logger = logging.getLogger(__name__)


def translate_error(e: BaseException, action: str) -> MailAdminError:
    if isinstance(e, MailAdminError):
        return e
    if isinstance(e, smtplib.SMTPAuthenticationError):
        return AuthError(f"SMTP authentication failed: {e.smtp_error!r}")
    if isinstance(e, TimeoutError):
        return TransportTimeout(f"SMTP {action} timed out")
    if isinstance(e, smtplib.SMTPServerDisconnected):
        return TransportUnavailable(f"SMTP connection lost during {action}: {e}")
    if isinstance(e, smtplib.SMTPException):
        return TransportError(f"SMTP {action} failed: {e}")
    if isinstance(e, OSError):
        return TransportUnavailable(f"SMTP server unavailable during {action}: {e}")
    return TransportError(f"SMTP {action} failed: {e}")


def _recipients(msg: PyEmailMessage) -> List[str]:
    pairs = getaddresses(
        [str(v) for key in ("To", "Cc", "Bcc") for v in msg.get_all(key, [])]
    )
    return [addr for _, addr in pairs if addr]


@dataclass
class SMTPClient:
    """
    Outbound connection for one identity. The socket is opened lazily and
    kept for reuse until ``close``; a dead socket is replaced on next send.
    """

    config: SMTPConfig
    username: str
    password: str = field(repr=False)

    _conn: Optional[smtplib.SMTP] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _open(self) -> smtplib.SMTP:
        cfg = self.config
        try:
            if cfg.use_ssl:
                conn: smtplib.SMTP = smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=cfg.timeout)
            else:
                conn = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout)
                if cfg.use_starttls:
                    conn.starttls()
            conn.login(self.username, self.password)
        except Exception as e:
            raise translate_error(e, "connect") from e

        logger.debug("SMTP connection opened for %s", self.username)
        return conn

    def _alive(self, conn: smtplib.SMTP) -> bool:
        try:
            code, _ = conn.noop()
        except (smtplib.SMTPException, OSError):
            return False
        return code == 250

    def send(self, msg: PyEmailMessage) -> SendResult:
        recipients = _recipients(msg)
        if not recipients:
            raise TransportError("No recipients")

        with self._lock:
            if self._conn is None or not self._alive(self._conn):
                self._drop()
                self._conn = self._open()

            try:
                refused = self._conn.send_message(
                    msg, from_addr=self.username, to_addrs=recipients
                )
            except smtplib.SMTPRecipientsRefused as e:
                raise TransportError(f"All recipients refused: {sorted(e.recipients)}") from e
            except Exception as e:
                self._drop()
                raise translate_error(e, "send") from e

        accepted = len(recipients) - len(refused)
        response = f"250 Message accepted for {accepted} recipient(s)"
        if refused:
            response += f"; refused: {', '.join(sorted(refused))}"
        return SendResult(message_id=msg.get("Message-ID"), response=response)

    def _drop(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.quit()
        except Exception:
            logger.debug("SMTP quit failed for %s", self.username, exc_info=True)
        self._conn = None

    def close(self) -> None:
        with self._lock:
            self._drop()
