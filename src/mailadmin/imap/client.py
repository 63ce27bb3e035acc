# mailadmin/imap/client.py
from __future__ import annotations

import imaplib
import logging
import re
import ssl
import threading
import time
from dataclasses import dataclass, field
from email.message import EmailMessage as PyEmailMessage
from typing import Callable, Dict, List, Optional, Sequence, Set, TypeVar

from mailadmin.config import IMAPConfig
from mailadmin.errors import (
    AuthError,
    MailAdminError,
    TransportError,
    TransportTimeout,
    TransportUnavailable,
)
from mailadmin.imap.fetch_response import RawMessage, RawSummary, group_fetch_response
from mailadmin.types import EmailRef

logger = logging.getLogger(__name__)

REPLACE_ON = (imaplib.IMAP4.abort, TimeoutError, OSError, ssl.SSLError)

SUMMARY_ATTRS = "(UID FLAGS RFC822.SIZE INTERNALDATE BODYSTRUCTURE BODY.PEEK[HEADER])"

T = TypeVar("T")


def translate_error(e: BaseException, action: str) -> MailAdminError:
    """Map imaplib/socket failures onto the transport error taxonomy."""
    if isinstance(e, MailAdminError):
        return e
    if isinstance(e, TimeoutError):
        return TransportTimeout(f"IMAP {action} timed out")
    if isinstance(e, imaplib.IMAP4.abort):
        return TransportUnavailable(f"IMAP connection lost during {action}: {e}")
    if isinstance(e, OSError):
        return TransportUnavailable(f"IMAP server unavailable during {action}: {e}")
    return TransportError(f"IMAP {action} failed: {e}")


@dataclass
class _ConnState:
    conn: imaplib.IMAP4
    selected_mailbox: Optional[str] = None
    selected_readonly: Optional[bool] = None


@dataclass
class IMAPClient:
    """
    One authenticated IMAP connection for one identity.

    All public methods are serialised on an internal lock. Read operations
    reconnect and retry once after a dropped connection; mutations never
    retry.
    """

    config: IMAPConfig
    username: str
    password: str = field(repr=False)

    max_retries: int = 1
    backoff_seconds: float = 0.2

    _state: Optional[_ConnState] = field(default=None, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    # -----------------------
    # Connection management
    # -----------------------

    def _open_new_connection(self) -> imaplib.IMAP4:
        cfg = self.config
        try:
            conn = (
                imaplib.IMAP4_SSL(cfg.host, cfg.port, timeout=cfg.timeout)
                if cfg.use_ssl
                else imaplib.IMAP4(cfg.host, cfg.port, timeout=cfg.timeout)
            )
        except BaseException as e:
            if isinstance(e, Exception):
                raise translate_error(e, "connect") from e
            raise

        try:
            conn.login(self.username, self.password)
        except imaplib.IMAP4.error as e:
            try:
                conn.logout()
            except Exception:
                pass
            raise AuthError(f"IMAP authentication failed for {self.username}: {e}") from e
        except Exception as e:
            raise translate_error(e, "login") from e

        logger.debug("IMAP connection opened for %s", self.username)
        return conn

    def connect(self) -> "IMAPClient":
        with self._lock:
            if self._state is None:
                self._state = _ConnState(self._open_new_connection())
        return self

    def _replace_bad_conn(self) -> None:
        if self._state is not None:
            try:
                self._state.conn.logout()
            except Exception:
                pass
        self._state = None

    def _run(self, op: Callable[[_ConnState], T], *, action: str, retry: bool = False) -> T:
        attempts = self.max_retries + 1 if retry else 1
        last_exc: Optional[BaseException] = None

        with self._lock:
            for attempt in range(attempts):
                try:
                    if self._state is None:
                        self._state = _ConnState(self._open_new_connection())
                    return op(self._state)
                except MailAdminError:
                    raise
                except REPLACE_ON as e:
                    last_exc = e
                    self._replace_bad_conn()
                    if attempt + 1 < attempts:
                        logger.warning("IMAP %s: connection dropped, reconnecting (%s)", action, e)
                        if self.backoff_seconds > 0:
                            time.sleep(self.backoff_seconds)
                        continue
                except imaplib.IMAP4.error as e:
                    raise translate_error(e, action) from e

        assert last_exc is not None
        raise translate_error(last_exc, action) from last_exc

    # -----------------------
    # Mailbox selection helpers
    # -----------------------

    def _format_mailbox_arg(self, mailbox: str) -> str:
        if mailbox.upper() == "INBOX":
            return "INBOX"
        if mailbox.startswith('"') and mailbox.endswith('"'):
            return mailbox
        return f'"{mailbox}"'

    def _ensure_selected(self, state: _ConnState, mailbox: str, readonly: bool) -> None:
        """
        Per-connection SELECT cache.
        RW selection satisfies both RW and RO.
        RO satisfies only RO.
        """
        if state.selected_mailbox == mailbox:
            if state.selected_readonly is False:
                return
            if readonly and state.selected_readonly is True:
                return

        typ, data = state.conn.select(self._format_mailbox_arg(mailbox), readonly=readonly)
        if typ != "OK":
            state.selected_mailbox = None
            raise TransportError(f"select({mailbox!r}) failed: {data}")

        state.selected_mailbox = mailbox
        state.selected_readonly = readonly

    def _search_all(self, state: _ConnState) -> List[int]:
        typ, data = state.conn.uid("SEARCH", None, "ALL")
        if typ != "OK":
            raise TransportError(f"SEARCH failed: {data}")
        raw = data[0] if data and data[0] else b""
        return [int(x) for x in raw.split() if x]

    # -----------------------
    # FETCH
    # -----------------------

    def fetch_summaries(self, mailbox: str, *, limit: int) -> List[RawSummary]:
        """
        Header-level data for the ``limit`` highest UIDs in ``mailbox``, in
        server (ascending UID) order. Never marks anything as seen.
        """

        def _impl(state: _ConnState) -> List[RawSummary]:
            self._ensure_selected(state, mailbox, readonly=True)
            uids = self._search_all(state)
            if not uids:
                return []
            if limit > 0:
                uids = uids[-limit:]

            typ, data = state.conn.uid("FETCH", ",".join(str(u) for u in uids), SUMMARY_ATTRS)
            if typ != "OK":
                raise TransportError(f"FETCH summaries failed: {data}")

            out: List[RawSummary] = []
            for item in group_fetch_response(data or []):
                uid = item.uid
                if uid is None:
                    continue
                out.append(
                    RawSummary(
                        uid=uid,
                        flags=item.flags,
                        size=item.size,
                        internaldate=item.internaldate,
                        header_bytes=item.literal("BODY[HEADER]"),
                        bodystructure=item.bodystructure,
                    )
                )
            return out

        return self._run(_impl, action="fetch_summaries", retry=True)

    def fetch_message(self, mailbox: str, uid: int, *, mark_seen: bool = True) -> Optional[RawMessage]:
        """
        Full RFC822 bytes for one message, or None when the UID is absent.
        A non-PEEK fetch makes the server set \\Seen.
        """
        section = "BODY[]" if mark_seen else "BODY.PEEK[]"

        def _impl(state: _ConnState) -> Optional[RawMessage]:
            self._ensure_selected(state, mailbox, readonly=not mark_seen)
            typ, data = state.conn.uid("FETCH", str(uid), f"(UID FLAGS RFC822.SIZE INTERNALDATE {section})")
            if typ != "OK":
                raise TransportError(f"FETCH uid={uid} failed: {data}")

            for item in group_fetch_response(data or []):
                if item.uid != uid:
                    continue
                raw = item.literal("BODY[]")
                if raw is None:
                    continue
                return RawMessage(
                    uid=uid,
                    flags=item.flags,
                    size=item.size,
                    internaldate=item.internaldate,
                    raw=raw,
                )
            return None

        return self._run(_impl, action="fetch_message", retry=True)

    # -----------------------
    # Mutations
    # -----------------------

    def append(self, mailbox: str, msg: PyEmailMessage, *, flags: Optional[Set[str]] = None) -> Optional[EmailRef]:
        def _impl(state: _ConnState) -> Optional[EmailRef]:
            flags_arg = "(" + " ".join(sorted(flags)) + ")" if flags else None
            date_time = imaplib.Time2Internaldate(time.time())
            typ, data = state.conn.append(
                self._format_mailbox_arg(mailbox), flags_arg, date_time, msg.as_bytes()
            )
            if typ != "OK":
                raise TransportError(f"APPEND to {mailbox!r} failed: {data}")

            if data and data[0]:
                resp = data[0].decode(errors="ignore") if isinstance(data[0], bytes) else str(data[0])
                m = re.search(r"APPENDUID\s+\d+\s+(\d+)", resp)
                if m:
                    return EmailRef(uid=int(m.group(1)), mailbox=mailbox)
            return None

        return self._run(_impl, action="append")

    def add_flags(self, mailbox: str, uids: Sequence[int], *, flags: Set[str]) -> None:
        if not uids:
            return

        def _impl(state: _ConnState) -> None:
            self._ensure_selected(state, mailbox, readonly=False)
            flag_list = "(" + " ".join(sorted(flags)) + ")"
            typ, data = state.conn.uid("STORE", ",".join(str(u) for u in uids), "+FLAGS.SILENT", flag_list)
            if typ != "OK":
                raise TransportError(f"STORE failed: {data}")

        self._run(_impl, action="add_flags")

    def expunge(self, mailbox: str) -> None:
        def _impl(state: _ConnState) -> None:
            self._ensure_selected(state, mailbox, readonly=False)
            typ, data = state.conn.expunge()
            if typ != "OK":
                raise TransportError(f"EXPUNGE failed: {data}")

        self._run(_impl, action="expunge")

    def delete_permanently(self, mailbox: str, uid: int) -> None:
        self.add_flags(mailbox, [uid], flags={r"\Deleted"})
        self.expunge(mailbox)

    def move(self, mailbox: str, uid: int, dst_mailbox: str) -> None:
        def _impl(state: _ConnState) -> None:
            self._ensure_selected(state, mailbox, readonly=False)
            dst_arg = self._format_mailbox_arg(dst_mailbox)

            typ, _ = state.conn.uid("MOVE", str(uid), dst_arg)
            if typ == "OK":
                return

            typ_copy, data_copy = state.conn.uid("COPY", str(uid), dst_arg)
            if typ_copy != "OK":
                raise TransportError(f"COPY (for MOVE fallback) failed: {data_copy}")

            typ_store, data_store = state.conn.uid("STORE", str(uid), "+FLAGS.SILENT", r"(\Deleted)")
            if typ_store != "OK":
                raise TransportError(f"STORE +FLAGS.SILENT \\Deleted failed: {data_store}")

            typ_expunge, data_expunge = state.conn.expunge()
            if typ_expunge != "OK":
                raise TransportError(f"EXPUNGE (after MOVE fallback) failed: {data_expunge}")

        self._run(_impl, action="move")

    # -----------------------
    # Mailboxes
    # -----------------------

    def mailbox_status(self, mailbox: str = "INBOX") -> Dict[str, int]:
        def _impl(state: _ConnState) -> Dict[str, int]:
            typ, data = state.conn.status(self._format_mailbox_arg(mailbox), "(MESSAGES UNSEEN)")
            if typ != "OK":
                raise TransportError(f"STATUS {mailbox!r} failed: {data}")
            if not data or not data[0]:
                raise TransportError(f"STATUS {mailbox!r} returned empty data")

            raw = data[0]
            s = raw.decode(errors="ignore") if isinstance(raw, bytes) else str(raw)

            start = s.rfind("(")
            end = s.rfind(")")
            if start == -1 or end == -1 or end <= start:
                raise TransportError(f"Unexpected STATUS response: {s!r}")

            tokens = s[start + 1 : end].split()
            status: Dict[str, int] = {}
            for i in range(0, len(tokens) - 1, 2):
                try:
                    status[tokens[i].lower()] = int(tokens[i + 1])
                except ValueError:
                    continue
            return status

        return self._run(_impl, action="status", retry=True)

    def ping(self) -> None:
        def _impl(state: _ConnState) -> None:
            typ, data = state.conn.noop()
            if typ != "OK":
                raise TransportError(f"NOOP failed: {data}")

        self._run(_impl, action="noop")

    def close(self) -> None:
        with self._lock:
            if self._state is None:
                return
            try:
                self._state.conn.logout()
            except Exception:
                logger.debug("IMAP logout failed for %s", self.username, exc_info=True)
            self._state = None

    def __enter__(self) -> "IMAPClient":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
