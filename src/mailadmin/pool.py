# mailadmin/pool.py
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from mailadmin.imap.client import IMAPClient
from mailadmin.smtp.client import SMTPClient
from mailadmin.types import Identity

logger = logging.getLogger(__name__)

IMAPFactory = Callable[[Identity], IMAPClient]
SMTPFactory = Callable[[Identity], SMTPClient]


@dataclass
class Session:
    identity: Identity
    imap: IMAPClient
    smtp: Optional[SMTPClient] = None
    last_used: float = 0.0

    def close(self) -> None:
        for client in (self.imap, self.smtp):
            if client is None:
                continue
            try:
                client.close()
            except Exception:
                logger.warning("Closing transport for %s failed", self.identity.key, exc_info=True)


class ConnectionPool:
    """
    One session (IMAP connection plus lazily opened SMTP connection) per
    identity. Sessions idle for ``idle_timeout`` seconds are closed on the
    next acquire or by ``reap_idle``.

    The factories must return connected, authenticated clients; failures
    raised from them propagate and leave no session behind.
    """

    def __init__(
        self,
        imap_factory: IMAPFactory,
        smtp_factory: SMTPFactory,
        *,
        idle_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._imap_factory = imap_factory
        self._smtp_factory = smtp_factory
        self.idle_timeout = idle_timeout
        self._clock = clock

        self._sessions: Dict[str, Session] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _key_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    @contextmanager
    def _holding(self, key: str) -> Iterator[None]:
        """Hold the identity's lock, retrying if it was dropped while we waited."""
        while True:
            lock = self._key_lock(key)
            lock.acquire()
            with self._lock:
                current = self._key_locks.get(key) is lock
            if current:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _drop_key_lock(self, key: str) -> None:
        # Caller holds self._lock. A held lock belongs to a session being opened.
        lock = self._key_locks.get(key)
        if lock is not None and not lock.locked():
            del self._key_locks[key]

    def _expired(self, session: Session, now: float) -> bool:
        return now - session.last_used >= self.idle_timeout

    def _session(self, identity: Identity) -> Session:
        key = identity.key
        with self._holding(key):
            now = self._clock()
            with self._lock:
                session = self._sessions.get(key)

            if session is not None and (
                self._expired(session, now) or session.identity.password != identity.password
            ):
                logger.debug("Dropping stale session for %s", key)
                with self._lock:
                    self._sessions.pop(key, None)
                session.close()
                session = None

            if session is None:
                session = Session(identity=identity, imap=self._imap_factory(identity))
                with self._lock:
                    self._sessions[key] = session
                logger.info("Opened mail session for %s", key)

            session.last_used = now
            return session

    def imap(self, identity: Identity) -> IMAPClient:
        return self._session(identity).imap

    def smtp(self, identity: Identity) -> SMTPClient:
        session = self._session(identity)
        with self._holding(identity.key):
            if session.smtp is None:
                session.smtp = self._smtp_factory(identity)
            return session.smtp

    def reap_idle(self) -> int:
        """Close every idle session. Returns how many were closed."""
        now = self._clock()
        with self._lock:
            expired: List[Session] = [s for s in self._sessions.values() if self._expired(s, now)]
            for s in expired:
                self._sessions.pop(s.identity.key, None)
                self._drop_key_lock(s.identity.key)

        for s in expired:
            s.close()
        if expired:
            logger.info("Closed %d idle mail session(s)", len(expired))
        return len(expired)

    def close_identity(self, identity: Identity) -> None:
        with self._lock:
            session = self._sessions.pop(identity.key, None)
            self._drop_key_lock(identity.key)
        if session is not None:
            session.close()

    def shutdown(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._key_locks.clear()
        for s in sessions:
            s.close()
        logger.info("Connection pool shut down (%d session(s) closed)", len(sessions))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
