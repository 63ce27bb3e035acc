"""
Tests for per-identity connection reuse and idle expiry.
"""

import pytest

from mailadmin.errors import AuthError
from mailadmin.pool import ConnectionPool
from mailadmin.types import Identity

from fake_imap_client import FakeIMAPClient
from fake_smtp_client import FakeSMTPClient


class Factories:
    def __init__(self):
        self.imap_opened = []
        self.smtp_opened = []
        self.reject = set()

    def imap(self, identity):
        if identity.password in self.reject:
            raise AuthError(f"IMAP authentication failed for {identity.email}")
        client = FakeIMAPClient()
        self.imap_opened.append(client)
        return client

    def smtp(self, identity):
        client = FakeSMTPClient()
        self.smtp_opened.append(client)
        return client


@pytest.fixture
def factories():
    return Factories()


@pytest.fixture
def pool(factories, clock):
    return ConnectionPool(factories.imap, factories.smtp, idle_timeout=300, clock=clock)


ALICE = Identity(email="alice@example.com", password="pw")
BOB = Identity(email="bob@example.com", password="pw")


class TestReuse:
    def test_same_identity_reuses_connection(self, pool, factories):
        first = pool.imap(ALICE)
        second = pool.imap(Identity(email=" Alice@Example.com ", password="pw"))

        assert first is second
        assert len(factories.imap_opened) == 1

    def test_identities_do_not_share(self, pool, factories):
        assert pool.imap(ALICE) is not pool.imap(BOB)
        assert len(pool) == 2

    def test_smtp_is_opened_lazily_and_reused(self, pool, factories):
        pool.imap(ALICE)
        assert factories.smtp_opened == []

        assert pool.smtp(ALICE) is pool.smtp(ALICE)
        assert len(factories.smtp_opened) == 1

    def test_changed_password_opens_new_session(self, pool, factories):
        old = pool.imap(ALICE)
        new = pool.imap(Identity(email="alice@example.com", password="new"))

        assert new is not old
        assert old.closed is True


class TestIdleExpiry:
    def test_idle_session_is_replaced_on_acquire(self, pool, factories, clock):
        old = pool.imap(ALICE)
        clock.advance(300)

        new = pool.imap(ALICE)

        assert new is not old
        assert old.closed is True

    def test_use_keeps_session_alive(self, pool, clock):
        client = pool.imap(ALICE)
        clock.advance(200)
        pool.imap(ALICE)
        clock.advance(200)
        assert pool.imap(ALICE) is client

    def test_reap_idle_closes_only_expired(self, pool, clock):
        alice = pool.imap(ALICE)
        smtp = pool.smtp(ALICE)
        clock.advance(250)
        bob = pool.imap(BOB)
        clock.advance(60)

        assert pool.reap_idle() == 1
        assert alice.closed and smtp.closed
        assert not bob.closed
        assert len(pool) == 1


class TestLifecycle:
    def test_failed_login_leaves_nothing_behind(self, pool, factories):
        factories.reject.add("bad")
        with pytest.raises(AuthError):
            pool.imap(Identity(email="alice@example.com", password="bad"))
        assert len(pool) == 0

    def test_close_identity(self, pool):
        client = pool.imap(ALICE)
        pool.close_identity(ALICE)
        assert client.closed
        assert len(pool) == 0

    def test_shutdown_closes_everything(self, pool):
        clients = [pool.imap(ALICE), pool.imap(BOB)]
        pool.shutdown()
        assert all(c.closed for c in clients)
        assert len(pool) == 0


class TestKeyLocks:
    def test_close_identity_forgets_lock(self, pool):
        pool.imap(ALICE)
        pool.imap(BOB)
        pool.close_identity(ALICE)
        assert set(pool._key_locks) == {BOB.key}

    def test_reap_idle_forgets_expired_locks(self, pool, clock):
        pool.imap(ALICE)
        clock.advance(250)
        pool.imap(BOB)
        clock.advance(60)

        pool.reap_idle()

        assert set(pool._key_locks) == {BOB.key}

    def test_lock_held_by_an_open_in_progress_is_kept(self, pool):
        pool.imap(ALICE)
        lock = pool._key_lock(ALICE.key)
        with lock:
            pool.close_identity(ALICE)
            assert pool._key_locks[ALICE.key] is lock

    def test_reopen_after_close(self, pool, factories):
        old = pool.imap(ALICE)
        pool.close_identity(ALICE)

        new = pool.imap(ALICE)

        assert new is not old
        assert len(factories.imap_opened) == 2
        assert ALICE.key in pool._key_locks
