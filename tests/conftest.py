import os

# Session gate settings must be in place before webapp modules are imported.
os.environ.setdefault("AUTH_MODE", "required")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("COOKIE_SECURE", "false")

import pytest

from mailadmin.config import DEFAULT_FOLDERS, IMAPConfig, Settings, SMTPConfig
from mailadmin.service import MailService
from mailadmin.types import Identity

from fake_imap_client import FakeIMAPClient
from fake_smtp_client import FakeSMTPClient


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def imap():
    fake = FakeIMAPClient()
    fake.create_mailbox(*DEFAULT_FOLDERS.values())
    return fake


@pytest.fixture
def smtp():
    return FakeSMTPClient()


@pytest.fixture
def identity():
    return Identity(email="user@example.com", password="secret")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        imap=IMAPConfig(host="imap.test"),
        smtp=SMTPConfig(host="smtp.test"),
        data_dir=tmp_path / "data",
        log_dir=None,
    )


@pytest.fixture
def service(settings, imap, smtp, clock):
    svc = MailService(
        settings,
        imap_factory=lambda ident: imap,
        smtp_factory=lambda ident: smtp,
        clock=clock,
    )
    yield svc
    svc.shutdown()
