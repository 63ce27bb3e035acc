from __future__ import annotations


class MailAdminError(Exception):
    """Base error. ``status_code`` is what the HTTP layer answers with."""

    status_code: int = 500


class ConfigError(MailAdminError):
    pass


class TransportError(MailAdminError):
    """A remote IMAP/SMTP operation failed for a non-network reason."""


class TransportUnavailable(TransportError):
    status_code = 503


class TransportTimeout(TransportError):
    status_code = 504


class AuthError(TransportError):
    status_code = 401


class NotFound(MailAdminError):
    status_code = 404


class NoContent(NotFound):
    pass


class InvalidIndex(MailAdminError):
    status_code = 400


class UnknownFolder(MailAdminError):
    status_code = 400


class DecodeFailure(MailAdminError):
    """A single message could not be decoded."""


class AssistantNotConfigured(MailAdminError):
    status_code = 400


class AssistantError(MailAdminError):
    """The language model provider rejected or failed a request."""

    status_code = 502
