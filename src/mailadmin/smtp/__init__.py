from .client import SMTPClient

__all__ = [
    "SMTPClient",
]
