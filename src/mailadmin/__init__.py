from mailadmin.config import IMAPConfig, Settings, SMTPConfig
from mailadmin.service import MailService
from mailadmin.types import Identity


__all__ = ["MailService", "Settings", "IMAPConfig", "SMTPConfig", "Identity"]
