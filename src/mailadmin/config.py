from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

from mailadmin.errors import ConfigError


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class IMAPConfig:
    host: str
    port: int = 993
    use_ssl: bool = True
    timeout: int = 30

    def validate(self) -> "IMAPConfig":
        if not self.host:
            raise ConfigError("IMAP host required")
        if not self.port:
            raise ConfigError("IMAP port required")
        return self


@dataclass(frozen=True)
class SMTPConfig:
    host: str
    port: int = 587
    use_ssl: bool = False
    use_starttls: bool = True
    timeout: int = 30

    def validate(self) -> "SMTPConfig":
        if not self.host:
            raise ConfigError("SMTP host required")
        if not self.port:
            raise ConfigError("SMTP port required")
        if self.use_ssl and self.use_starttls:
            raise ConfigError("SMTP_SSL and SMTP_STARTTLS are mutually exclusive")
        return self


# Alias key -> canonical wire name, as laid out on the provider.
DEFAULT_FOLDERS: Dict[str, str] = {
    "INBOX": "INBOX",
    "SENT": "INBOX.Sent",
    "DRAFTS": "INBOX.Drafts",
    "TRASH": "INBOX.Trash",
    "JUNK": "INBOX.Junk",
}


@dataclass(frozen=True)
class Settings:
    imap: IMAPConfig
    smtp: SMTPConfig
    folders: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FOLDERS))
    max_emails_per_folder: int = 100
    cache_ttl_seconds: float = 300.0
    connection_idle_timeout: float = 300.0
    data_dir: Path = Path("data")
    log_level: str = "INFO"
    log_dir: Optional[Path] = Path("logs")
    openai_api_key: Optional[str] = field(default=None, repr=False)
    openai_model: str = "gpt-3.5-turbo"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(override=True)

        imap = IMAPConfig(
            host=os.getenv("IMAP_HOST", "imap.hostinger.com"),
            port=_env_int("IMAP_PORT", 993),
            use_ssl=_env_bool("IMAP_SSL", True),
            timeout=_env_int("IMAP_TIMEOUT", 30),
        ).validate()

        smtp = SMTPConfig(
            host=os.getenv("SMTP_HOST", "smtp.hostinger.com"),
            port=_env_int("SMTP_PORT", 587),
            use_ssl=_env_bool("SMTP_SSL", False),
            use_starttls=_env_bool("SMTP_STARTTLS", True),
            timeout=_env_int("SMTP_TIMEOUT", 30),
        ).validate()

        folders = {
            key: os.getenv(f"FOLDER_{key}", default)
            for key, default in DEFAULT_FOLDERS.items()
        }

        log_dir = os.getenv("LOG_DIR", "logs")

        return cls(
            imap=imap,
            smtp=smtp,
            folders=folders,
            max_emails_per_folder=_env_int("MAX_EMAILS_PER_FOLDER", 100),
            cache_ttl_seconds=float(_env_int("EMAIL_CACHE_TTL_SECONDS", 300)),
            connection_idle_timeout=float(_env_int("CONNECTION_IDLE_TIMEOUT_SECONDS", 300)),
            data_dir=Path(os.getenv("PROFILE_DATA_DIR", "data")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=Path(log_dir) if log_dir else None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"),
        )
