"""
Logging setup for mailadmin.

Everything logs under the ``mailadmin`` logger tree; the web layer adds its
own ``webapp`` tree to the same handlers.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Iterable, Optional

FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"

_ops_logger = logging.getLogger("mailadmin.ops")


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    console_output: bool = True,
    logger_names: Iterable[str] = ("mailadmin", "webapp"),
) -> None:
    """
    Attach console and rotating file handlers to the application loggers.

    Args:
        log_level: Level name ('DEBUG', 'INFO', ...). Unknown names fall back to INFO.
        log_dir: Directory for ``mailadmin.log`` and ``error.log``. ``None`` disables files.
        console_output: Whether to log to stdout as well.
        logger_names: Top-level loggers that receive the handlers.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = logging.Formatter(fmt=FORMAT, datefmt=DATEFMT)

    handlers = []
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

        # 5MB per file, 5 backups
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "mailadmin.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "error.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        handlers.append(error_handler)

    for name in logger_names:
        logger = logging.getLogger(name)
        logger.setLevel(numeric_level)
        logger.handlers.clear()
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False

    logging.getLogger("mailadmin").info(
        "Logging initialized (level=%s, dir=%s)", log_level, log_dir
    )


def log_operation(user: str, operation: str, **details) -> None:
    """Record a completed mail operation. Never pass bodies or passwords."""
    extra = " ".join(f"{k}={v!r}" for k, v in sorted(details.items()))
    _ops_logger.info("user=%s op=%s %s", user, operation, extra)


def log_failure(user: str, operation: str, exc: BaseException) -> None:
    _ops_logger.error(
        "user=%s op=%s error=%s: %s", user, operation, type(exc).__name__, exc
    )
