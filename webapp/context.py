# context.py
import asyncio
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from dotenv import load_dotenv

from mailadmin.config import Settings
from mailadmin.service import MailService

load_dotenv(override=True)

MAX_WORKERS = int(os.getenv("THREADPOOL_WORKERS", "20"))

EXECUTOR = ThreadPoolExecutor(max_workers=MAX_WORKERS)

_service: Optional[MailService] = None
_service_lock = threading.Lock()


def get_service() -> MailService:
    global _service
    with _service_lock:
        if _service is None:
            _service = MailService(Settings.from_env())
        return _service


def set_service(service: Optional[MailService]) -> None:
    global _service
    with _service_lock:
        _service = service


def shutdown_service() -> None:
    global _service
    with _service_lock:
        service, _service = _service, None
    if service is not None:
        service.shutdown()


async def run_blocking(fn, *args, **kwargs):
    """
    Run blocking IO in a bounded thread pool so the event loop remains responsive.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(EXECUTOR, lambda: fn(*args, **kwargs))
