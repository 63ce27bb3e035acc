# mailadmin/cache.py
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from mailadmin.models import EmailMessage, EmailOverview

logger = logging.getLogger(__name__)

Key = Tuple[str, str]
Token = Tuple[int, int, int]


@dataclass(frozen=True)
class Partition:
    """A fully populated folder listing for one identity."""

    entries: Tuple[EmailOverview, ...]
    total_count: int
    fetched_at: float

    def find(self, uid: int) -> Optional[EmailOverview]:
        for entry in self.entries:
            if entry.uid == uid:
                return entry
        return None


class ListingCache:
    """
    Per (identity, folder) listing partitions with a staleness window.

    Partitions are immutable values; every write swaps the whole value under
    the lock, so readers never observe a half-updated listing. Keys are
    ``(identity_key, canonical_folder)``.
    """

    def __init__(self, *, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._d: Dict[Key, Partition] = {}
        self._lock = threading.Lock()

        # Bumped on every invalidation; a fetch started under an older
        # token must not store its result.
        self._epoch = 0
        self._identity_gen: Dict[str, int] = {}
        self._key_gen: Dict[Key, int] = {}

    def _fresh(self, part: Partition, now: float) -> bool:
        return now - part.fetched_at < self._ttl

    def get(self, identity_key: str, folder: str) -> Optional[Partition]:
        key = (identity_key, folder)
        now = self._clock()
        with self._lock:
            part = self._d.get(key)
            if part is None:
                return None
            if not self._fresh(part, now):
                self._d.pop(key, None)
                logger.debug("Cache expired for %s/%s", identity_key, folder)
                return None
            return part

    def _token(self, key: Key) -> Token:
        return (self._epoch, self._identity_gen.get(key[0], 0), self._key_gen.get(key, 0))

    def token(self, identity_key: str, folder: str) -> Token:
        """Snapshot to take before fetching; pass it back to ``put``."""
        with self._lock:
            return self._token((identity_key, folder))

    def put(
        self,
        identity_key: str,
        folder: str,
        entries: Sequence[EmailOverview],
        total_count: int,
        *,
        token: Optional[Token] = None,
    ) -> Partition:
        """
        Store a freshly fetched partition and return it. When ``token`` is
        given and the key was invalidated since it was taken, the partition
        is returned to the caller but not stored.
        """
        key = (identity_key, folder)
        part = Partition(entries=tuple(entries), total_count=total_count, fetched_at=self._clock())
        with self._lock:
            if token is not None and token != self._token(key):
                logger.debug("Discarding listing for %s/%s fetched before invalidation", identity_key, folder)
                return part
            self._d[key] = part
        self.sweep()
        return part

    def attach_detail(self, identity_key: str, folder: str, uid: int, detail: EmailMessage) -> bool:
        """
        Replace the cached entry for ``uid`` with a copy carrying ``detail``.
        The partition keeps its ``fetched_at``. Returns False when there is
        nothing to attach to.
        """
        key = (identity_key, folder)
        with self._lock:
            part = self._d.get(key)
            if part is None:
                return False
            entries = list(part.entries)
            for i, entry in enumerate(entries):
                if entry.uid == uid:
                    entries[i] = dataclasses.replace(entry, detail=detail)
                    break
            else:
                return False
            self._d[key] = dataclasses.replace(part, entries=tuple(entries))
            return True

    def invalidate(self, identity_key: str, folder: str) -> None:
        key = (identity_key, folder)
        with self._lock:
            self._key_gen[key] = self._key_gen.get(key, 0) + 1
            self._d.pop(key, None)

    def invalidate_all(self, identity_key: str) -> int:
        with self._lock:
            self._identity_gen[identity_key] = self._identity_gen.get(identity_key, 0) + 1
            keys = [k for k in self._d if k[0] == identity_key]
            for k in keys:
                self._d.pop(k, None)
        return len(keys)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, part in self._d.items() if not self._fresh(part, now)]
            for k in stale:
                self._d.pop(k, None)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._d.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)
