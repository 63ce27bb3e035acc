# mailadmin/hydration.py
from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from mailadmin.cache import ListingCache, Partition
from mailadmin.errors import (
    AuthError,
    DecodeFailure,
    InvalidIndex,
    NoContent,
    NotFound,
    TransportError,
    TransportUnavailable,
)
from mailadmin.folders import FolderResolver
from mailadmin.imap.parser import decode_message, decode_summary
from mailadmin.models import Attachment, EmailMessage, EmailOverview
from mailadmin.pool import ConnectionPool
from mailadmin.types import Identity

logger = logging.getLogger(__name__)


class HydrationManager:
    """
    Serves folder listings from the cache and turns listing entries into
    full messages on demand.
    """

    def __init__(
        self,
        cache: ListingCache,
        pool: ConnectionPool,
        resolver: FolderResolver,
        *,
        max_emails_per_folder: int = 100,
    ):
        self.cache = cache
        self.pool = pool
        self.resolver = resolver
        self.max_emails_per_folder = max_emails_per_folder

    def _fetch_partition(self, identity: Identity, folder: str) -> Partition:
        token = self.cache.token(identity.key, folder)
        raws = self.pool.imap(identity).fetch_summaries(folder, limit=self.max_emails_per_folder)

        entries: List[EmailOverview] = []
        for raw in raws:
            try:
                entries.append(decode_summary(raw, folder))
            except DecodeFailure as e:
                logger.warning("Skipping undecodable message in %s: %s", folder, e)

        # sorted() is stable, so equal dates keep server order
        entries = sorted(entries, key=lambda e: e.sort_date, reverse=True)
        logger.info("Fetched %d message(s) from %s for %s", len(entries), folder, identity.key)
        return self.cache.put(identity.key, folder, entries, len(entries), token=token)

    def list_folder(
        self,
        identity: Identity,
        folder: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[EmailOverview], int]:
        folder = self.resolver.resolve(folder)

        part = self.cache.get(identity.key, folder)
        if part is None:
            part = self._fetch_partition(identity, folder)
        else:
            logger.debug("Cache hit for %s/%s", identity.key, folder)

        return list(part.entries[offset : offset + limit]), part.total_count

    def open_message(self, identity: Identity, folder: str, uid: int) -> EmailMessage:
        folder = self.resolver.resolve(folder)

        part = self.cache.get(identity.key, folder)
        entry = part.find(uid) if part is not None else None
        if entry is not None and entry.detail is not None:
            return entry.detail

        raw = self.pool.imap(identity).fetch_message(folder, uid)
        if raw is None:
            raise NotFound(f"Email {uid} not found in {folder}")

        detail = decode_message(raw, folder)
        self.cache.attach_detail(identity.key, folder, uid, detail)
        return detail

    def download_attachment(self, identity: Identity, folder: str, uid: int, index: int) -> Attachment:
        detail = self.open_message(identity, folder, uid)
        if index < 0 or index >= len(detail.attachments):
            raise InvalidIndex(f"Attachment index {index} out of range for email {uid}")

        att = detail.attachments[index]
        if att.data is None:
            raise NoContent(f"Attachment {index} of email {uid} has no content")
        return att

    def folder_stats(self, identity: Identity) -> Dict[str, dict]:
        """STATUS for every configured folder. Never served from the cache."""
        imap = self.pool.imap(identity)
        stats: Dict[str, dict] = {}
        for alias, name in self.resolver.as_dict().items():
            try:
                status = imap.mailbox_status(name)
            except (AuthError, TransportUnavailable):
                raise
            except TransportError as e:
                logger.warning("STATUS %s failed for %s: %s", name, identity.key, e)
                stats[alias] = {"folder": name, "total": 0, "unread": 0, "error": str(e)}
                continue
            stats[alias] = {
                "folder": name,
                "total": status.get("messages", 0),
                "unread": status.get("unseen", 0),
            }
        return stats
