# mailadmin/service.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from mailadmin.assistant import ReplyAssistant, ReplySuggestion
from mailadmin.cache import ListingCache
from mailadmin.config import Settings
from mailadmin.errors import AssistantNotConfigured, AuthError
from mailadmin.folders import FolderResolver
from mailadmin.hydration import HydrationManager
from mailadmin.imap.client import IMAPClient
from mailadmin.logging_setup import log_operation
from mailadmin.mutations import MutationCoordinator
from mailadmin.pool import ConnectionPool, IMAPFactory, SMTPFactory
from mailadmin.profiles import ProfileStore
from mailadmin.smtp.client import SMTPClient
from mailadmin.types import Identity

logger = logging.getLogger(__name__)


class MailService:
    """
    Owns every piece of shared state (listing cache, connection pool,
    profile store) and the two components working on them.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        imap_factory: Optional[IMAPFactory] = None,
        smtp_factory: Optional[SMTPFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        assistant: Optional[ReplyAssistant] = None,
    ):
        self.settings = settings

        if imap_factory is None:
            def imap_factory(identity: Identity) -> IMAPClient:
                return IMAPClient(settings.imap, identity.email, identity.password).connect()

        if smtp_factory is None:
            def smtp_factory(identity: Identity) -> SMTPClient:
                return SMTPClient(settings.smtp, identity.email, identity.password)

        self._imap_factory = imap_factory

        self.resolver = FolderResolver(settings.folders)
        self.cache = ListingCache(ttl_seconds=settings.cache_ttl_seconds, clock=clock)
        self.pool = ConnectionPool(
            imap_factory,
            smtp_factory,
            idle_timeout=settings.connection_idle_timeout,
            clock=clock,
        )
        self.profiles = ProfileStore(settings.data_dir)
        self.assistant = assistant or ReplyAssistant(settings.openai_api_key, settings.openai_model)

        self.hydration = HydrationManager(
            self.cache,
            self.pool,
            self.resolver,
            max_emails_per_folder=settings.max_emails_per_folder,
        )
        self.mutations = MutationCoordinator(
            self.cache,
            self.pool,
            self.resolver,
            self.hydration,
            self.profiles,
        )

    def authenticate(self, identity: Identity) -> None:
        """Open (or reuse) the identity's IMAP session; raises AuthError on bad credentials."""
        self.pool.imap(identity)
        log_operation(identity.key, "login")

    def validate_credentials(self, identity: Identity) -> bool:
        """Check credentials on a throwaway connection; nothing is pooled."""
        try:
            client = self._imap_factory(identity)
        except AuthError:
            log_operation(identity.key, "validate", valid=False)
            return False
        client.close()
        log_operation(identity.key, "validate", valid=True)
        return True

    def suggest_reply(self, identity: Identity, folder: str, uid: int, style: str = "formal") -> ReplySuggestion:
        if not self.assistant.is_configured():
            raise AssistantNotConfigured("AI replies are not configured (set OPENAI_API_KEY)")
        message = self.hydration.open_message(identity, folder, uid)
        suggestion = self.assistant.suggest_reply(message, style)
        log_operation(identity.key, "ai_response", uid=uid, style=style, tokens=suggestion.tokens)
        return suggestion

    def logout(self, identity: Identity) -> None:
        self.pool.close_identity(identity)
        self.cache.invalidate_all(identity.key)
        log_operation(identity.key, "logout")

    def clear_cache(self, identity: Identity) -> int:
        dropped = self.cache.invalidate_all(identity.key)
        log_operation(identity.key, "clear_cache", partitions=dropped)
        return dropped

    def reap_idle(self) -> int:
        self.cache.sweep()
        return self.pool.reap_idle()

    def shutdown(self) -> None:
        logger.info("Shutting down mail service")
        self.pool.shutdown()
        self.cache.clear()
