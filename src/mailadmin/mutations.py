# mailadmin/mutations.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from mailadmin.cache import ListingCache
from mailadmin.compose import OutgoingEmail, build_message, build_reply
from mailadmin.folders import FolderResolver
from mailadmin.hydration import HydrationManager
from mailadmin.logging_setup import log_failure, log_operation
from mailadmin.models.message import SEEN
from mailadmin.pool import ConnectionPool
from mailadmin.profiles import ProfileStore
from mailadmin.types import EmailRef, Identity, SendResult

logger = logging.getLogger(__name__)

DRAFT = r"\Draft"


@contextmanager
def _operation(identity: Identity, name: str) -> Iterator[None]:
    try:
        yield
    except Exception as e:
        log_failure(identity.key, name, e)
        raise


class MutationCoordinator:
    """
    Server-side mutations. Each one invalidates the partitions whose
    membership it changed, and only after the transport reports success.
    """

    def __init__(
        self,
        cache: ListingCache,
        pool: ConnectionPool,
        resolver: FolderResolver,
        hydration: HydrationManager,
        profiles: ProfileStore,
    ):
        self.cache = cache
        self.pool = pool
        self.resolver = resolver
        self.hydration = hydration
        self.profiles = profiles

    def move_message(self, identity: Identity, uid: int, source: str, target: str) -> None:
        src = self.resolver.resolve(source)
        dst = self.resolver.resolve(target)
        if src == dst:
            return

        with _operation(identity, "move_email"):
            self.pool.imap(identity).move(src, uid, dst)

        self.cache.invalidate(identity.key, src)
        self.cache.invalidate(identity.key, dst)
        log_operation(identity.key, "move_email", uid=uid, source=src, target=dst)

    def delete_message(self, identity: Identity, uid: int, folder: str) -> bool:
        """
        Move to Trash, or expunge when already in Trash.
        Returns True when the message was removed permanently.
        """
        src = self.resolver.resolve(folder)
        trash = self.resolver.trash

        if src != trash:
            with _operation(identity, "delete_email"):
                self.pool.imap(identity).move(src, uid, trash)
            self.cache.invalidate(identity.key, src)
            self.cache.invalidate(identity.key, trash)
            log_operation(identity.key, "delete_email", uid=uid, folder=src, permanent=False)
            return False

        with _operation(identity, "delete_email"):
            self.pool.imap(identity).delete_permanently(trash, uid)
        self.cache.invalidate(identity.key, trash)
        log_operation(identity.key, "delete_email", uid=uid, folder=trash, permanent=True)
        return True

    def send_message(self, identity: Identity, data: OutgoingEmail) -> SendResult:
        with _operation(identity, "send_email"):
            profile = self.profiles.get_profile(identity.email)
            image = self.profiles.signature_image(identity.email) if profile.get("signature_enabled") else None
            msg = build_message(
                identity.email,
                data,
                signature_html=self.profiles.signature_html(profile, with_image=image is not None),
                signature_image=image[0] if image else None,
                signature_subtype=image[1] if image else "png",
            )
            result = self.pool.smtp(identity).send(msg)

        sent = self.resolver.sent
        try:
            self.pool.imap(identity).append(sent, msg, flags={SEEN})
        except Exception as e:
            logger.warning("Sent, but saving a copy to %s failed for %s: %s", sent, identity.key, e)
        self.cache.invalidate(identity.key, sent)

        log_operation(
            identity.key,
            "send_email",
            to=data.to,
            message_id=result.message_id,
            signature=bool(profile.get("signature_enabled")),
        )
        return result

    def save_draft(self, identity: Identity, data: OutgoingEmail) -> Optional[EmailRef]:
        drafts = self.resolver.drafts
        with _operation(identity, "save_draft"):
            msg = build_message(identity.email, data)
            ref = self.pool.imap(identity).append(drafts, msg, flags={DRAFT})

        self.cache.invalidate(identity.key, drafts)
        log_operation(identity.key, "save_draft", folder=drafts)
        return ref

    def reply_to_message(self, identity: Identity, folder: str, uid: int, body: str) -> SendResult:
        original = self.hydration.open_message(identity, folder, uid)
        return self.send_message(identity, build_reply(original, body))
