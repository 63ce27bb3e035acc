from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional, Tuple

from mailadmin.models.attachment import Attachment, AttachmentMeta
from mailadmin.models.header import EMPTY, HeaderValue

SEEN = r"\Seen"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


@dataclass(frozen=True)
class EmailMessage:
    """Fully hydrated message: bodies plus attachment bytes."""

    uid: int
    mailbox: str
    subject: str
    from_addr: HeaderValue = EMPTY
    to: HeaderValue = EMPTY
    cc: HeaderValue = EMPTY
    bcc: HeaderValue = EMPTY
    date: Optional[datetime] = None
    flags: FrozenSet[str] = frozenset()
    size: int = 0
    text: str = ""
    html: str = ""
    message_id: Optional[str] = None
    references: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()

    @property
    def seen(self) -> bool:
        return SEEN in self.flags

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "folder": self.mailbox,
            "subject": self.subject,
            "from": self.from_addr.display(),
            "to": self.to.display(),
            "cc": self.cc.display(),
            "bcc": self.bcc.display(),
            "date": _iso(self.date),
            "flags": sorted(self.flags),
            "seen": self.seen,
            "size": self.size,
            "text": self.text,
            "html": self.html,
            "message_id": self.message_id,
            "attachments": [a.to_dict() for a in self.attachments],
        }


@dataclass(frozen=True)
class EmailOverview:
    """
    Listing entry. ``detail`` is set once the message has been opened;
    summary fields are never rewritten by hydration.
    """

    uid: int
    mailbox: str
    subject: str
    from_addr: HeaderValue = EMPTY
    to: HeaderValue = EMPTY
    date: Optional[datetime] = None
    flags: FrozenSet[str] = frozenset()
    size: int = 0
    attachments: Tuple[AttachmentMeta, ...] = ()
    detail: Optional[EmailMessage] = field(default=None, compare=False, repr=False)

    @property
    def seen(self) -> bool:
        return SEEN in self.flags

    @property
    def sort_date(self) -> datetime:
        return self.date or _EPOCH

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "folder": self.mailbox,
            "subject": self.subject,
            "from": self.from_addr.first(),
            "to": self.to.first(),
            "date": _iso(self.date),
            "flags": sorted(self.flags),
            "seen": self.seen,
            "size": self.size,
            "attachments": [a.to_dict() for a in self.attachments],
        }
