from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AttachmentMeta:
    filename: str
    content_type: str
    size: int = 0

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "size": self.size,
        }


@dataclass(frozen=True)
class Attachment:
    index: int
    filename: str
    content_type: str
    size: int
    data: Optional[bytes] = None
    cid: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"Attachment("
            f"filename={self.filename!r}, "
            f"content_type={self.content_type!r}, "
            f"data_size={len(self.data) if self.data is not None else 0} bytes)"
        )

    def meta(self) -> AttachmentMeta:
        return AttachmentMeta(filename=self.filename, content_type=self.content_type, size=self.size)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "filename": self.filename,
            "content_type": self.content_type,
            "size": self.size,
            "cid": self.cid,
        }
