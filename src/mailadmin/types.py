from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Identity:
    email: str
    password: str = field(repr=False)

    @property
    def key(self) -> str:
        return self.email.strip().lower()


@dataclass(frozen=True)
class EmailRef:
    uid: int
    mailbox: str


@dataclass(frozen=True)
class SendResult:
    message_id: Optional[str]
    response: str = ""

    def to_dict(self) -> dict:
        return {"messageId": self.message_id, "response": self.response}
