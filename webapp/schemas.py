# schemas.py
import base64
import binascii
import re
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from mailadmin.compose import OutgoingAttachment, OutgoingEmail
from mailadmin.types import Identity

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _check_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_RE.match(v):
        raise ValueError("Invalid email format")
    return v


EmailAddress = Annotated[str, AfterValidator(_check_email)]


class Credentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailAddress
    password: str = Field(min_length=1)

    def identity(self) -> Identity:
        return Identity(email=self.email, password=self.password)


class LoginBody(Credentials):
    pass


class MoveBody(Credentials):
    uid: int = Field(ge=1)
    source_folder: str = Field(alias="sourceFolder", min_length=1)
    target_folder: str = Field(alias="targetFolder", min_length=1)


class AttachmentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    content: str
    content_type: str = Field(default="application/octet-stream", alias="contentType")

    @field_validator("content")
    @classmethod
    def _valid_base64(cls, v: str) -> str:
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Attachment content must be base64") from e
        return v

    def to_outgoing(self) -> OutgoingAttachment:
        return OutgoingAttachment(
            filename=self.filename,
            content=base64.b64decode(self.content),
            content_type=self.content_type,
        )


class DraftBody(Credentials):
    to: str = ""
    cc: Optional[str] = None
    bcc: Optional[str] = None
    subject: str = ""
    text: str = ""
    html: str = ""

    def to_outgoing(self) -> OutgoingEmail:
        return OutgoingEmail(
            to=self.to,
            cc=self.cc,
            bcc=self.bcc,
            subject=self.subject,
            text=self.text,
            html=self.html,
        )


class SendBody(DraftBody):
    to: str = Field(min_length=3)
    attachments: List[AttachmentIn] = Field(default_factory=list)

    def to_outgoing(self) -> OutgoingEmail:
        out = super().to_outgoing()
        out.attachments = [a.to_outgoing() for a in self.attachments]
        return out


class ReplyBody(Credentials):
    folder: str = "INBOX"
    uid: int = Field(ge=1)
    reply_text: str = Field(alias="replyText", min_length=1)


class AIResponseBody(Credentials):
    folder: str = "INBOX"
    uid: int = Field(ge=1)
    style: Literal["formal", "casual", "brief"] = "formal"


class ProfileBody(BaseModel):
    email: EmailAddress
    profile: Dict[str, Any]


class SignatureBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailAddress
    image_data: str = Field(alias="imageData")
