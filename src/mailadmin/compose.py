# mailadmin/compose.py
from __future__ import annotations

import html
from dataclasses import dataclass, field
from email.message import EmailMessage as PyEmailMessage
from email.utils import formatdate, make_msgid
from typing import List, Optional

from mailadmin.imap.parser import NO_SUBJECT
from mailadmin.models import EmailMessage

REPLY_PREFIX = "Re: "


@dataclass(frozen=True)
class OutgoingAttachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class OutgoingEmail:
    to: str = ""
    subject: str = ""
    text: str = ""
    html: str = ""
    cc: Optional[str] = None
    bcc: Optional[str] = None
    attachments: List[OutgoingAttachment] = field(default_factory=list)
    in_reply_to: Optional[str] = None
    references: Optional[str] = None


def text_to_html(text: str) -> str:
    if not text:
        return ""
    return "<p>" + html.escape(text).replace("\n", "<br>") + "</p>"


def _domain(addr: str) -> Optional[str]:
    _, _, domain = addr.rpartition("@")
    return domain or None


def build_message(
    from_addr: str,
    data: OutgoingEmail,
    *,
    signature_html: str = "",
    signature_image: Optional[bytes] = None,
    signature_subtype: str = "png",
) -> PyEmailMessage:
    """
    Build a MIME message: plain and html alternatives, the signature image
    as a related ``cid:signature`` part, then the file attachments.
    """
    msg = PyEmailMessage()
    msg["From"] = from_addr
    if data.to:
        msg["To"] = data.to
    if data.cc:
        msg["Cc"] = data.cc
    if data.bcc:
        msg["Bcc"] = data.bcc
    msg["Subject"] = data.subject or NO_SUBJECT
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=_domain(from_addr))
    if data.in_reply_to:
        msg["In-Reply-To"] = data.in_reply_to
    if data.references:
        msg["References"] = data.references

    html_body = (data.html or text_to_html(data.text)) + signature_html

    msg.set_content(data.text or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")
        if signature_image is not None:
            html_part = msg.get_body(preferencelist=("html",))
            html_part.add_related(
                signature_image,
                maintype="image",
                subtype=signature_subtype,
                cid="<signature>",
                filename=f"signature.{signature_subtype}",
                disposition="inline",
            )

    for att in data.attachments:
        maintype, _, subtype = att.content_type.partition("/")
        if not subtype:
            maintype, subtype = "application", "octet-stream"
        msg.add_attachment(att.content, maintype=maintype, subtype=subtype, filename=att.filename)

    return msg


def reply_subject(subject: str) -> str:
    if subject.lower().startswith(REPLY_PREFIX.lower()):
        return subject
    return REPLY_PREFIX + subject


def build_reply(original: EmailMessage, body: str) -> OutgoingEmail:
    addresses = original.from_addr.addresses()
    to = addresses[0] if addresses else original.from_addr.first()

    references = None
    if original.message_id:
        references = (
            f"{original.references} {original.message_id}"
            if original.references
            else original.message_id
        )

    return OutgoingEmail(
        to=to,
        subject=reply_subject(original.subject),
        text=body,
        html=text_to_html(body),
        in_reply_to=original.message_id,
        references=references,
    )
