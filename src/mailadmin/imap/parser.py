# mailadmin/imap/parser.py
"""
Message decoder.

Turns raw transport data into models. Header values are normalised once,
here, into the PlainValue / AddressedValue / MultipleValue union so nothing
downstream inspects header shapes again.
"""
from __future__ import annotations

import imaplib
import time
from datetime import datetime, timezone
from email.message import EmailMessage as PyEmailMessage
from email.message import Message
from email.parser import BytesParser
from email.policy import default as default_policy
from typing import List, Optional, Tuple

from mailadmin.errors import DecodeFailure
from mailadmin.imap.bodystructure import extract_attachments, parse_bodystructure
from mailadmin.imap.fetch_response import RawMessage, RawSummary
from mailadmin.models import (
    AddressedValue,
    Attachment,
    AttachmentMeta,
    EmailMessage,
    EmailOverview,
    HeaderValue,
    MultipleValue,
    PlainValue,
)

NO_SUBJECT = "(No subject)"
UNKNOWN_SENDER = "Unknown"


def header_value(msg: Message, name: str) -> HeaderValue:
    raw = msg.get(name)
    if raw is None:
        return PlainValue("")

    addresses = getattr(raw, "addresses", None)
    if addresses is None:
        return PlainValue(str(raw).strip())

    values: List[HeaderValue] = [
        AddressedValue(name=a.display_name or "", address=a.addr_spec or "")
        for a in addresses
    ]
    if not values:
        return PlainValue(str(raw).strip())
    if len(values) == 1:
        return values[0]
    return MultipleValue(tuple(values))


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_date(msg: Message, internaldate_raw: Optional[str] = None) -> Optional[datetime]:
    raw = msg.get("Date")
    dt = getattr(raw, "datetime", None) if raw is not None else None
    if isinstance(dt, datetime):
        return _as_utc(dt)

    if internaldate_raw:
        # Internaldate2tuple answers in local time
        tt = imaplib.Internaldate2tuple(f'INTERNALDATE "{internaldate_raw}"'.encode())
        if tt is not None:
            return datetime.fromtimestamp(time.mktime(tt), tz=timezone.utc)
    return None


def _parse_bytes(raw: bytes) -> PyEmailMessage:
    return BytesParser(policy=default_policy).parsebytes(raw)


def _summary_attachments(bodystructure: Optional[str]) -> Tuple[AttachmentMeta, ...]:
    if not bodystructure:
        return ()
    try:
        return tuple(extract_attachments(parse_bodystructure(bodystructure)))
    except ValueError:
        return ()


def decode_summary(raw: RawSummary, mailbox: str) -> EmailOverview:
    if raw.header_bytes is None:
        raise DecodeFailure(f"uid={raw.uid}: no header data")
    try:
        msg = _parse_bytes(raw.header_bytes)
        subject = str(msg.get("Subject") or "").strip()
        from_addr = header_value(msg, "From")
        to = header_value(msg, "To")
        date = parse_date(msg, raw.internaldate)
    except Exception as e:
        raise DecodeFailure(f"uid={raw.uid}: {e}") from e

    return EmailOverview(
        uid=raw.uid,
        mailbox=mailbox,
        subject=subject or NO_SUBJECT,
        from_addr=from_addr if from_addr.display() else PlainValue(UNKNOWN_SENDER),
        to=to if to.display() else PlainValue(UNKNOWN_SENDER),
        date=date,
        flags=frozenset(raw.flags),
        size=raw.size,
        attachments=_summary_attachments(raw.bodystructure),
    )


def _body_text(msg: PyEmailMessage, subtype: str) -> Tuple[str, Optional[Message]]:
    part = msg.get_body(preferencelist=(subtype,))
    if part is None:
        return "", None
    try:
        return part.get_content(), part
    except (LookupError, UnicodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace"), part


def _attachments(msg: PyEmailMessage, body_parts: Tuple[Optional[Message], ...]) -> Tuple[Attachment, ...]:
    out: List[Attachment] = []
    for part in msg.walk():
        if part.is_multipart() or any(part is b for b in body_parts if b is not None):
            continue
        disposition = part.get_content_disposition()
        filename = part.get_filename()
        is_attachment = disposition == "attachment" or (
            filename is not None and (disposition == "inline" or part.get_content_maintype() != "text")
        )
        if not is_attachment:
            continue

        index = len(out)
        data = part.get_payload(decode=True)
        cid = part.get("Content-ID")
        out.append(
            Attachment(
                index=index,
                filename=filename or f"attachment_{index}",
                content_type=part.get_content_type() or "application/octet-stream",
                size=len(data) if data is not None else 0,
                data=data,
                cid=str(cid).strip().strip("<>") if cid else None,
            )
        )
    return tuple(out)


def decode_message(raw: RawMessage, mailbox: str) -> EmailMessage:
    try:
        msg = _parse_bytes(raw.raw)
        text, text_part = _body_text(msg, "plain")
        html, html_part = _body_text(msg, "html")
        attachments = _attachments(msg, (text_part, html_part))
        subject = str(msg.get("Subject") or "").strip()
        message_id = msg.get("Message-ID")
        references = msg.get("References")

        return EmailMessage(
            uid=raw.uid,
            mailbox=mailbox,
            subject=subject or NO_SUBJECT,
            from_addr=header_value(msg, "From"),
            to=header_value(msg, "To"),
            cc=header_value(msg, "Cc"),
            bcc=header_value(msg, "Bcc"),
            date=parse_date(msg, raw.internaldate),
            flags=frozenset(raw.flags),
            size=raw.size or len(raw.raw),
            text=text,
            html=html,
            message_id=str(message_id).strip() if message_id else None,
            references=str(references).strip() if references else None,
            attachments=attachments,
        )
    except DecodeFailure:
        raise
    except Exception as e:
        raise DecodeFailure(f"uid={raw.uid}: {e}") from e
