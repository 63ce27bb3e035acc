from mailadmin.models.attachment import Attachment, AttachmentMeta
from mailadmin.models.header import AddressedValue, HeaderValue, MultipleValue, PlainValue
from mailadmin.models.message import EmailMessage, EmailOverview

__all__ = [
    "AddressedValue",
    "Attachment",
    "AttachmentMeta",
    "EmailMessage",
    "EmailOverview",
    "HeaderValue",
    "MultipleValue",
    "PlainValue",
]
