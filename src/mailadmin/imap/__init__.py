from .client import IMAPClient
from .fetch_response import RawMessage, RawSummary
from .parser import decode_message, decode_summary

__all__ = [
    "IMAPClient",
    "RawMessage",
    "RawSummary",
    "decode_message",
    "decode_summary",
]
