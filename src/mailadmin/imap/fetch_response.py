# mailadmin/imap/fetch_response.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional

_NEW_MESSAGE = re.compile(r"^\d+ \(")
_LITERAL_NAME = re.compile(
    r"(BODY\[[^\]]*\](?:<\d+>)?|RFC822(?:\.HEADER|\.TEXT)?)\s*\{\d+\}\s*$",
    re.IGNORECASE,
)
_LITERAL_MARKER = re.compile(r"\{\d+\}\s*$")
_UID = re.compile(r"\bUID (\d+)")
_FLAGS = re.compile(r"\bFLAGS \(([^)]*)\)")
_SIZE = re.compile(r"\bRFC822\.SIZE (\d+)")
_INTERNALDATE = re.compile(r'\bINTERNALDATE "([^"]+)"')


@dataclass(frozen=True)
class RawSummary:
    """Undecoded listing data for one message, as returned by the transport."""

    uid: int
    flags: FrozenSet[str] = frozenset()
    size: int = 0
    internaldate: Optional[str] = None
    header_bytes: Optional[bytes] = None
    bodystructure: Optional[str] = None


@dataclass(frozen=True)
class RawMessage:
    uid: int
    flags: FrozenSet[str] = frozenset()
    size: int = 0
    internaldate: Optional[str] = None
    raw: bytes = b""


@dataclass
class FetchItem:
    meta: str = ""
    literals: Dict[str, bytes] = field(default_factory=dict)

    @property
    def uid(self) -> Optional[int]:
        m = _UID.search(self.meta)
        return int(m.group(1)) if m else None

    @property
    def flags(self) -> FrozenSet[str]:
        m = _FLAGS.search(self.meta)
        if not m:
            return frozenset()
        return frozenset(f for f in m.group(1).split() if f)

    @property
    def size(self) -> int:
        m = _SIZE.search(self.meta)
        return int(m.group(1)) if m else 0

    @property
    def internaldate(self) -> Optional[str]:
        m = _INTERNALDATE.search(self.meta)
        return m.group(1) if m else None

    @property
    def bodystructure(self) -> Optional[str]:
        return extract_parenthesized(self.meta, "BODYSTRUCTURE")

    def literal(self, name: str) -> Optional[bytes]:
        return self.literals.get(name.upper())


def _decode(b: bytes) -> str:
    return b.decode("utf-8", errors="replace")


def _quote(s: str) -> str:
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


def group_fetch_response(data: Iterable[object]) -> List[FetchItem]:
    """
    Regroup imaplib's flat FETCH response (tuples for literals, bytes for the
    rest) into one FetchItem per message.
    """
    items: List[FetchItem] = []
    current: Optional[FetchItem] = None

    for piece in data:
        if isinstance(piece, tuple) and len(piece) >= 2:
            meta = _decode(piece[0]) if isinstance(piece[0], bytes) else str(piece[0])
            if current is None or _NEW_MESSAGE.match(meta):
                current = FetchItem()
                items.append(current)
            payload = piece[1]
            m = _LITERAL_NAME.search(meta)
            if m and isinstance(payload, (bytes, bytearray)):
                current.meta += meta + " "
                name = m.group(1).upper()
                name = re.sub(r"<\d+>$", "", name)
                current.literals[name] = bytes(payload)
            elif isinstance(payload, (bytes, bytearray)) and _LITERAL_MARKER.search(meta):
                # A literal inside a structure (e.g. a BODYSTRUCTURE filename);
                # inline it as a quoted string so the structure stays balanced.
                current.meta += _LITERAL_MARKER.sub("", meta) + _quote(_decode(bytes(payload)))
            else:
                current.meta += meta + " "
        elif isinstance(piece, (bytes, bytearray)):
            text = _decode(bytes(piece))
            if _NEW_MESSAGE.match(text):
                current = FetchItem(meta=text + " ")
                items.append(current)
            elif current is not None:
                current.meta += text + " "

    return items


def extract_parenthesized(text: str, keyword: str) -> Optional[str]:
    """Return the balanced ``(...)`` group following ``keyword``, quotes respected."""
    idx = text.find(keyword + " (")
    if idx == -1:
        return None
    start = idx + len(keyword) + 1
    depth = 0
    in_quote = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_quote = False
            continue
        if ch == '"':
            in_quote = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None
