# mailadmin/imap/bodystructure.py
from __future__ import annotations

from typing import Dict, List, Optional, Union

from mailadmin.models import AttachmentMeta

Node = Union[None, str, List["Node"]]


def _tokenize(s: str) -> List[str]:
    tokens: List[str] = []
    i = 0
    n = len(s)
    while i < n:
        ch = s[i]
        if ch in " \t\r\n":
            i += 1
        elif ch in "()":
            tokens.append(ch)
            i += 1
        elif ch == '"':
            i += 1
            buf = []
            while i < n and s[i] != '"':
                if s[i] == "\\" and i + 1 < n:
                    i += 1
                buf.append(s[i])
                i += 1
            i += 1
            tokens.append('"' + "".join(buf))
        elif ch == "{":
            # size marker of a literal that was not inlined
            end = s.find("}", i)
            i = n if end == -1 else end + 1
        else:
            start = i
            while i < n and s[i] not in ' \t\r\n()"':
                i += 1
            tokens.append(s[start:i])
    return tokens


def parse_bodystructure(s: str) -> Node:
    """Parse a BODYSTRUCTURE s-expression. Strings keep no quotes; NIL is None."""
    tokens = _tokenize(s)
    pos = 0

    def _parse() -> Node:
        nonlocal pos
        if pos >= len(tokens):
            raise ValueError("unexpected end of BODYSTRUCTURE")
        tok = tokens[pos]
        pos += 1
        if tok == "(":
            out: List[Node] = []
            while pos < len(tokens) and tokens[pos] != ")":
                out.append(_parse())
            if pos >= len(tokens):
                raise ValueError("unbalanced BODYSTRUCTURE")
            pos += 1
            return out
        if tok == ")":
            raise ValueError("unexpected ')' in BODYSTRUCTURE")
        if tok.startswith('"'):
            return tok[1:]
        if tok.upper() == "NIL":
            return None
        return tok

    return _parse()


def _params(node: Node) -> Dict[str, str]:
    if not isinstance(node, list):
        return {}
    out: Dict[str, str] = {}
    for i in range(0, len(node) - 1, 2):
        k, v = node[i], node[i + 1]
        if isinstance(k, str) and isinstance(v, str):
            out[k.lower()] = v
    return out


def _disposition(part: List[Node]) -> Optional[List[Node]]:
    for el in part[7:]:
        if (
            isinstance(el, list)
            and len(el) >= 1
            and isinstance(el[0], str)
            and el[0].lower() in ("attachment", "inline")
        ):
            return el
    return None


def _to_int(node: Node) -> int:
    try:
        return int(node) if isinstance(node, str) else 0
    except ValueError:
        return 0


def extract_attachments(tree: Node) -> List[AttachmentMeta]:
    out: List[AttachmentMeta] = []

    def _walk(node: Node) -> None:
        if not isinstance(node, list) or not node:
            return
        if isinstance(node[0], list):
            for child in node:
                if isinstance(child, list):
                    _walk(child)
            return
        if len(node) < 7:
            return

        maintype = (node[0] or "").lower() if isinstance(node[0], str) else ""
        subtype = (node[1] or "").lower() if isinstance(node[1], str) else ""
        params = _params(node[2])
        size = _to_int(node[6])

        disp = _disposition(node)
        filename: Optional[str] = None
        if disp is not None:
            filename = _params(disp[1] if len(disp) > 1 else None).get("filename") or params.get("name")
        elif params.get("name") and maintype != "text":
            filename = params["name"]

        if filename:
            out.append(
                AttachmentMeta(
                    filename=filename,
                    content_type=f"{maintype}/{subtype}",
                    size=size,
                )
            )

    _walk(tree)
    return out
