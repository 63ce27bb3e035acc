from __future__ import annotations

from typing import Dict, Mapping

from mailadmin.errors import UnknownFolder

INBOX = "INBOX"
SENT = "SENT"
DRAFTS = "DRAFTS"
TRASH = "TRASH"
JUNK = "JUNK"


class FolderResolver:
    """
    Maps alias keys (``SENT``) and canonical names (``INBOX.Sent``) to the
    canonical wire name. Every core operation resolves once, at entry.
    """

    def __init__(self, folders: Mapping[str, str]):
        self._aliases: Dict[str, str] = {k.upper(): v for k, v in folders.items()}
        self._canonical = {v.lower(): v for v in self._aliases.values()}

    def resolve(self, name: str) -> str:
        if not name or not name.strip():
            raise UnknownFolder("Folder name required")
        key = name.strip()
        hit = self._aliases.get(key.upper())
        if hit is not None:
            return hit
        hit = self._canonical.get(key.lower())
        if hit is not None:
            return hit
        raise UnknownFolder(f"Unknown folder: {name!r}")

    def canonical(self, alias: str) -> str:
        return self._aliases[alias.upper()]

    @property
    def trash(self) -> str:
        return self.canonical(TRASH)

    @property
    def sent(self) -> str:
        return self.canonical(SENT)

    @property
    def drafts(self) -> str:
        return self.canonical(DRAFTS)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._aliases)
