# mailadmin/profiles.py
"""
File-based user profiles and signatures.

Profiles live as ``<data_dir>/profiles/<email>.json``; signature images as
``<data_dir>/signatures/signature_<sanitised email>.<ext>``.
"""
from __future__ import annotations

import base64
import binascii
import html
import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_DATA_URI = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)
_UNSAFE = re.compile(r"[^a-zA-Z0-9]")

PROFILE_FIELDS = ("name", "position", "company", "phone", "website")


def default_profile() -> Dict[str, Any]:
    profile: Dict[str, Any] = {k: "" for k in PROFILE_FIELDS}
    profile["signature_enabled"] = False
    profile["signature_image"] = None
    return profile


def _sanitise(email: str) -> str:
    return _UNSAFE.sub("_", email.strip().lower())


class ProfileStore:
    def __init__(self, data_dir: Path):
        self.profiles_dir = Path(data_dir) / "profiles"
        self.signatures_dir = Path(data_dir) / "signatures"
        self._lock = threading.Lock()
        self.profiles_dir.mkdir(parents=True, exist_ok=True)
        self.signatures_dir.mkdir(parents=True, exist_ok=True)

    def _profile_path(self, email: str) -> Path:
        return self.profiles_dir / f"{_sanitise(email)}.json"

    def get_profile(self, email: str) -> Dict[str, Any]:
        path = self._profile_path(email)
        profile = default_profile()
        try:
            stored = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return profile
        except (OSError, ValueError) as e:
            logger.warning("Unreadable profile for %s, using defaults: %s", email, e)
            return profile
        if isinstance(stored, dict):
            profile.update({k: v for k, v in stored.items() if k in profile})
        return profile

    def save_profile(self, email: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        merged = self.get_profile(email)
        merged.update({k: v for k, v in profile.items() if k in merged})
        path = self._profile_path(email)
        tmp = path.with_suffix(".json.tmp")
        with self._lock:
            tmp.write_text(json.dumps(merged, indent=2), encoding="utf-8")
            tmp.replace(path)
        logger.info("Profile saved for %s", email)
        return merged

    def save_signature_image(self, email: str, data_uri: str) -> Path:
        """
        Decode a base64 ``data:`` URI and store it as the user's signature.
        Raises ValueError for anything that is not a png/jpeg data URI.
        """
        m = _DATA_URI.match(data_uri.strip())
        if not m:
            raise ValueError("Invalid image format")
        mime = m.group(1).lower()
        if "png" in mime:
            ext = "png"
        elif "jpeg" in mime or "jpg" in mime:
            ext = "jpg"
        else:
            raise ValueError(f"Unsupported image type: {mime}")
        try:
            data = base64.b64decode(m.group(2), validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Invalid base64 image data") from e
        if not data:
            raise ValueError("Empty image")

        with self._lock:
            for old in self.signatures_dir.glob(f"signature_{_sanitise(email)}.*"):
                old.unlink()
            path = self.signatures_dir / f"signature_{_sanitise(email)}.{ext}"
            path.write_bytes(data)

        self.save_profile(email, {"signature_image": path.name})
        logger.info("Signature image saved for %s", email)
        return path

    def signature_image_path(self, email: str) -> Optional[Path]:
        for ext in ("png", "jpg"):
            path = self.signatures_dir / f"signature_{_sanitise(email)}.{ext}"
            if path.is_file():
                return path
        return None

    def signature_image(self, email: str) -> Optional[Tuple[bytes, str]]:
        """Image bytes and MIME subtype, or None."""
        path = self.signature_image_path(email)
        if path is None:
            return None
        subtype = "jpeg" if path.suffix == ".jpg" else "png"
        return path.read_bytes(), subtype

    def signature_html(self, profile: Dict[str, Any], *, with_image: Optional[bool] = None) -> str:
        if not profile.get("signature_enabled"):
            return ""
        if with_image is None:
            with_image = bool(profile.get("signature_image"))

        out = ['<div style="margin-top: 20px; padding-top: 20px; border-top: 1px solid #e0e0e0;">']
        if with_image:
            out.append('<img src="cid:signature" alt="Signature" style="max-width: 400px; height: auto;" />')
        else:
            out.append('<div style="font-family: Arial, sans-serif; font-size: 12px; color: #666;">')
            e = {k: html.escape(str(profile.get(k) or "")) for k in PROFILE_FIELDS}
            if e["name"]:
                out.append(f'<div style="font-weight: bold; color: #333; margin-bottom: 5px;">{e["name"]}</div>')
            if e["position"]:
                out.append(f'<div style="margin-bottom: 2px;">{e["position"]}</div>')
            if e["company"]:
                out.append(f'<div style="margin-bottom: 2px;">{e["company"]}</div>')
            if e["phone"]:
                out.append(f'<div style="margin-bottom: 2px;">Tel: {e["phone"]}</div>')
            if e["website"]:
                out.append(f'<div><a href="{e["website"]}" style="color: #0066cc;">{e["website"]}</a></div>')
            out.append("</div>")
        out.append("</div>")
        return "".join(out)
