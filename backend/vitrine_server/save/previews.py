"""
Persistence of inline preview images.

Clients send previews as data URIs. Before a document is stored, the
image is written to <upload_dir>/previews/<kind>/<id>.<ext> and the field
is replaced with its public path.

Invariants:
    - Stored documents never contain data URIs
    - The public path of a document's preview is stable across saves
    - Files are only ever written below <upload_dir>/previews
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_DATA_URI = re.compile(r"^data:image/(?P<ext>[a-z0-9.+-]+);base64,(?P<data>.*)$", re.DOTALL)
_EXTENSIONS = {"jpeg": "jpg", "svg+xml": "svg"}


class PreviewStore:
    """Writes data-URI previews into the upload directory."""

    def __init__(self, upload_dir: str, public_prefix: str = "") -> None:
        self.upload_dir = Path(upload_dir)
        self.public_prefix = public_prefix.rstrip("/")

    async def persist(self, preview: Optional[str], kind: str, ident: str) -> Optional[str]:
        """Store a preview and return the value to keep in the document.

        Args:
            preview: Data URI, URL, path or None
            kind: Sub-folder (collection of the owning document)
            ident: Identifier of the owning document

        Returns:
            Public path for data URIs; the path part of absolute URLs that
            point into /previews/; anything else unchanged
        """
        if not isinstance(preview, str):
            return preview

        match = _DATA_URI.match(preview)
        if match is None:
            index = preview.find("/previews/")
            if preview.startswith("http") and index >= 0:
                return self.public_prefix + preview[index:]
            return preview

        try:
            payload = base64.b64decode(match.group("data"), validate=True)
        except binascii.Error as e:
            logger.warning(f"Discarding undecodable preview for {kind} {ident}: {e}")
            return None

        ext = _EXTENSIONS.get(match.group("ext"), match.group("ext"))
        relative = Path("previews") / kind / f"{ident}.{ext}"
        target = self.upload_dir / relative
        if not target.resolve().is_relative_to(self.upload_dir.resolve() / "previews"):
            logger.warning(f"Refusing preview for {kind} {ident}: path leaves the upload directory")
            return None
        try:
            await asyncio.to_thread(_write, target, payload)
        except OSError as e:
            logger.error(f"Could not write preview for {kind} {ident}: {e}")
            return None
        logger.debug(f"Stored preview for {kind} {ident} at {target}")
        return f"{self.public_prefix}/{relative.as_posix()}"


def _write(target: Path, payload: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload)
