"""
Content sniffing and base64 payload decoding.

``sniff`` detects a mimetype from magic bytes with libmagic (python-magic).
It is the default ``Sniffer``; anything with the same call shape can be
injected instead.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .faults import MalformedUpload

SNIFF_BYTES = 2048

_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")

# Results that carry no information about the content
_GENERIC_MIMETYPES = frozenset({
    "application/octet-stream",
    "application/x-empty",
    "inode/x-empty",
})

_PREFERRED_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "application/pdf": "pdf",
    "text/plain": "txt",
    "application/json": "json",
}


@dataclass(frozen=True)
class SniffResult:
    """Detected content type."""
    mime: str
    extension: Optional[str] = None


Sniffer = Callable[[bytes], Optional[SniffResult]]


def guess_extension(mime: str) -> Optional[str]:
    """Preferred extension for a mimetype, without the leading dot."""
    if not mime:
        return None
    preferred = _PREFERRED_EXTENSIONS.get(mime)
    if preferred:
        return preferred
    guessed = mimetypes.guess_extension(mime)
    return guessed.lstrip(".") if guessed else None


def sniff(buffer: bytes) -> Optional[SniffResult]:
    """
    Detect the content type of ``buffer`` from its leading bytes.

    Returns:
        SniffResult, or None when the content type cannot be determined
    """
    if not buffer:
        return None

    try:
        import magic
    except ImportError:
        raise ImportError(
            "Content sniffing requires 'python-magic' and libmagic. "
            "Install with: pip install python-magic"
        )

    mime = magic.from_buffer(buffer[:SNIFF_BYTES], mime=True)
    if not mime or mime in _GENERIC_MIMETYPES:
        return None

    return SniffResult(mime=mime, extension=guess_extension(mime))


def decode_base64_payload(value: str) -> Tuple[bytes, Optional[SniffResult]]:
    """
    Decode a base64 string, honouring an optional data URI header.

    ``data:image/png;base64,iVBOR...`` yields the decoded bytes and the
    declared type; a bare base64 string yields the bytes and None.
    Missing padding and the URL-safe alphabet are accepted.

    Raises:
        MalformedUpload: The payload is not valid base64
    """
    declared: Optional[SniffResult] = None
    payload = value

    if "," in value:
        header, payload = value.split(",", 1)
        mime = header.replace("data:", "", 1).replace(";base64", "").strip()
        if mime:
            declared = SniffResult(mime=mime, extension=guess_extension(mime))

    payload = "".join(payload.split()).rstrip("=").translate(_URLSAFE_TO_STANDARD)
    if len(payload) % 4 == 1:
        # A lone trailing character carries no whole byte
        payload = payload[:-1]
    payload += "=" * (-len(payload) % 4)
    try:
        buffer = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedUpload(f"invalid base64 content ({exc})")

    return buffer, declared
