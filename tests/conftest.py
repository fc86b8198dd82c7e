"""
Shared test fixtures and helpers for the Stowage test suite.
"""

import asyncio
import base64
import random
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytest

from stowage.faults import StoreWriteFailed
from stowage.policy import UploadPolicy
from stowage.request import Request
from stowage.sniffing import SniffResult, guess_extension
from stowage.store import MemoryBlobStore


# ============================================================================
# Sample payloads
# ============================================================================

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + bytes(range(64))
PDF_BYTES = b"%PDF-1.7\n" + b"1 0 obj << /Type /Catalog >> endobj\n" * 4
GIF_BYTES = b"GIF89a" + bytes(range(32))
TEXT_BYTES = b"just some text, no magic here"

PNG_B64 = base64.b64encode(PNG_BYTES).decode()
PDF_B64 = base64.b64encode(PDF_BYTES).decode()

BOUNDARY = "stowageboundary1234"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


# ============================================================================
# Collaborator fakes
# ============================================================================

_SIGNATURES = (
    (b"\x89PNG", "image/png"),
    (b"%PDF", "application/pdf"),
    (b"GIF8", "image/gif"),
)


def fake_sniffer(buffer: bytes) -> Optional[SniffResult]:
    """Signature-table sniffer standing in for libmagic."""
    for prefix, mime in _SIGNATURES:
        if buffer.startswith(prefix):
            return SniffResult(mime=mime, extension=guess_extension(mime))
    return None


class RecordingStore(MemoryBlobStore):
    """Memory store that records every operation, optionally with random latency."""

    def __init__(self, *, rng: Optional[random.Random] = None, max_delay: float = 0.0):
        super().__init__()
        self.puts: List[Tuple[str, bytes, int]] = []
        self.appends: List[Tuple[str, bytes]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._rng = rng
        self._max_delay = max_delay

    async def _latency(self):
        if self._rng is not None and self._max_delay:
            await asyncio.sleep(self._rng.random() * self._max_delay)

    async def put(self, key, data, ttl):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self._latency()
            await super().put(key, data, ttl)
            self.puts.append((key, bytes(data), ttl))
        finally:
            self.in_flight -= 1

    async def append(self, key, chunk):
        await self._latency()
        await super().append(key, chunk)
        self.appends.append((key, bytes(chunk)))


class FailingStore(MemoryBlobStore):
    """Memory store that refuses writes of selected payloads."""

    def __init__(self, fail_on: Iterable[bytes] = (), *, fail_all: bool = False, error: Optional[Exception] = None):
        super().__init__()
        self.fail_on = set(fail_on)
        self.fail_all = fail_all
        self.error = error
        self.attempts = 0

    async def put(self, key, data, ttl):
        self.attempts += 1
        await asyncio.sleep(0)
        if self.fail_all or bytes(data) in self.fail_on:
            if self.error is not None:
                raise self.error
            raise StoreWriteFailed(key, "refused by test store")
        await super().put(key, data, ttl)


class GatedStore(MemoryBlobStore):
    """Memory store whose writes of gated payloads wait for ``release()``."""

    def __init__(self, gated: Iterable[bytes] = ()):
        super().__init__()
        self.gated = set(gated)
        self.gate = asyncio.Event()
        self.waiting = 0

    def release(self):
        self.gate.set()

    async def put(self, key, data, ttl):
        if bytes(data) in self.gated:
            self.waiting += 1
            await self.gate.wait()
            self.waiting -= 1
        await super().put(key, data, ttl)


# ============================================================================
# Request Helpers
# ============================================================================


def make_scope(
    method: str = "POST",
    path: str = "/upload",
    headers: Optional[List[tuple]] = None,
    content_type: Optional[str] = None,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if content_type is not None:
        raw_headers.append((b"content-type", content_type.encode("latin-1")))
    for name, value in headers or []:
        raw_headers.append(
            (name.encode("latin-1") if isinstance(name, str) else name,
             value.encode("latin-1") if isinstance(value, str) else value)
        )
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "headers": raw_headers,
        "scheme": "http",
        "server": ("127.0.0.1", 8000),
        "client": ("127.0.0.1", 12345),
        "root_path": "",
    }


class ChunkedReceive:
    """ASGI receive callable over a list of body chunks; records consumption."""

    def __init__(self, chunks: Sequence[bytes], *, disconnect_after: Optional[int] = None):
        self.messages = []
        for i, chunk in enumerate(chunks):
            self.messages.append({
                "type": "http.request",
                "body": chunk,
                "more_body": i < len(chunks) - 1,
            })
        if not self.messages:
            self.messages.append({"type": "http.request", "body": b"", "more_body": False})
        if disconnect_after is not None:
            self.messages = self.messages[:disconnect_after]
            self.messages[-1] = dict(self.messages[-1], more_body=True)
        self.calls = 0

    @property
    def exhausted(self) -> bool:
        return self.calls >= len(self.messages)

    async def __call__(self):
        if self.calls < len(self.messages):
            msg = self.messages[self.calls]
            self.calls += 1
            return msg
        self.calls += 1
        return {"type": "http.disconnect"}


def make_receive(body: bytes = b"", *, chunks: Optional[List[bytes]] = None) -> ChunkedReceive:
    """Create an ASGI receive callable from body bytes or chunked list."""
    return ChunkedReceive(chunks if chunks is not None else [body])


def split(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)] or [b""]


def make_request(
    body: bytes = b"",
    *,
    content_type: Optional[str] = None,
    chunk_size: Optional[int] = None,
    method: str = "POST",
    **kwargs,
) -> Request:
    """Build a Request over a (possibly chunked) body."""
    chunks = split(body, chunk_size) if chunk_size else [body]
    return Request(make_scope(method=method, content_type=content_type), make_receive(chunks=chunks), **kwargs)


# ============================================================================
# Multipart body builder
# ============================================================================


def field_part(name: str, value: str) -> dict:
    return {"name": name, "value": value.encode()}


def file_part(name: str, filename: str, content: bytes, content_type: str = "application/octet-stream", **headers) -> dict:
    return {"name": name, "filename": filename, "value": content, "content_type": content_type, "headers": headers}


def multipart_body(parts: Sequence[dict], boundary: str = BOUNDARY, *, close: bool = True) -> bytes:
    """Encode parts as multipart/form-data."""
    out = bytearray()
    for part in parts:
        out += f"--{boundary}\r\n".encode()
        disposition = f'form-data; name="{part["name"]}"'
        if "filename" in part:
            disposition += f'; filename="{part["filename"]}"'
        out += f"Content-Disposition: {disposition}\r\n".encode()
        if "content_type" in part:
            out += f"Content-Type: {part['content_type']}\r\n".encode()
        for header, value in (part.get("headers") or {}).items():
            out += f"{header.replace('_', '-')}: {value}\r\n".encode()
        out += b"\r\n"
        out += part["value"]
        out += b"\r\n"
    if close:
        out += f"--{boundary}--\r\n".encode()
    return bytes(out)


def multipart_content_type(boundary: str = BOUNDARY) -> str:
    return f"multipart/form-data; boundary={boundary}"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def avatar_policy():
    """One image field with a single file, one document field with two."""
    return UploadPolicy(
        enabled_fields=[
            {"field": "avatar", "mimetypes": ["image/"], "limits": {"files": 1}},
            {"field": "docs", "mimetypes": ["application/pdf"], "limits": {"files": 2}},
        ],
    ).resolve()
