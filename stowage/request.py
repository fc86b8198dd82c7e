"""
Request - ASGI request wrapper for upload endpoints.

Provides:
- Async request object wrapping ASGI scope/receive
- Streaming body access with a max body size and disconnect detection
- JSON parsing
- Draining of unread input so rejected uploads never stall the client
- Write-once accepted-file list for downstream handlers
"""

from __future__ import annotations

import json as stdlib_json
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Dict, Mapping,
    Optional, Sequence, Tuple, TYPE_CHECKING,
)

from ._datastructures import Headers, ParsedContentType
from .faults import FaultDomain, IngestionFault, Severity

if TYPE_CHECKING:
    from .pipeline import AcceptedFile


# ============================================================================
# Request Faults
# ============================================================================

class RequestFault(IngestionFault):
    """Base class for request body faults."""
    code = "BAD_REQUEST"
    message = "Bad request"
    status = 400

    def __init__(self, message: Optional[str] = None, *, severity: Optional[Severity] = None, **metadata):
        super().__init__(
            code=type(self).code,
            message=message or type(self).message,
            domain=FaultDomain.IO,
            severity=severity,
            metadata=metadata,
        )


class PayloadTooLarge(RequestFault):
    """Request payload exceeds limits (413)."""
    code = "PAYLOAD_TOO_LARGE"
    message = "Payload too large"
    status = 413


class ClientDisconnect(RequestFault):
    """Client disconnected during request (499)."""
    code = "CLIENT_DISCONNECT"
    message = "Client disconnected"
    status = 499

    def __init__(self, message: Optional[str] = None, **metadata):
        super().__init__(message, severity=Severity.WARN, **metadata)


class InvalidJSON(RequestFault):
    """Invalid JSON payload (400)."""
    code = "INVALID_JSON"
    message = "Invalid JSON"


# ============================================================================
# Request Class
# ============================================================================

class Request:
    """
    Request object for upload endpoints.

    The body is a single-pass stream: ``iter_bytes`` hands out chunks as
    they arrive, ``body`` buffers them, ``drain`` discards whatever was not
    read.
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[dict]],
        send: Optional[Callable] = None,
        *,
        max_body_size: int = 10_485_760,  # 10 MiB
    ):
        """
        Initialize Request.

        Args:
            scope: ASGI scope dict
            receive: ASGI receive callable
            send: ASGI send callable (optional)
            max_body_size: Maximum request body size in bytes
        """
        self.scope = scope
        self._receive = receive
        self._send = send
        self.max_body_size = max_body_size

        # State
        self.state: Dict[str, Any] = {}

        # Cached values
        self._headers: Optional[Headers] = None
        self._body: Optional[bytes] = None
        self._json: Any = None
        self._json_loaded = False
        self._stream_started = False
        self._stream_complete = False
        self._disconnected = False
        self._files: Optional[Tuple["AcceptedFile", ...]] = None

    # ========================================================================
    # Basic Properties
    # ========================================================================

    @property
    def method(self) -> str:
        return self.scope.get("method", "GET")

    @property
    def path(self) -> str:
        return self.scope.get("path", "/")

    @property
    def client(self) -> Optional[tuple]:
        return self.scope.get("client")

    @property
    def headers(self) -> Headers:
        """Get request headers (case-insensitive)."""
        if self._headers is None:
            self._headers = Headers(raw=list(self.scope.get("headers", [])))
        return self._headers

    def content_type(self) -> Optional[str]:
        """Raw Content-Type header."""
        return self.headers.get("content-type")

    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    # ========================================================================
    # Body Streaming
    # ========================================================================

    async def _receive_message(self) -> dict:
        message = await self._receive()
        if message["type"] == "http.disconnect":
            self._disconnected = True
            self._stream_complete = True
            raise ClientDisconnect("Client disconnected")
        return message

    def is_disconnected(self) -> bool:
        return self._disconnected

    @property
    def body_complete(self) -> bool:
        """True once the last body message was received (or the client left)."""
        return self._stream_complete

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """
        Stream request body in chunks.

        Yields:
            Body chunks

        Raises:
            ClientDisconnect: If client disconnects during streaming
            PayloadTooLarge: If body or its declared Content-Length exceeds max_body_size
            RuntimeError: If the stream was already partially consumed
        """
        if self._body is not None:
            if self._body:
                yield self._body
            return

        if self._stream_started:
            if self._stream_complete:
                return
            raise RuntimeError("Request body stream has already been consumed")
        self._stream_started = True

        declared = self.content_length()
        if declared is not None and declared > self.max_body_size:
            raise PayloadTooLarge(
                "Request body exceeds maximum size",
                max_allowed=self.max_body_size,
                content_length=declared,
            )

        total_size = 0

        while not self._stream_complete:
            message = await self._receive_message()

            if message["type"] != "http.request":
                continue

            if not message.get("more_body", False):
                self._stream_complete = True

            chunk = message.get("body", b"")
            if chunk:
                total_size += len(chunk)
                if total_size > self.max_body_size:
                    raise PayloadTooLarge(
                        "Request body exceeds maximum size",
                        max_allowed=self.max_body_size,
                    )
                yield chunk

    async def body(self) -> bytes:
        """
        Read full request body (idempotent).

        Raises:
            ClientDisconnect: If client disconnects
            PayloadTooLarge: If body exceeds max_body_size
        """
        if self._body is not None:
            return self._body

        chunks = []
        async for chunk in self.iter_bytes():
            chunks.append(chunk)

        self._body = b"".join(chunks)
        return self._body

    async def json(self) -> Any:
        """
        Parse request body as JSON.

        Raises:
            InvalidJSON: If JSON is malformed
        """
        if self._json_loaded:
            return self._json

        body_bytes = await self.body()
        parsed_ct = ParsedContentType.parse(self.content_type())
        encoding = parsed_ct.charset if parsed_ct else "utf-8"

        try:
            self._json = stdlib_json.loads(body_bytes.decode(encoding))
        except (UnicodeDecodeError, LookupError, ValueError) as e:
            raise InvalidJSON(f"Invalid JSON: {e}")

        self._json_loaded = True
        return self._json

    async def drain(self) -> int:
        """
        Discard the unread remainder of the body.

        Safe to call on every exit path: returns immediately when the body
        was fully read or the client is gone.

        Returns:
            Number of bytes discarded
        """
        discarded = 0
        while not self._stream_complete:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self._disconnected = True
                self._stream_complete = True
                break
            if message["type"] == "http.request":
                discarded += len(message.get("body", b""))
                if not message.get("more_body", False):
                    self._stream_complete = True
        self._stream_started = True
        return discarded

    # ========================================================================
    # Accepted files
    # ========================================================================

    @property
    def files(self) -> Optional[Tuple["AcceptedFile", ...]]:
        """Accepted files of this request, or None before ingestion."""
        return self._files

    def attach_files(self, files: Sequence["AcceptedFile"]) -> None:
        """
        Attach the accepted-file list. Write-once.

        Raises:
            RuntimeError: Files were already attached
        """
        if self._files is not None:
            raise RuntimeError("Accepted files are already attached to this request")
        self._files = tuple(files)

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.path}>"
