"""
Response - HTTP response builder for ASGI.

Provides:
- ASGI response sending for bytes, str and JSON bodies
- JSON factory with a tolerant default serializer
- Fault to error-response mapping
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from .faults import Fault

logger = logging.getLogger("stowage.response")


def _json_default_serializer(o):
    """Default JSON serializer for non-standard types."""
    if isinstance(o, (set, tuple)):
        return list(o)
    if hasattr(o, "to_dict"):
        return o.to_dict()
    if hasattr(o, "isoformat"):
        return o.isoformat()
    return str(o)


class Response:
    """HTTP response with a fully materialized body."""

    def __init__(
        self,
        content: Union[bytes, str, Mapping, list] = b"",
        status: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        media_type: Optional[str] = None,
        *,
        encoding: str = "utf-8",
    ):
        self.status = status
        self.encoding = encoding
        self._headers: Dict[str, str] = {}
        if headers:
            for key, value in headers.items():
                self._headers[key.lower()] = value

        if media_type:
            self._headers["content-type"] = media_type
        elif "content-type" not in self._headers:
            self._headers["content-type"] = self._detect_media_type(content)

        self._content = self._encode_body(content)

    @property
    def headers(self) -> Dict[str, str]:
        return self._headers

    @property
    def body(self) -> bytes:
        return self._content

    def _detect_media_type(self, content: Any) -> str:
        if isinstance(content, (dict, list)):
            return "application/json; charset=utf-8"
        if isinstance(content, str):
            return "text/plain; charset=utf-8"
        return "application/octet-stream"

    def _encode_body(self, content: Any) -> bytes:
        if isinstance(content, bytes):
            return content
        if isinstance(content, str):
            return content.encode(self.encoding)
        if isinstance(content, (dict, list)):
            return json.dumps(content, default=_json_default_serializer).encode(self.encoding)
        return str(content).encode(self.encoding)

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def json(
        cls,
        obj: Any,
        status: int = 200,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        """Create JSON response."""
        content = json.dumps(obj, default=_json_default_serializer)
        return cls(
            content=content,
            status=status,
            headers=headers,
            media_type="application/json; charset=utf-8",
        )

    @classmethod
    def from_fault(cls, fault: Fault, *, include_details: bool = False) -> "Response":
        """
        Create an error response from a Fault.

        The status comes from the fault's ``status`` attribute (500 when it
        has none). Non-public faults hide their message.
        """
        status = getattr(fault, "status", 500)
        message = fault.message if fault.public else "Internal server error"

        error = {
            "code": fault.code,
            "message": message,
            "domain": fault.domain.value,
        }
        if include_details and fault.public and fault.metadata:
            error["details"] = fault.metadata

        return cls.json({"error": error}, status=status)

    # ========================================================================
    # Header Helpers
    # ========================================================================

    def set_header(self, name: str, value: str) -> None:
        if "\r" in value or "\n" in value:
            raise ValueError(f"Invalid header value for {name!r}")
        self._headers[name.lower()] = value

    # ========================================================================
    # ASGI
    # ========================================================================

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        """Send response via ASGI."""
        if "content-length" not in self._headers:
            self._headers["content-length"] = str(len(self._content))

        await send({
            "type": "http.response.start",
            "status": self.status,
            "headers": self._prepare_headers(),
        })
        await send({
            "type": "http.response.body",
            "body": self._content,
            "more_body": False,
        })

    def _prepare_headers(self) -> List[tuple]:
        return [
            (name.encode("latin1"), value.encode("latin1"))
            for name, value in self._headers.items()
        ]

    def __repr__(self) -> str:
        return f"<Response {self.status} {self._headers.get('content-type')}>"
