"""
Multipart event source.

Wraps python-multipart's callback parser and turns body chunks into parser
events (see ``stowage.events``). Parser-level limits from ``ParserLimits``
are enforced here: the first overage of each kind emits one event and the
offending data is dropped. The source never raises; parser errors become a
``ParseFailed`` event.
"""

from __future__ import annotations

import os
from typing import Dict, List, Optional, Union

from python_multipart import MultipartParser
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from .events import (
    DEFAULT_ENCODING,
    DEFAULT_PART_MIMETYPE,
    FieldLimitExceeded,
    FieldReceived,
    FilePartChunk,
    FilePartEnded,
    FilePartLimitExceeded,
    FilePartStarted,
    LimitReached,
    ParseFailed,
    ParseFinished,
    ParserEvent,
)
from .policy import ParserLimits

_FIELD = "field"
_FILE = "file"
_SKIP = "skip"


def sanitize_filename(filename: str) -> str:
    """Reduce a client filename to a safe basename. Empty stays empty."""
    if not filename:
        return ""

    filename = filename.replace("\x00", "").replace("\\", "/")
    filename = os.path.basename(filename)

    if len(filename) > 255:
        name, ext = os.path.splitext(filename)
        filename = name[:250] + ext

    return filename or "unnamed"


class MultipartEventSource:
    """
    Incremental ``multipart/form-data`` parser producing events.

    Usage::

        source = MultipartEventSource(boundary, policy.parser_limits)
        async for chunk in body:
            for event in source.feed(chunk):
                ...
        for event in source.close():
            ...
    """

    def __init__(self, boundary: Union[str, bytes], limits: Optional[ParserLimits] = None):
        if isinstance(boundary, str):
            boundary = boundary.encode("latin-1")
        self.limits = limits or ParserLimits()

        self._events: List[ParserEvent] = []
        self._finished = False
        self._failed = False

        # Counters
        self._parts = 0
        self._files = 0
        self._fields = 0
        self._next_part_id = 0
        self._limits_hit: set = set()

        # Current part
        self._kind: Optional[str] = None
        self._part_id: Optional[int] = None
        self._name: Optional[str] = None
        self._size = 0
        self._over_limit = False
        self._field_data = bytearray()

        # Header tracking
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._headers: Dict[str, str] = {}

        callbacks = {
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_end": self._on_end,
        }
        self._parser = MultipartParser(boundary, callbacks)

    @property
    def done(self) -> bool:
        return self._finished or self._failed

    # ========================================================================
    # Public API
    # ========================================================================

    def feed(self, chunk: bytes) -> List[ParserEvent]:
        """Parse one body chunk and return the events it completed."""
        if self.done or not chunk:
            return self._drain()

        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            self._fail(f"multipart parsing failed: {e}")

        return self._drain()

    def close(self) -> List[ParserEvent]:
        """Signal end of body. A body without its closing boundary fails."""
        if not self.done:
            self._fail("body ended before the closing boundary")
        return self._drain()

    # ========================================================================
    # Internals
    # ========================================================================

    def _drain(self) -> List[ParserEvent]:
        events, self._events = self._events, []
        return events

    def _fail(self, reason: str) -> None:
        if self.done:
            return
        self._failed = True
        self._events.append(ParseFailed(reason))

    def _limit(self, kind: str, limit: int) -> None:
        if kind not in self._limits_hit:
            self._limits_hit.add(kind)
            self._events.append(LimitReached(kind, limit))

    def _on_part_begin(self) -> None:
        self._parts += 1
        self._kind = None
        self._part_id = None
        self._name = None
        self._size = 0
        self._over_limit = False
        self._field_data = bytearray()
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field.extend(data[start:end])

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value.extend(data[start:end])

    def _on_header_end(self) -> None:
        if self._header_field:
            name = self._header_field.decode("utf-8", errors="replace").lower()
            self._headers[name] = self._header_value.decode("utf-8", errors="replace")
        self._header_field = bytearray()
        self._header_value = bytearray()

    def _on_headers_finished(self) -> None:
        limits = self.limits

        if limits.max_parts is not None and self._parts > limits.max_parts:
            self._limit("parts", limits.max_parts)
            self._kind = _SKIP
            return

        disposition = self._headers.get("content-disposition", "")
        _, options = parse_options_header(disposition)

        name = options.get(b"name")
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="replace")
        self._name = name or ""

        if b"filename" in options:
            self._files += 1
            if limits.max_files is not None and self._files > limits.max_files:
                self._limit("files", limits.max_files)
                self._kind = _SKIP
                return

            filename = options.get(b"filename") or b""
            if isinstance(filename, bytes):
                filename = filename.decode("utf-8", errors="replace")

            self._kind = _FILE
            self._part_id = self._next_part_id
            self._next_part_id += 1
            self._events.append(FilePartStarted(
                part_id=self._part_id,
                name=self._name,
                filename=sanitize_filename(filename),
                encoding=(self._headers.get("content-transfer-encoding") or DEFAULT_ENCODING).strip().lower(),
                mime_type=(self._headers.get("content-type") or DEFAULT_PART_MIMETYPE).strip(),
            ))
            return

        self._fields += 1
        if limits.max_fields is not None and self._fields > limits.max_fields:
            self._limit("fields", limits.max_fields)
            self._kind = _SKIP
            return
        self._kind = _FIELD

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._kind not in (_FILE, _FIELD) or self._over_limit:
            return

        chunk = data[start:end]
        if not chunk:
            return
        self._size += len(chunk)

        if self._kind == _FILE:
            limit = self.limits.max_file_size
            if limit is not None and self._size > limit:
                self._over_limit = True
                self._events.append(FilePartLimitExceeded(self._part_id, limit))
                return
            self._events.append(FilePartChunk(self._part_id, bytes(chunk)))
            return

        limit = self.limits.max_field_size
        if limit is not None and self._size > limit:
            self._over_limit = True
            self._events.append(FieldLimitExceeded(self._name, limit))
            return
        self._field_data.extend(chunk)

    def _on_part_end(self) -> None:
        if self._kind == _FILE:
            self._events.append(FilePartEnded(self._part_id))
        elif self._kind == _FIELD and not self._over_limit:
            value = self._field_data.decode("utf-8", errors="replace")
            self._events.append(FieldReceived(self._name, value))
        self._kind = None
        self._part_id = None

    def _on_end(self) -> None:
        if not self.done:
            self._finished = True
            self._events.append(ParseFinished())
