"""
Parser events.

The multipart event source turns body chunks into these values and the
streaming pipeline consumes them one at a time. File events carry the
``part_id`` of the part they belong to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

DEFAULT_ENCODING = "7bit"
DEFAULT_PART_MIMETYPE = "application/octet-stream"


@dataclass(frozen=True)
class FieldReceived:
    """A complete non-file field."""
    name: str
    value: str


@dataclass(frozen=True)
class FilePartStarted:
    """Headers of a file part have been read; ``filename`` may be empty."""
    part_id: int
    name: str
    filename: str
    encoding: str = DEFAULT_ENCODING
    mime_type: str = DEFAULT_PART_MIMETYPE


@dataclass(frozen=True)
class FilePartChunk:
    part_id: int
    data: bytes


@dataclass(frozen=True)
class FilePartEnded:
    part_id: int


@dataclass(frozen=True)
class FilePartLimitExceeded:
    """A file part grew past the configured maximum size."""
    part_id: int
    limit: int


@dataclass(frozen=True)
class FieldLimitExceeded:
    """A field value grew past the configured maximum size."""
    name: str
    limit: int


@dataclass(frozen=True)
class ParseFailed:
    reason: str


@dataclass(frozen=True)
class LimitReached:
    """A parser count ceiling was hit. ``kind`` is files, parts or fields."""
    kind: str
    limit: int


@dataclass(frozen=True)
class ParseFinished:
    """The closing boundary was read."""


ParserEvent = Union[
    FieldReceived,
    FilePartStarted,
    FilePartChunk,
    FilePartEnded,
    FilePartLimitExceeded,
    FieldLimitExceeded,
    ParseFailed,
    LimitReached,
    ParseFinished,
]
