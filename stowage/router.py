"""
Content-Type routing.

Decides before any body bytes are read whether a request is ingested as a
multipart stream or as a single JSON document.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ._datastructures import ParsedContentType
from .faults import UnsupportedMediaType
from .policy import ResolvedPolicy


class IngestionMode(str, Enum):
    STREAMING = "streaming"
    JSON = "json"


@dataclass(frozen=True)
class Route:
    mode: IngestionMode
    boundary: Optional[str] = None


def route(content_type: Optional[str], policy: ResolvedPolicy) -> Route:
    """
    Pick the ingestion mode for a request.

    JSON mode requires a JSON media type and a policy that enables it.
    Anything else must be ``multipart/form-data`` with a boundary.

    Raises:
        UnsupportedMediaType: The body can be handled by neither mode
    """
    parsed = ParsedContentType.parse(content_type)

    if parsed is None:
        raise UnsupportedMediaType("Missing Content-Type header", content_type=content_type)

    if parsed.is_json and policy.json_enabled:
        return Route(IngestionMode.JSON)

    if not parsed.is_multipart_form:
        raise UnsupportedMediaType(
            f"Unsupported media type {parsed.media_type}", content_type=content_type
        )

    if not parsed.boundary:
        raise UnsupportedMediaType(
            "No boundary in multipart Content-Type", content_type=content_type
        )

    return Route(IngestionMode.STREAMING, boundary=parsed.boundary)
