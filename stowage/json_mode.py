"""
JSON ingestion mode.

Single-shot counterpart of the streaming pipeline for bodies such as::

    {"base64": "iVBORw0KGgo..."}
    {"base64": {"avatar": "data:image/png;base64,...", "cv": "JVBERi0..."}}
    {"urls": {"avatar": "https://example.com/a.png"}}

Every entry is processed concurrently. All of them are awaited before the
outcome is produced, and the first failure (in completion order) fails the
whole request: no partial success is reported.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, List, Mapping, Optional, Tuple

from .faults import IngestionFault, InvalidPayload, ProcessingFailed, StoreWriteFailed
from .fetching import Fetcher
from .identity import KeyMode, identify
from .pipeline import AcceptedFile, IngestionOutcome, _AcceptedFiles, sniff_content
from .policy import ResolvedPolicy
from .sniffing import Sniffer, SniffResult, decode_base64_payload, sniff
from .store import BlobStore
from .validator import FieldPolicyValidator

logger = logging.getLogger("stowage.json")

BASE64_INPUT = "base64"
URL_INPUT = "urls"


def _selects(value: Any) -> bool:
    # Empty objects still select their input and yield no files
    return isinstance(value, (Mapping, list)) or bool(value)


class JsonIngestion:
    """
    JSON-mode ingestion of one decoded request body.

    Args:
        policy: Resolved upload policy
        store: Blob store receiving accepted bytes
        sniffer: Content sniffer
        fetcher: Async URL downloader, required for URL input
        key_mode: Cache key derivation mode
        ttl: Lifetime of stored entries in seconds
    """

    def __init__(
        self,
        policy: ResolvedPolicy,
        store: BlobStore,
        *,
        sniffer: Sniffer = sniff,
        fetcher: Optional[Fetcher] = None,
        key_mode: KeyMode = KeyMode.HASH,
        ttl: int = 3600,
    ):
        self.policy = policy
        self.store = store
        self.sniffer = sniffer
        self.fetcher = fetcher
        self.key_mode = KeyMode.parse(key_mode)
        self.ttl = ttl
        # The JSON marker enables this mode; it is not a content type of the files
        self.validator = FieldPolicyValidator(
            dataclasses.replace(policy, default_mimetypes=policy.content_mimetypes)
        )

    def select_entries(self, payload: Any) -> Tuple[str, List[Tuple[str, str]]]:
        """
        Pick the input type and the (name, value) entries of a payload.

        Raises:
            InvalidPayload: Neither selector is present, or entries are not strings
        """
        base64_name = self.policy.body_field_name
        url_name = self.policy.body_url_field_name

        if not isinstance(payload, Mapping) or (
            not _selects(payload.get(base64_name)) and not _selects(payload.get(url_name))
        ):
            raise InvalidPayload(
                f'Invalid payload. To json request use "{base64_name}" or "{url_name}" fields'
            )

        if _selects(payload.get(base64_name)):
            input_type, value = BASE64_INPUT, payload[base64_name]
        else:
            input_type, value = URL_INPUT, payload[url_name]

        if isinstance(value, str):
            return input_type, [(input_type, value)]

        if not isinstance(value, Mapping):
            raise InvalidPayload(
                f"Invalid payload. \"{input_type}\" must be a string or an object of strings"
            )

        entries = []
        for name, content in value.items():
            if not isinstance(content, str):
                raise InvalidPayload(f"Invalid payload. Entry \"{name}\" must be a string")
            entries.append((str(name), content))
        return input_type, entries

    async def run(self, payload: Any) -> IngestionOutcome:
        """Ingest every entry of ``payload``. Never raises an IngestionFault."""
        results = _AcceptedFiles(self.validator)

        try:
            input_type, entries = self.select_entries(payload)
        except IngestionFault as e:
            results.fail(e)
            return results.outcome()

        if input_type == URL_INPUT and self.fetcher is None:
            raise RuntimeError("URL input requires a fetcher")

        await asyncio.gather(*(
            self._ingest_entry(results, input_type, name, content)
            for name, content in entries
        ))

        outcome = results.outcome()
        if not outcome.ok:
            logger.warning(f"JSON upload rejected: [{outcome.error.code}] {outcome.error.message}")
        return outcome

    async def _ingest_entry(self, results: _AcceptedFiles, input_type: str, name: str, content: str) -> None:
        try:
            self.validator.check_field_allowed(name)
            buffer, detected = await self._load(input_type, name, content)
            mime_type = detected.mime if detected else ""
            self.validator.check_mimetype(name, mime_type)
            if results.error is not None:
                return

            key = identify(self.key_mode, buffer)
            try:
                await self.store.put(key, buffer, self.ttl)
            except StoreWriteFailed:
                raise
            except Exception as e:
                logger.exception(f"Unexpected store error for {key}")
                raise StoreWriteFailed(key, str(e) or type(e).__name__)

        except IngestionFault as e:
            results.fail(e)
            return
        except Exception as e:
            logger.exception(f"Failed to ingest JSON entry {name!r}")
            results.fail(ProcessingFailed(name, str(e) or type(e).__name__))
            return

        rejection = results.record(AcceptedFile(
            key=key,
            field_name=name,
            original_name=name,
            encoding="base64" if input_type == BASE64_INPUT else "binary",
            mime_type=mime_type,
            extension=detected.extension if detected else None,
            size_bytes=len(buffer),
        ))
        if rejection is not None:
            results.fail(rejection)

    async def _load(self, input_type: str, name: str, content: str) -> Tuple[bytes, Optional[SniffResult]]:
        if input_type == BASE64_INPUT:
            buffer, declared = decode_base64_payload(content)
            return buffer, declared or sniff_content(self.sniffer, buffer, name)

        buffer = await self.fetcher(content)
        return buffer, sniff_content(self.sniffer, buffer, name)
