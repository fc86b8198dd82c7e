"""
Streaming ingestion pipeline.

``StreamingIngestion`` is the per-request state machine that consumes
parser events, applies the field policy, drives blob store writes and
produces exactly one ``IngestionOutcome``.

States::

    OPEN ──ParseFinished / terminal error──▶ SETTLING ──pending == 0──▶ DONE

All state lives on the event loop thread: ``dispatch`` is synchronous and
write completions resume on the loop, so the check-count-and-latch in
``_try_settle`` cannot interleave with another settlement attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import (
    Any, AsyncIterator, Callable, Coroutine, Dict, List,
    Optional, Set, Tuple, Union,
)

from .config import ConfigError
from .events import (
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
from .faults import (
    FileCountLimitExceeded,
    FileTooLarge,
    IngestionFault,
    MalformedUpload,
    ProcessingFailed,
    StoreWriteFailed,
    TooManyFields,
    TooManyFiles,
    TooManyParts,
)
from .identity import KeyMode, identify
from .multipart import MultipartEventSource
from .policy import ResolvedPolicy
from .sniffing import SNIFF_BYTES, Sniffer, SniffResult, decode_base64_payload, sniff
from .store import BlobStore
from .validator import FieldPolicyValidator

logger = logging.getLogger("stowage.pipeline")

# Bytes queued for streamed writers before run() stops reading the body
STREAM_BACKLOG_BYTES = 1024 * 1024


# ============================================================================
# Outcome types
# ============================================================================

@dataclass(frozen=True)
class AcceptedFile:
    """Metadata of one stored file. The bytes live in the blob store under ``key``."""

    key: str
    field_name: str
    original_name: str
    encoding: str
    mime_type: str
    extension: Optional[str]
    size_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Success:
    files: Tuple[AcceptedFile, ...]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    error: IngestionFault

    @property
    def ok(self) -> bool:
        return False


IngestionOutcome = Union[Success, Failure]


class IngestionState(str, Enum):
    OPEN = "open"
    SETTLING = "settling"
    DONE = "done"


def sniff_content(sniffer: Sniffer, buffer: bytes, field: str) -> Optional[SniffResult]:
    """
    Run ``sniffer`` on ``buffer``.

    Raises:
        ProcessingFailed: The sniffer raised something other than an IngestionFault
    """
    try:
        return sniffer(buffer)
    except IngestionFault:
        raise
    except Exception as e:
        logger.exception(f"Content sniffing failed for field {field!r}")
        raise ProcessingFailed(field, str(e) or type(e).__name__)


# ============================================================================
# Per-request bookkeeping
# ============================================================================

class _AcceptedFiles:
    """
    Accepted list plus the settle-once latch shared by both ingestion modes.
    """

    def __init__(self, validator: FieldPolicyValidator):
        self.validator = validator
        self.files: List[AcceptedFile] = []
        self.error: Optional[IngestionFault] = None

    def fail(self, error: IngestionFault) -> bool:
        """Latch ``error`` if none is latched yet. Returns True when latched."""
        if self.error is not None:
            return False
        self.error = error
        return True

    def record(self, file: AcceptedFile) -> Optional[TooManyFiles]:
        """
        Run the count check for a completed write and accept the file.

        Returns the count rejection instead of raising it. Nothing is
        recorded once an error is latched.
        """
        if self.error is not None:
            return None
        try:
            self.validator.check_file_count(self.files, file.field_name)
        except TooManyFiles as e:
            return e
        self.files.append(file)
        return None

    def outcome(self) -> IngestionOutcome:
        if self.error is not None:
            return Failure(self.error)
        return Success(tuple(self.files))


class _OpenPart:
    __slots__ = (
        "event", "chunks", "head", "size",
        "key", "queue", "file",
    )

    def __init__(self, event: FilePartStarted):
        self.event = event
        self.chunks: List[bytes] = []
        self.head = bytearray()
        self.size = 0
        self.key: Optional[str] = None
        self.queue: Optional[asyncio.Queue] = None
        self.file: Optional[AcceptedFile] = None


# ============================================================================
# StreamingIngestion
# ============================================================================

class StreamingIngestion:
    """
    Streaming-mode ingestion of one multipart request.

    Feed it parser events with ``dispatch`` (or let ``run`` drive a
    ``MultipartEventSource`` from the body), then ``await outcome()``.

    Args:
        policy: Resolved upload policy
        store: Blob store receiving accepted bytes
        sniffer: Content sniffer
        key_mode: Cache key derivation mode
        ttl: Lifetime of stored entries in seconds
        on_settled: Called once with the outcome when the pipeline is done
        stream_backlog: Bytes queued for streamed writers before ``run``
            pauses reading the body
    """

    def __init__(
        self,
        policy: ResolvedPolicy,
        store: BlobStore,
        *,
        sniffer: Sniffer = sniff,
        key_mode: KeyMode = KeyMode.HASH,
        ttl: int = 3600,
        on_settled: Optional[Callable[[IngestionOutcome], None]] = None,
        stream_backlog: int = STREAM_BACKLOG_BYTES,
    ):
        key_mode = KeyMode.parse(key_mode)
        if policy.stream_to_store and key_mode is not KeyMode.TOKEN:
            raise ConfigError("stream_to_store requires key_mode 'token'")

        self.policy = policy
        self.store = store
        self.sniffer = sniffer
        self.key_mode = key_mode
        self.ttl = ttl
        self.state = IngestionState.OPEN

        self._results = _AcceptedFiles(FieldPolicyValidator(policy))
        self._on_settled = on_settled
        self._finished = False
        self._pending = 0
        self._tasks: Set[asyncio.Task] = set()
        self._parts: Dict[int, _OpenPart] = {}
        self._outcome: Optional[IngestionOutcome] = None
        self._done = asyncio.Event()
        self._stream_backlog = stream_backlog
        self._queued_bytes = 0
        self._writer_progress = asyncio.Event()

    # ========================================================================
    # Introspection
    # ========================================================================

    @property
    def pending(self) -> int:
        """Number of store writes in flight."""
        return self._pending

    @property
    def error(self) -> Optional[IngestionFault]:
        return self._results.error

    @property
    def accepted(self) -> Tuple[AcceptedFile, ...]:
        return tuple(self._results.files)

    async def outcome(self) -> IngestionOutcome:
        """Wait for settlement and return the single outcome."""
        await self._done.wait()
        return self._outcome

    # ========================================================================
    # Event dispatch
    # ========================================================================

    def dispatch(self, event: ParserEvent) -> None:
        """
        Apply one parser event.

        Events arriving after ParseFinished or a terminal error are ignored.
        Must be called from the running event loop.
        """
        if self.state is not IngestionState.OPEN:
            return

        if isinstance(event, FilePartChunk):
            self._on_chunk(event)
        elif isinstance(event, FieldReceived):
            self._on_field(event)
        elif isinstance(event, FilePartStarted):
            self._on_part_started(event)
        elif isinstance(event, FilePartEnded):
            self._on_part_ended(event)
        elif isinstance(event, FilePartLimitExceeded):
            part = self._parts.get(event.part_id)
            self._fail(FileTooLarge(event.limit, part.event.name if part else None))
        elif isinstance(event, FieldLimitExceeded):
            self._fail(FileTooLarge(event.limit, event.name))
        elif isinstance(event, ParseFailed):
            self._fail(MalformedUpload(event.reason))
        elif isinstance(event, LimitReached):
            self._fail(self._limit_fault(event))
        elif isinstance(event, ParseFinished):
            self._on_finished()
        else:
            raise TypeError(f"Unknown parser event: {event!r}")

    @staticmethod
    def _limit_fault(event: LimitReached) -> IngestionFault:
        if event.kind == "files":
            return FileCountLimitExceeded(event.limit)
        if event.kind == "parts":
            return TooManyParts(event.limit)
        return TooManyFields(event.limit)

    def _on_field(self, event: FieldReceived) -> None:
        if not event.name or not event.value:
            return

        validator = self._results.validator
        try:
            validator.check_field_allowed(event.name)
            buffer, declared = decode_base64_payload(event.value)
            detected = declared or sniff_content(self.sniffer, buffer, event.name)
            mime_type = detected.mime if detected else ""
            validator.check_mimetype(event.name, mime_type)
        except IngestionFault as e:
            self._fail(e)
            return

        file = AcceptedFile(
            key=identify(self.key_mode, buffer),
            field_name=event.name,
            original_name=event.name,
            encoding="base64",
            mime_type=mime_type,
            extension=detected.extension if detected else None,
            size_bytes=len(buffer),
        )
        self._spawn(self._commit(file, buffer))

    def _on_part_started(self, event: FilePartStarted) -> None:
        if not event.filename:
            # Empty file input
            return

        validator = self._results.validator
        try:
            validator.check_field_allowed(event.name)
            validator.check_mimetype(event.name, event.mime_type)
        except IngestionFault as e:
            self._fail(e)
            return

        part = _OpenPart(event)
        self._parts[event.part_id] = part

        if self.policy.stream_to_store:
            part.key = identify(KeyMode.TOKEN)
            part.queue = asyncio.Queue()
            self._spawn(self._stream_part(part))

    def _on_chunk(self, event: FilePartChunk) -> None:
        part = self._parts.get(event.part_id)
        if part is None:
            return

        part.size += len(event.data)
        if len(part.head) < SNIFF_BYTES:
            part.head.extend(event.data[:SNIFF_BYTES - len(part.head)])

        if part.queue is not None:
            part.queue.put_nowait(event.data)
            self._queued_bytes += len(event.data)
        else:
            part.chunks.append(event.data)

    def _on_part_ended(self, event: FilePartEnded) -> None:
        part = self._parts.pop(event.part_id, None)
        if part is None:
            return

        started = part.event
        try:
            detected = sniff_content(self.sniffer, bytes(part.head), started.name)
        except IngestionFault as e:
            if part.queue is not None:
                part.queue.put_nowait(None)
            self._fail(e)
            return
        extension = detected.extension if detected else None

        if part.queue is not None:
            part.file = AcceptedFile(
                key=part.key,
                field_name=started.name,
                original_name=started.filename,
                encoding=started.encoding,
                mime_type=started.mime_type,
                extension=extension,
                size_bytes=part.size,
            )
            part.queue.put_nowait(None)
            return

        data = b"".join(part.chunks)
        part.chunks = []
        file = AcceptedFile(
            key=identify(self.key_mode, data),
            field_name=started.name,
            original_name=started.filename,
            encoding=started.encoding,
            mime_type=started.mime_type,
            extension=extension,
            size_bytes=len(data),
        )
        self._spawn(self._commit(file, data))

    def _on_finished(self) -> None:
        self._finished = True
        if self._parts:
            open_parts = sorted(self._parts)
            self._fail(MalformedUpload("file part was not terminated", parts=open_parts))
            return
        self.state = IngestionState.SETTLING
        self._try_settle()

    # ========================================================================
    # Writes
    # ========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        self._pending += 1
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _commit(self, file: AcceptedFile, data: bytes) -> None:
        try:
            await self.store.put(file.key, data, self.ttl)
        except StoreWriteFailed as e:
            logger.error(f"Store write failed for {file.key} ({file.field_name}): {e.message}")
            self._fail(e)
        except Exception as e:
            logger.exception(f"Unexpected store error for {file.key}")
            self._fail(StoreWriteFailed(file.key, str(e) or type(e).__name__))
        else:
            self._record(file)
        finally:
            self._pending -= 1
            self._try_settle()

    async def _stream_part(self, part: _OpenPart) -> None:
        """Sequential writer for one streamed part: put empty, then append in order."""
        key = part.key
        try:
            await self.store.put(key, b"", self.ttl)
            while self._results.error is None:
                chunk = await part.queue.get()
                if chunk is None:
                    break
                await self.store.append(key, chunk)
                self._queued_bytes -= len(chunk)
                self._writer_progress.set()
        except StoreWriteFailed as e:
            logger.error(f"Streamed write failed for {key} ({part.event.name}): {e.message}")
            self._fail(e)
        except Exception as e:
            logger.exception(f"Unexpected store error for {key}")
            self._fail(StoreWriteFailed(key, str(e) or type(e).__name__))
        else:
            if part.file is not None:
                self._record(part.file)
        finally:
            self._writer_progress.set()
            self._pending -= 1
            self._try_settle()

    def _record(self, file: AcceptedFile) -> None:
        if self._results.error is not None:
            return
        rejection = self._results.record(file)
        if rejection is not None:
            self._fail(rejection)
            return
        logger.debug(
            f"Accepted {file.original_name!r} on field {file.field_name!r} "
            f"as {file.key} ({file.size_bytes} bytes)"
        )

    # ========================================================================
    # Settlement
    # ========================================================================

    def _fail(self, error: IngestionFault) -> None:
        if self.state is IngestionState.DONE:
            return
        if self._results.fail(error):
            logger.warning(f"Upload rejected: [{error.code}] {error.message}")
            self._enter_settling()
        self._try_settle()

    def _enter_settling(self) -> None:
        self.state = IngestionState.SETTLING
        # Release streamed writers still waiting for chunks
        for part in self._parts.values():
            if part.queue is not None:
                part.queue.put_nowait(None)
        self._parts.clear()
        self._writer_progress.set()

    def _try_settle(self) -> None:
        if self.state is IngestionState.DONE:
            return
        if not (self._finished or self._results.error is not None):
            return
        if self._pending:
            return

        self.state = IngestionState.DONE
        self._outcome = self._results.outcome()
        self._done.set()

        if self._on_settled is not None:
            try:
                self._on_settled(self._outcome)
            except Exception:
                logger.exception("on_settled callback failed")

    # ========================================================================
    # Driver
    # ========================================================================

    async def run(self, boundary: Union[str, bytes], chunks: AsyncIterator[bytes]) -> IngestionOutcome:
        """
        Parse ``chunks`` as a multipart body and return the outcome.

        Feeding stops as soon as an error is latched; writes already issued
        are awaited. Reading pauses while streamed writers hold more than
        ``stream_backlog`` queued bytes. Errors raised by ``chunks`` become
        the terminal error.
        """
        source = MultipartEventSource(boundary, self.policy.parser_limits)

        try:
            async for chunk in chunks:
                for event in source.feed(chunk):
                    self.dispatch(event)
                await self._wait_for_writers()
                if self.state is not IngestionState.OPEN:
                    break
            else:
                for event in source.close():
                    self.dispatch(event)
        except IngestionFault as e:
            self._fail(e)
        except asyncio.CancelledError:
            self.cancel()
            raise
        except Exception as e:
            logger.exception("Error while reading the request body")
            self._fail(MalformedUpload(f"error while reading the request body ({e})"))

        return await self.outcome()

    async def _wait_for_writers(self) -> None:
        while self.state is IngestionState.OPEN and self._queued_bytes > self._stream_backlog:
            self._writer_progress.clear()
            await self._writer_progress.wait()

    def cancel(self) -> None:
        """Cancel in-flight writes (request abandoned)."""
        for task in list(self._tasks):
            task.cancel()
