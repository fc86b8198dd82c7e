"""
Stowage faults - Ingestion fault types.

Provides concrete fault classes for each ingestion domain:
- UPLOAD faults (policy rejections, 422)
- LIMITS faults (parser hard caps, 413)
- PROTOCOL faults (malformed bodies, unsupported media types)
- FETCH faults (remote URL download)
- STORE faults (blob store writes)
- SYSTEM faults (server-side processing failures)

Every ingestion fault carries the HTTP ``status`` the boundary layer
answers with.
"""

from typing import Any, Optional, Sequence

from .core import Fault, FaultDomain, Severity


class IngestionFault(Fault):
    """Base class for faults produced while ingesting a request body."""

    status: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        *,
        domain: FaultDomain,
        status: Optional[int] = None,
        severity: Optional[Severity] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=domain,
            severity=severity,
            public=True,
            metadata=metadata,
        )
        if status is not None:
            self.status = status


# ============================================================================
# UPLOAD Faults (policy)
# ============================================================================

class PolicyRejection(IngestionFault):
    """Base class for declarative policy rejections."""

    status = 422

    def __init__(self, code: str, message: str, *, metadata: Optional[dict[str, Any]] = None):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.UPLOAD,
            metadata=metadata,
        )


class UnexpectedField(PolicyRejection):
    """Field name matches no declared rule and undeclared fields are refused."""

    def __init__(self, field: str):
        super().__init__(
            code="UNEXPECTED_FIELD",
            message=f"The field {field} is not expected",
            metadata={"field": field},
        )


class UnsupportedMimetype(PolicyRejection):
    """Detected mimetype is not in the applicable allow-list."""

    def __init__(self, field: str, mimetype: str, expected: Sequence[str], *, per_field: bool = True):
        expected_str = ",".join(expected)
        if per_field:
            message = f"The field {field} expected one of the following mimetypes: {expected_str}"
        else:
            message = f"Expected one of the following mimetypes: {expected_str}"
        super().__init__(
            code="UNSUPPORTED_MIMETYPE",
            message=message,
            metadata={"field": field, "mimetype": mimetype, "expected": list(expected)},
        )


class TooManyFiles(PolicyRejection):
    """A field (or the whole request) already holds its maximum of files."""

    def __init__(self, limit: int, field: Optional[str] = None):
        if field is not None:
            message = f"The field {field} accepts a maximum of {limit} files"
        else:
            message = f"Accepts a maximum of {limit} files"
        super().__init__(
            code="TOO_MANY_FILES",
            message=message,
            metadata={"field": field, "limit": limit},
        )


# ============================================================================
# LIMITS Faults (parser hard caps)
# ============================================================================

class ResourceLimitExceeded(IngestionFault):
    """Base class for parser-level size and count overages."""

    status = 413

    def __init__(self, code: str, message: str, *, metadata: Optional[dict[str, Any]] = None):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.LIMITS,
            metadata=metadata,
        )


class FileTooLarge(ResourceLimitExceeded):
    """A file part or base64 field exceeded the configured maximum size."""

    def __init__(self, limit: Optional[int] = None, field: Optional[str] = None):
        super().__init__(
            code="LIMIT_FILE_SIZE",
            message="File too large",
            metadata={"limit": limit, "field": field},
        )


class FileCountLimitExceeded(TooManyFiles):
    """Parser-level file part ceiling (distinct from the policy file count)."""

    status = 413

    def __init__(self, limit: int):
        IngestionFault.__init__(
            self,
            code="LIMIT_FILE_COUNT",
            message="Too many files",
            domain=FaultDomain.LIMITS,
            metadata={"limit": limit},
        )


class TooManyParts(ResourceLimitExceeded):
    """Multipart body holds more parts than allowed."""

    def __init__(self, limit: int):
        super().__init__(
            code="LIMIT_PART_COUNT",
            message="Too many parts",
            metadata={"limit": limit},
        )


class TooManyFields(ResourceLimitExceeded):
    """Multipart body holds more non-file fields than allowed."""

    def __init__(self, limit: int):
        super().__init__(
            code="LIMIT_FIELD_COUNT",
            message="Too many fields",
            metadata={"limit": limit},
        )


# ============================================================================
# PROTOCOL Faults
# ============================================================================

class MalformedUpload(IngestionFault):
    """Body could not be parsed (broken multipart, bad base64, bad JSON)."""

    def __init__(self, reason: str, **metadata: Any):
        super().__init__(
            code="MALFORMED_UPLOAD",
            message=f"Malformed upload: {reason}",
            domain=FaultDomain.PROTOCOL,
            status=400,
            metadata={"reason": reason, **metadata},
        )


class UnsupportedMediaType(IngestionFault):
    """Content-Type is neither a parseable multipart body nor enabled JSON."""

    def __init__(self, message: str = "Unsupported media type", content_type: Optional[str] = None):
        super().__init__(
            code="UNSUPPORTED_MEDIA_TYPE",
            message=message,
            domain=FaultDomain.PROTOCOL,
            status=415,
            metadata={"content_type": content_type},
        )


class InvalidPayload(IngestionFault):
    """JSON body does not carry the configured base64 or URL selectors."""

    def __init__(self, message: str):
        super().__init__(
            code="INVALID_PAYLOAD",
            message=message,
            domain=FaultDomain.PROTOCOL,
            status=406,
        )


# ============================================================================
# FETCH / STORE Faults (upstream)
# ============================================================================

class RemoteFetchFailed(IngestionFault):
    """Downloading a file from a client-supplied URL failed."""

    def __init__(self, url: str, *, status: Optional[int] = None, body: Optional[str] = None, reason: Optional[str] = None):
        message = f"Cannot download file from url {url}. Verify the URL and try again."
        if status is not None:
            message = f"{message} {status} - {body or ''}".rstrip(" -")
        elif reason:
            message = f"{message} {reason}"
        super().__init__(
            code="REMOTE_FETCH_FAILED",
            message=message,
            domain=FaultDomain.FETCH,
            status=406,
            metadata={"url": url, "upstream_status": status, "upstream_body": body, "reason": reason},
        )
        self.url = url
        self.upstream_status = status


class ProcessingFailed(IngestionFault):
    """Server-side failure while inspecting or loading an accepted payload."""

    def __init__(self, field: Optional[str], reason: str):
        super().__init__(
            code="PROCESSING_FAILED",
            message=f"Failed to process the upload of field {field}" if field else "Failed to process the upload",
            domain=FaultDomain.SYSTEM,
            status=500,
            severity=Severity.ERROR,
            metadata={"field": field, "reason": reason},
        )


class StoreWriteFailed(IngestionFault):
    """The blob store refused or failed a write."""

    def __init__(self, key: str, reason: str):
        super().__init__(
            code="STORE_WRITE_FAILED",
            message=f"Failed to store file {key}: {reason}",
            domain=FaultDomain.STORE,
            status=502,
            severity=Severity.ERROR,
            metadata={"key": key, "reason": reason},
        )
