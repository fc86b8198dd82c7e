"""
Stowage faults - typed fault signals for ingestion.

Every failure an ingestion can produce is a Fault with a stable code, a
domain and (for ingestion faults) the HTTP status the boundary layer maps
it to. The pipeline never raises these past its own boundary: they are
funneled into a single ``Failure`` outcome.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain enumeration
- Severity: Severity levels
- IngestionFault and its concrete subclasses
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    IngestionFault,
    PolicyRejection,
    UnexpectedField,
    UnsupportedMimetype,
    TooManyFiles,
    ResourceLimitExceeded,
    FileTooLarge,
    FileCountLimitExceeded,
    TooManyParts,
    TooManyFields,
    MalformedUpload,
    UnsupportedMediaType,
    InvalidPayload,
    RemoteFetchFailed,
    ProcessingFailed,
    StoreWriteFailed,
)

__all__ = [
    # Core types
    "Fault",
    "FaultDomain",
    "Severity",

    # Ingestion faults
    "IngestionFault",
    "PolicyRejection",
    "UnexpectedField",
    "UnsupportedMimetype",
    "TooManyFiles",
    "ResourceLimitExceeded",
    "FileTooLarge",
    "FileCountLimitExceeded",
    "TooManyParts",
    "TooManyFields",
    "MalformedUpload",
    "UnsupportedMediaType",
    "InvalidPayload",
    "RemoteFetchFailed",
    "ProcessingFailed",
    "StoreWriteFailed",
]
