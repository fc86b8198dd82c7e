"""
Stowage - request-body upload ingestion for ASGI.

Parses multipart/form-data or JSON bodies, extracts files (file parts,
base64 fields or remote URLs), validates them against a declarative upload
policy, stores the accepted bytes in a TTL blob store and attaches the
accepted-file list to the request before the handler runs.
"""

__version__ = "1.0.0"

from .config import ConfigError, ConfigLoader, StowageConfig, load_config
from .identity import KeyMode, identify
from .policy import FieldRule, MimetypeMatch, ParserLimits, ResolvedPolicy, UploadPolicy
from .validator import FieldPolicyValidator
from .sniffing import SniffResult, sniff
from .fetching import HttpFetcher
from .store import BlobStore, MemoryBlobStore, RedisBlobStore, create_blob_store
from .pipeline import (
    AcceptedFile,
    Failure,
    IngestionOutcome,
    IngestionState,
    StreamingIngestion,
    Success,
)
from .json_mode import JsonIngestion
from .router import IngestionMode, Route, route
from .request import Request
from .response import Response
from .middleware import (
    ExceptionMiddleware,
    LoggingMiddleware,
    MiddlewareStack,
    RequestIdMiddleware,
)
from .uploads import Stowage, UploadMiddleware
from .asgi import ASGIAdapter, RequestCtx
from .faults import (
    Fault,
    FaultDomain,
    Severity,
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
    "__version__",
    # Config
    "ConfigError",
    "ConfigLoader",
    "StowageConfig",
    "load_config",
    # Identity & policy
    "KeyMode",
    "identify",
    "FieldRule",
    "MimetypeMatch",
    "ParserLimits",
    "ResolvedPolicy",
    "UploadPolicy",
    "FieldPolicyValidator",
    # Collaborators
    "SniffResult",
    "sniff",
    "HttpFetcher",
    "BlobStore",
    "MemoryBlobStore",
    "RedisBlobStore",
    "create_blob_store",
    # Ingestion
    "AcceptedFile",
    "Failure",
    "IngestionOutcome",
    "IngestionState",
    "StreamingIngestion",
    "Success",
    "JsonIngestion",
    "IngestionMode",
    "Route",
    "route",
    # HTTP surface
    "Request",
    "Response",
    "ExceptionMiddleware",
    "LoggingMiddleware",
    "MiddlewareStack",
    "RequestIdMiddleware",
    "Stowage",
    "UploadMiddleware",
    "ASGIAdapter",
    "RequestCtx",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
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
