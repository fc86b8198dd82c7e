"""
Upload ingestion facade and middleware.

``Stowage`` owns everything shared between requests (store, TTL, key
mode, sniffer, fetcher). ``stowage.ingest`` turns one request into one
``IngestionOutcome``; ``stowage.upload(policy)`` wraps that in a
middleware that decorates the request and calls the next handler once.

Example::

    stowage = Stowage.from_config(load_config(["stowage.yaml"]))

    avatar_upload = stowage.upload(UploadPolicy(
        enabled_fields=[FieldRule("avatar", mimetypes=("image/",))],
    ))

    # Runs for every request that goes through this stack
    stack.add(avatar_upload, priority=50)
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union, TYPE_CHECKING

from .config import ConfigError, StowageConfig
from .faults import IngestionFault, MalformedUpload
from .fetching import Fetcher, HttpFetcher
from .identity import KeyMode
from .json_mode import JsonIngestion
from .pipeline import Failure, IngestionOutcome, StreamingIngestion
from .policy import ResolvedPolicy, UploadPolicy
from .request import InvalidJSON, Request
from .response import Response
from .router import IngestionMode, route
from .sniffing import Sniffer, sniff
from .store import BlobStore, create_blob_store

if TYPE_CHECKING:
    from .asgi import RequestCtx
    from .middleware import Handler

logger = logging.getLogger("stowage.uploads")

PolicyLike = Union[UploadPolicy, ResolvedPolicy, Mapping[str, Any]]


class Stowage:
    """
    Request-body ingestion service.

    Args:
        store: Blob store for accepted bytes
        config: Runtime settings (TTL, key mode, fetch timeout, policies)
        ttl: Overrides ``config.ttl_seconds``
        key_mode: Overrides ``config.key_mode``
        sniffer: Content sniffer (defaults to libmagic)
        fetcher: URL downloader (defaults to an HttpFetcher)
    """

    def __init__(
        self,
        store: BlobStore,
        config: Optional[StowageConfig] = None,
        *,
        ttl: Optional[int] = None,
        key_mode: Union[KeyMode, str, None] = None,
        sniffer: Sniffer = sniff,
        fetcher: Optional[Fetcher] = None,
    ):
        self.config = config or StowageConfig()
        self.store = store
        self.ttl = ttl if ttl is not None else self.config.ttl_seconds
        if self.ttl <= 0:
            raise ConfigError(f"ttl must be positive, got {self.ttl}")
        self.key_mode = KeyMode.parse(key_mode if key_mode is not None else self.config.key_mode)
        self.sniffer = sniffer
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or HttpFetcher(timeout=self.config.fetch_timeout)

    @classmethod
    def from_config(cls, config: StowageConfig, **kwargs) -> "Stowage":
        """Build a Stowage with the store backend named in ``config``."""
        return cls(create_blob_store(config), config, **kwargs)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        await self.store.initialize()
        logger.info(f"Stowage ready (store={self.store.name}, ttl={self.ttl}s, keys={self.key_mode.value})")

    async def shutdown(self) -> None:
        if self._owns_fetcher and isinstance(self.fetcher, HttpFetcher):
            await self.fetcher.aclose()
        await self.store.shutdown()

    # ========================================================================
    # Policies
    # ========================================================================

    def resolve(self, policy: PolicyLike) -> ResolvedPolicy:
        """
        Resolve a policy once, ahead of any request.

        Raises:
            ConfigError: Invalid policy, or streamed storage without token keys
        """
        if isinstance(policy, Mapping):
            policy = UploadPolicy.from_dict(policy)
        if isinstance(policy, UploadPolicy):
            policy = policy.resolve()
        if policy.stream_to_store and self.key_mode is not KeyMode.TOKEN:
            raise ConfigError("stream_to_store requires key_mode 'token'")
        return policy

    def named_policy(self, name: str) -> ResolvedPolicy:
        """Resolve the policy declared under ``policies.<name>`` in the config."""
        data = self.config.policies.get(name)
        if not isinstance(data, Mapping):
            raise ConfigError(f"Upload policy '{name}' is not configured")
        return self.resolve(data)

    # ========================================================================
    # Ingestion
    # ========================================================================

    async def ingest(self, request: Request, policy: PolicyLike) -> IngestionOutcome:
        """
        Ingest the body of ``request`` under ``policy``.

        Unread input is drained on every exit path. Ingestion faults are
        returned as ``Failure``, never raised.
        """
        resolved = self.resolve(policy)
        try:
            return await self._ingest(request, resolved)
        finally:
            await self._drain(request)

    async def _ingest(self, request: Request, policy: ResolvedPolicy) -> IngestionOutcome:
        try:
            selected = route(request.content_type(), policy)
        except IngestionFault as e:
            return Failure(e)

        if selected.mode is IngestionMode.JSON:
            try:
                payload = await request.json()
            except InvalidJSON as e:
                return Failure(MalformedUpload("request body is not valid JSON", detail=e.message))
            except IngestionFault as e:
                return Failure(e)

            ingestion = JsonIngestion(
                policy,
                self.store,
                sniffer=self.sniffer,
                fetcher=self.fetcher,
                key_mode=self.key_mode,
                ttl=self.ttl,
            )
            return await ingestion.run(payload)

        ingestion = StreamingIngestion(
            policy,
            self.store,
            sniffer=self.sniffer,
            key_mode=self.key_mode,
            ttl=self.ttl,
        )
        return await ingestion.run(selected.boundary, request.iter_bytes())

    async def _drain(self, request: Request) -> None:
        if request.body_complete:
            return
        try:
            discarded = await request.drain()
        except Exception as e:
            logger.warning(f"Failed to drain request body: {e}")
            return
        if discarded:
            logger.debug(f"Drained {discarded} unread body bytes")

    # ========================================================================
    # Middleware
    # ========================================================================

    def upload(self, policy: PolicyLike) -> "UploadMiddleware":
        """Middleware that ingests uploads under ``policy`` before the handler runs."""
        return UploadMiddleware(self, self.resolve(policy))


class UploadMiddleware:
    """
    Ingests the request body, attaches the accepted files to the request and
    calls the next handler exactly once. A failed ingestion raises its fault
    instead, for ExceptionMiddleware to answer.
    """

    def __init__(self, stowage: Stowage, policy: ResolvedPolicy):
        self.stowage = stowage
        self.policy = policy
        self.__name__ = "upload"

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        outcome = await self.stowage.ingest(request, self.policy)
        if not outcome.ok:
            raise outcome.error

        request.attach_files(outcome.files)
        return await next(request, ctx)
