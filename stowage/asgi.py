"""
ASGI adapter - Bridges the ASGI protocol to the request/response system.

The middleware chain is built once and cached. Lifespan events initialize
and shut down registered services (such as a Stowage and its store).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging

from .request import Request
from .response import Response
from .middleware import MiddlewareStack, Handler


@dataclass
class RequestCtx:
    """
    Request context passed along the middleware chain.

    Attributes:
        request: The HTTP request
        request_id: Set by RequestIdMiddleware
        state: Additional state dictionary
    """

    request: Request
    request_id: Optional[str] = None
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.request.path

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def files(self):
        """Accepted files attached to the request, if any."""
        return self.request.files


class ASGIAdapter:
    """
    ASGI application adapter.

    Args:
        handler: Final handler run inside the middleware chain
        middleware_stack: Middleware wrapped around ``handler``
        services: Objects with async ``initialize()`` / ``shutdown()``,
            driven by lifespan events
        max_body_size: Per-request body ceiling in bytes
    """

    __slots__ = (
        "handler", "middleware_stack", "services", "max_body_size",
        "logger", "_cached_middleware_chain",
    )

    def __init__(
        self,
        handler: Handler,
        middleware_stack: Optional[MiddlewareStack] = None,
        *,
        services: Optional[List[Any]] = None,
        max_body_size: int = 10_485_760,
    ):
        self.handler = handler
        self.middleware_stack = middleware_stack or MiddlewareStack()
        self.services = list(services or [])
        self.max_body_size = max_body_size
        self.logger = logging.getLogger("stowage.asgi")
        self._cached_middleware_chain: Optional[Handler] = None

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)

    async def handle_http(self, scope: dict, receive: Callable, send: Callable):
        """Handle HTTP request."""
        if self._cached_middleware_chain is None:
            self._cached_middleware_chain = self.middleware_stack.build_handler(self.handler)

        request = Request(scope, receive, send, max_body_size=self.max_body_size)
        ctx = RequestCtx(request=request)

        try:
            response = await self._cached_middleware_chain(request, ctx)
        except Exception as e:
            self.logger.error(f"Critical error in request pipeline: {e}", exc_info=True)
            response = Response.json(
                {"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
                status=500,
            )

        await response.send_asgi(send)

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable):
        """Handle ASGI lifespan events."""
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                try:
                    for service in self.services:
                        await service.initialize()
                    self.logger.debug("Startup complete")
                    await send({"type": "lifespan.startup.complete"})
                except Exception as e:
                    self.logger.error(f"Startup error: {e}", exc_info=True)
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    raise

            elif message["type"] == "lifespan.shutdown":
                try:
                    for service in reversed(self.services):
                        await service.shutdown()
                    self.logger.debug("Shutdown complete")
                    await send({"type": "lifespan.shutdown.complete"})
                except Exception as e:
                    self.logger.error(f"Shutdown error: {e}", exc_info=True)
                    await send({"type": "lifespan.shutdown.failed", "message": str(e)})
                break
