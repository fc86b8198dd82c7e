"""
Middleware system - Composable, async-first middleware.

A middleware is any callable ``async (request, ctx, next) -> Response``.
``MiddlewareStack`` orders registered middleware and folds them around a
final handler.
"""

from __future__ import annotations

from typing import Callable, Awaitable, Optional, List, TYPE_CHECKING
from dataclasses import dataclass
import logging
import os
import time
import traceback

from .request import Request
from .response import Response
from .faults import Fault

if TYPE_CHECKING:
    from .asgi import RequestCtx

Handler = Callable[[Request, "RequestCtx"], Awaitable[Response]]
Middleware = Callable[[Request, "RequestCtx", Handler], Awaitable[Response]]


@dataclass
class MiddlewareDescriptor:
    """Descriptor for middleware registration."""
    middleware: Middleware
    scope: str  # "global" or "route:pattern"
    priority: int
    name: str


class MiddlewareStack:
    """
    Manages middleware stack with deterministic ordering.
    Order: Global < Route, then by priority (lower runs first).
    Scope only orders the chain; every middleware sees every request.
    """

    def __init__(self):
        self.middlewares: List[MiddlewareDescriptor] = []
        self._sorted = True

    def add(
        self,
        middleware: Middleware,
        scope: str = "global",
        priority: int = 50,
        name: Optional[str] = None,
    ):
        """Add middleware to stack."""
        if name is None:
            name = getattr(middleware, "__name__", type(middleware).__name__)

        self.middlewares.append(MiddlewareDescriptor(
            middleware=middleware,
            scope=scope,
            priority=priority,
            name=name,
        ))
        self._sorted = False

    def _sort_middlewares(self):
        scope_order = {"global": 0, "route": 1}

        def sort_key(desc: MiddlewareDescriptor):
            scope_type = desc.scope.split(":")[0]
            return (scope_order.get(scope_type, 99), desc.priority)

        self.middlewares.sort(key=sort_key)

    def build_handler(self, final_handler: Handler) -> Handler:
        """Build middleware chain wrapping the final handler."""
        if not self._sorted:
            self._sort_middlewares()
            self._sorted = True

        handler = final_handler

        # Wrap in reverse order so first middleware is outermost
        for desc in reversed(self.middlewares):
            handler = self._wrap_middleware(desc.middleware, handler)

        return handler

    def _wrap_middleware(self, middleware: Middleware, next_handler: Handler) -> Handler:
        async def wrapped(request: Request, ctx: RequestCtx) -> Response:
            return await middleware(request, ctx, next_handler)

        return wrapped


# Default middleware implementations

class RequestIdMiddleware:
    """Adds unique request ID to each request."""

    def __init__(self, header_name: str = "X-Request-ID"):
        self.header_name = header_name
        self._header_name_bytes = header_name.lower().encode("latin-1")

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        request_id = None
        target = self._header_name_bytes
        for name, value in request.scope.get("headers", ()):
            if name.lower() == target:
                request_id = value.decode("latin-1")
                break

        if not request_id:
            request_id = os.urandom(16).hex()

        request.state["request_id"] = request_id
        ctx.request_id = request_id

        response = await next(request, ctx)
        response.set_header(self.header_name, request_id)
        return response


class ExceptionMiddleware:
    """
    Catches exceptions and converts them to JSON error responses.

    Faults answer with their own ``status`` (500 when they carry none) and
    the body ``{"error": {"code", "message", "domain"}}``. Anything else is
    a 500.
    """

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = logging.getLogger("stowage.exceptions")

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        try:
            return await next(request, ctx)

        except Fault as e:
            status = getattr(e, "status", 500)

            if status >= 500:
                self.logger.error(f"Fault {e.code}: {e.message}")
            else:
                self.logger.warning(f"Fault {e.code}: {e.message}")

            return Response.from_fault(e, include_details=self.debug)

        except Exception as e:
            self.logger.error(f"Unhandled exception: {e}", exc_info=True)

            error_data = {"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}}
            if self.debug:
                error_data["error"]["detail"] = str(e)
                error_data["error"]["traceback"] = traceback.format_exc()

            return Response.json(error_data, status=500)


class LoggingMiddleware:
    """Logs request/response with timing."""

    def __init__(self, slow_threshold_ms: float = 1000.0):
        self.logger = logging.getLogger("stowage.requests")
        self.slow_threshold_ms = slow_threshold_ms

    async def __call__(self, request: Request, ctx: RequestCtx, next: Handler) -> Response:
        if not self.logger.isEnabledFor(logging.INFO):
            return await next(request, ctx)

        start = time.monotonic()
        response = await next(request, ctx)
        elapsed_ms = (time.monotonic() - start) * 1000.0

        client = request.client
        self.logger.info(
            "%s - %s %s - %d (%.1fms)",
            client[0] if client else "-", request.method, request.path, response.status, elapsed_ms,
        )

        if elapsed_ms > self.slow_threshold_ms:
            self.logger.warning(
                "Slow request: %s %s took %.1fms",
                request.method, request.path, elapsed_ms,
            )

        return response
