"""Single ASGI listener that routes each request to exactly one protocol handler."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, MutableMapping, Sequence

logger = logging.getLogger("userdirectory.dispatch")

Scope = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[MutableMapping[str, Any]]]
Send = Callable[[MutableMapping[str, Any]], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


class ProtocolHandler(ABC):
    """Pairs an ASGI application with the request paths it owns."""

    name = "handler"

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    @abstractmethod
    def can_handle(self, path: str) -> bool:
        """Return whether this handler owns ``path``."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.app(scope, receive, send)


class PathPrefixHandler(ProtocolHandler):
    """Owns one path and everything below it (``/soap``, ``/soap/...``)."""

    def __init__(self, app: ASGIApp, prefix: str, *, name: str = "prefix") -> None:
        super().__init__(app)
        self.prefix = prefix.rstrip("/")
        self.name = name

    def can_handle(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


class CatchAllHandler(ProtocolHandler):
    """Owns every path not claimed by an earlier handler."""

    def __init__(self, app: ASGIApp, *, name: str = "default") -> None:
        super().__init__(app)
        self.name = name

    def can_handle(self, path: str) -> bool:
        return True


class DispatchFront:
    """ASGI application consulting an ordered list of protocol handlers.

    The first handler whose :meth:`ProtocolHandler.can_handle` accepts the
    request path receives the request. Lifespan events are forwarded to
    ``lifespan_app`` (the REST application by default).
    """

    def __init__(
        self,
        handlers: Sequence[ProtocolHandler],
        *,
        lifespan_app: ASGIApp | None = None,
    ) -> None:
        if not handlers:
            raise ValueError("DispatchFront requires at least one protocol handler")
        self.handlers = list(handlers)
        self._lifespan_app = lifespan_app or self.handlers[-1].app

    def resolve(self, path: str) -> ProtocolHandler | None:
        for handler in self.handlers:
            if handler.can_handle(path):
                return handler
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan_app(scope, receive, send)
            return

        handler = self.resolve(scope.get("path", "/"))
        if handler is None:
            await _not_found(scope, send)
            return
        await handler(scope, receive, send)


async def _not_found(scope: Scope, send: Send) -> None:
    if scope["type"] != "http":
        return
    logger.warning("No protocol handler for %s", scope.get("path"))
    await send(
        {
            "type": "http.response.start",
            "status": 404,
            "headers": [(b"content-type", b"application/json")],
        }
    )
    await send({"type": "http.response.body", "body": b'{"error":"Not found"}'})


__all__ = ["CatchAllHandler", "DispatchFront", "PathPrefixHandler", "ProtocolHandler"]
