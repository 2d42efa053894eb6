from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from litestar.datastructures import Headers
from litestar.middleware import MiddlewareProtocol

from .keys import request_path

if TYPE_CHECKING:
    from litestar.types import ASGIApp, Message, Receive, Scope, Send

LOG = logging.getLogger("s3_gateway.access")


class StatusRecorder:
    """ASGI ``send`` wrapper that remembers the status of the first response start."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self.status_code: int | None = None

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start" and self.status_code is None:
            self.status_code = message["status"]
        await self._send(message)


class AccessLogMiddleware(MiddlewareProtocol):
    """Log one DEBUG record per request handled by the wrapped app."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        recorder = StatusRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            LOG.debug(
                "HTTP request method=%s path=%s remote_addr=%s status=%s "
                "duration_ms=%d user_agent=%s",
                scope.get("method"),
                request_path(scope),
                _remote_addr(scope),
                recorder.status_code if recorder.status_code is not None else 500,
                duration_ms,
                Headers.from_scope(scope).get("user-agent", ""),
            )


def _remote_addr(scope: Scope) -> str:
    client = scope.get("client")
    if not client:
        return ""
    host, port = client
    return f"{host}:{port}"
