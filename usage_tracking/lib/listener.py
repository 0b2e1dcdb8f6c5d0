"""Per-request listener deadlines layered on top of uvicorn."""

from __future__ import annotations

import asyncio
from typing import Any

from uvicorn.protocols.http.h11_impl import H11Protocol

from usage_tracking.lib.logger import get_logger

logger = get_logger(__name__)

READ_HEADER_TIMEOUT_SECONDS = 5.0
WRITE_TIMEOUT_SECONDS = 5.0


class WriteTimeoutError(TimeoutError):
    """Raised when a response is still being written past its deadline."""


class HeaderTimeoutProtocol(H11Protocol):
    """h11 protocol that closes connections whose request headers stall.

    The deadline starts when the connection opens, or when the first bytes of
    a follow-up request arrive on a kept-alive connection, and is cleared as
    soon as h11 has parsed a complete request head.
    """

    def __init__(self, *args: Any, header_timeout: float = READ_HEADER_TIMEOUT_SECONDS, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._header_timeout = header_timeout
        self._header_deadline: asyncio.TimerHandle | None = None
        self._pending_cycle: Any = None

    def connection_made(self, transport: asyncio.Transport) -> None:  # type: ignore[override]
        super().connection_made(transport)
        self._arm_header_deadline()

    def connection_lost(self, exc: Exception | None) -> None:
        self._cancel_header_deadline()
        super().connection_lost(exc)

    def data_received(self, data: bytes) -> None:
        idle = self.cycle is None or self.cycle.response_complete
        if self._header_deadline is None and idle:
            self._arm_header_deadline()
        super().data_received(data)

    def handle_events(self) -> None:
        super().handle_events()
        if self._header_deadline is not None and self.cycle is not self._pending_cycle:
            self._cancel_header_deadline()

    def _arm_header_deadline(self) -> None:
        self._pending_cycle = self.cycle
        self._header_deadline = self.loop.call_later(self._header_timeout, self._on_header_timeout)

    def _cancel_header_deadline(self) -> None:
        if self._header_deadline is not None:
            self._header_deadline.cancel()
            self._header_deadline = None

    def _on_header_timeout(self) -> None:
        self._header_deadline = None
        if not self.transport.is_closing():
            logger.warning("request header timeout", extra={"timeout_seconds": self._header_timeout})
            self.transport.close()


class WriteTimeoutMiddleware:
    """Fail response writes that happen after the per-request write deadline.

    The deadline starts when the request head has been read and covers the
    handler plus every ``send`` of the response.
    """

    def __init__(self, app: Any, timeout: float = WRITE_TIMEOUT_SECONDS) -> None:
        self.app = app
        self.timeout = timeout

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        async def send_before_deadline(message: dict[str, Any]) -> None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise WriteTimeoutError(f"response not written within {self.timeout}s")
            try:
                await asyncio.wait_for(send(message), remaining)
            except asyncio.TimeoutError as exc:
                raise WriteTimeoutError(f"response not written within {self.timeout}s") from exc

        await self.app(scope, receive, send_before_deadline)
