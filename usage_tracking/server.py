"""Serving lifecycle: bind, serve on a worker thread, drain on interrupt."""

from __future__ import annotations

import functools
import signal
import socket
import sys
import threading
import time
from enum import Enum
from typing import Any

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from usage_tracking.config import get_settings
from usage_tracking.lib.listener import (
    READ_HEADER_TIMEOUT_SECONDS,
    WRITE_TIMEOUT_SECONDS,
    HeaderTimeoutProtocol,
    WriteTimeoutMiddleware,
)
from usage_tracking.lib.logger import configure_logging, get_logger
from usage_tracking.lib.metrics import UsageRegistry
from usage_tracking.main import create_app

logger = get_logger(__name__)

SHUTDOWN_GRACE_SECONDS = 5
KEEP_ALIVE_SECONDS = 5
_POLL_SECONDS = 0.05
_JOIN_MARGIN_SECONDS = 1.0


class ServerState(str, Enum):
    STARTING = "starting"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


class ServerStartupError(RuntimeError):
    """Raised when the listener cannot be brought up."""


class ServerLifecycle:
    """Own the listening socket and the uvicorn server running on it.

    The server runs on a dedicated thread so that the calling thread stays free
    to observe the interrupt. ``wait`` blocks until ``interrupt`` is called (by
    the SIGINT handler or directly), then drains: uvicorn stops accepting
    connections, lets in-flight requests finish for up to ``grace_period``
    seconds and cancels whatever is left.
    """

    def __init__(
        self,
        app: FastAPI,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        grace_period: float = SHUTDOWN_GRACE_SECONDS,
        read_header_timeout: float = READ_HEADER_TIMEOUT_SECONDS,
        write_timeout: float = WRITE_TIMEOUT_SECONDS,
    ) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._grace_period = grace_period
        self._read_header_timeout = read_header_timeout
        self._write_timeout = write_timeout
        self._state = ServerState.STARTING
        self._interrupted = threading.Event()
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def bound_port(self) -> int:
        if self._socket is None:
            return self._port
        return self._socket.getsockname()[1]

    @property
    def address(self) -> str:
        return f"{self._host}:{self.bound_port}"

    def start(self) -> None:
        """Bind the socket and block until the server accepts connections."""

        self._socket = self._bind()
        config = uvicorn.Config(
            WriteTimeoutMiddleware(self._app, self._write_timeout),
            interface="asgi3",
            http=functools.partial(HeaderTimeoutProtocol, header_timeout=self._read_header_timeout),
            log_config=None,
            access_log=False,
            timeout_keep_alive=KEEP_ALIVE_SECONDS,
            timeout_graceful_shutdown=self._grace_period,
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._serve, name="usage-tracking-server", daemon=True)
        self._thread.start()

        while not self._server.started:
            if not self._thread.is_alive():
                raise ServerStartupError(f"server on {self.address} exited before accepting connections")
            time.sleep(_POLL_SECONDS)
        self._state = ServerState.SERVING

    def install_signal_handler(self) -> None:
        signal.signal(signal.SIGINT, self._on_signal)

    def interrupt(self) -> None:
        self._interrupted.set()

    def wait(self) -> None:
        """Block until interrupted, then drain."""

        while not self._interrupted.wait(_POLL_SECONDS):
            pass
        self.drain()

    def drain(self) -> None:
        if self._state is ServerState.STOPPED:
            return
        self._interrupted.set()
        self._state = ServerState.DRAINING
        logger.info("shutting down", extra={"grace_seconds": self._grace_period})

        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(self._grace_period + _JOIN_MARGIN_SECONDS)
            if self._thread.is_alive():
                logger.error("server did not stop within grace period")
        self._state = ServerState.STOPPED

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self._host, self._port))
        except OSError as exc:
            sock.close()
            raise ServerStartupError(f"cannot listen on {self._host}:{self._port}: {exc}") from exc
        return sock

    def _serve(self) -> None:
        assert self._server is not None and self._socket is not None
        try:
            self._server.run(sockets=[self._socket])
        except (Exception, SystemExit):
            # The listener runs apart from the main thread; report and keep the process alive.
            logger.exception("server died")
            return
        if not self._interrupted.is_set():
            logger.error("server died", extra={"err": "serving loop exited without shutdown"})

    def _on_signal(self, signum: int, frame: Any) -> None:
        self.interrupt()


def main() -> None:
    """Console entrypoint: serve until SIGINT."""

    configure_logging()
    try:
        settings = get_settings()
    except ValidationError as exc:
        logger.error("invalid configuration", extra={"err": exc.errors(include_url=False, include_context=False)})
        sys.exit(1)
    configure_logging(settings.logging_level)

    app = create_app(settings, UsageRegistry())
    lifecycle = ServerLifecycle(app, port=settings.port)
    try:
        lifecycle.start()
    except ServerStartupError as exc:
        logger.error("server failed to start", extra={"err": str(exc)})
        sys.exit(1)

    lifecycle.install_signal_handler()
    logger.info(
        "usage-tracking listening",
        extra={"addr": lifecycle.address, "log_level": settings.log_level},
    )
    lifecycle.wait()
