"""Primary election: the first process to bind the well-known port owns the UI."""

from __future__ import annotations

import logging
import socket
import sys
import threading
import time
from enum import Enum

import uvicorn
from fastapi import FastAPI

from rishvan.config import Settings
from rishvan.remote import probe_health

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Role of this process, fixed for its lifetime once resolved."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class PortInUseError(Exception):
    """Raised when the well-known port is held by something other than Rishvan."""

    def __init__(self, port: int, cause: OSError | None = None):
        super().__init__(f"port {port} in use by unknown process: {cause}")
        self.port = port


class ServerStartError(RuntimeError):
    """Raised when the web server thread dies before it starts serving."""

    pass


class InstanceCoordinator:
    """Resolves this process's role once and runs the shared endpoint if primary."""

    def __init__(self, settings: Settings, app: FastAPI):
        self.settings = settings
        self.app = app
        self._lock = threading.Lock()
        self._role: Role | None = None
        self._error: PortInUseError | ServerStartError | None = None
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def role(self) -> Role | None:
        """Resolved role, or None while undetermined."""
        return self._role

    def resolve_role(self) -> Role:
        """Determine (once) whether this process is primary or secondary.

        Safe to call concurrently: the first caller does the work, the rest
        observe its cached result, including a cached failure.

        Raises:
            PortInUseError: if the port belongs to an unrelated process
            ServerStartError: if this process won the port but could not serve
        """
        with self._lock:
            if self._error is not None:
                raise self._error
            if self._role is None:
                try:
                    self._role = self._resolve()
                except (PortInUseError, ServerStartError) as e:
                    self._error = e
                    raise
            return self._role

    def _resolve(self) -> Role:
        try:
            sock = self._bind()
        except OSError as e:
            logger.info(f"Port {self.settings.port} is taken, probing for an existing primary")
            if probe_health(self.settings.base_url, timeout=self.settings.probe_timeout):
                logger.info(f"Running as secondary, proxying through {self.settings.base_url}")
                return Role.SECONDARY
            raise PortInUseError(self.settings.port, e) from e

        try:
            self._start_server(sock)
        except ServerStartError:
            sock.close()
            raise
        logger.info(f"Running as primary, serving UI on {self.settings.base_url}")
        return Role.PRIMARY

    def _bind(self) -> socket.socket:
        """Bind and listen on the well-known port; the OS enforces exclusivity."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if sys.platform != "win32":
                # Rebind through TIME_WAIT; an active listener still excludes us
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.settings.host, self.settings.port))
            # Listen right away so probes from other processes queue in the backlog
            sock.listen(128)
        except OSError:
            sock.close()
            raise
        return sock

    def _start_server(self, sock: socket.socket) -> None:
        config = uvicorn.Config(
            self.app,
            log_config=None,
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=2,
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [sock]},
            name="rishvan-webserver",
            daemon=True,
        )
        self._thread.start()

        deadline = time.monotonic() + self.settings.server_start_timeout
        while not self._server.started:
            if not self._thread.is_alive():
                raise ServerStartError("web server exited during startup")
            if time.monotonic() > deadline:
                logger.warning(f"Web server not ready after {self.settings.server_start_timeout}s")
                break
            time.sleep(0.01)

    def wait(self) -> None:
        """Block until the web server thread exits (primary only)."""
        if self._thread is not None:
            self._thread.join()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the web server if this process owns it."""
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        logger.info("Web server stopped")
