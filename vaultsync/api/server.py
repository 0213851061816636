"""Sync API server implementation using Starlette."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount, Route

from ..configuration import ConfigurationBundle, load_runtime_configuration
from ..errors import VaultSyncError
from ..logging_utils import setup_logging
from ..sync.protocol import (
    ETAG_HEADER,
    IF_MATCH_HEADER,
    LAST_MODIFIED_HEADER,
    MAX_IDENTIFIER_LENGTH,
    RETRY_AFTER_HEADER,
)
from .routes import blob_handler, health_handler
from .store import SyncStore

logger = logging.getLogger("vaultsync.api.server")


class APIServerState(str, Enum):
    """API server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


def create_app(
    store: SyncStore,
    base_path: str = "/sync",
    cors_origins: Optional[Sequence[str]] = None,
    max_identifier_length: int = MAX_IDENTIFIER_LENGTH,
    on_started: Optional[Any] = None,
    on_stopped: Optional[Any] = None,
) -> Starlette:
    """Build the Starlette application around an initialized ``store``."""

    middleware: List[Middleware] = []
    origins = list(cors_origins) if cors_origins is not None else ["*"]
    if origins:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=origins,
                allow_methods=["GET", "POST", "HEAD", "OPTIONS"],
                allow_headers=["Content-Type", IF_MATCH_HEADER],
                expose_headers=[ETAG_HEADER, LAST_MODIFIED_HEADER, RETRY_AFTER_HEADER],
            )
        )

    blob_route = Route("/{identifier}", blob_handler, methods=["GET", "HEAD", "POST"])
    prefix = "/" + base_path.strip("/") if base_path.strip("/") else ""
    routes: List[Any] = [Route("/health", health_handler, methods=["GET"])]
    if prefix:
        routes.append(Mount(prefix, routes=[blob_route]))
    else:
        routes.append(blob_route)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Sync API serving under '%s/'", prefix)
        if on_started:
            on_started()
        try:
            yield
        finally:
            logger.info("Sync API shutting down")
            if on_stopped:
                on_stopped()

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.sync_store = store
    app.state.max_identifier_length = max_identifier_length
    return app


@dataclass
class SyncAPIServer:
    """HTTP server for encrypted snapshot storage."""

    config_bundle: ConfigurationBundle
    store: Optional[SyncStore] = None

    _state: APIServerState = field(default=APIServerState.STOPPED, init=False)
    _server: Optional[Any] = field(default=None, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)
    _loop: Optional[asyncio.AbstractEventLoop] = field(default=None, init=False)

    @property
    def state(self) -> APIServerState:
        """Current server state."""
        return self._state

    @property
    def host(self) -> str:
        return str(self._server_config().get("host", "127.0.0.1"))

    @property
    def port(self) -> int:
        return int(self._server_config().get("port", 8000))

    @property
    def base_path(self) -> str:
        return str(self._server_config().get("base_path", "/sync"))

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{self.base_path}"

    def _server_config(self) -> Dict[str, Any]:
        if self.config_bundle.merged:
            return self.config_bundle.merged.get("server", {}) or {}
        return {}

    def create_app(self) -> Starlette:
        """Initialize storage and build the application."""
        if self.store is None:
            self.store = SyncStore.from_config(self.config_bundle.data_dir, self.config_bundle.merged)
        self.store.initialize()
        server_config = self._server_config()
        return create_app(
            self.store,
            base_path=self.base_path,
            cors_origins=server_config.get("cors_origins", ["*"]),
            max_identifier_length=int(server_config.get("max_identifier_length", MAX_IDENTIFIER_LENGTH)),
            on_started=self._on_started,
            on_stopped=self._on_stopped,
        )

    def _on_started(self) -> None:
        logger.info("API server starting on %s:%s", self.host, self.port)
        self._state = APIServerState.RUNNING

    def _on_stopped(self) -> None:
        self._state = APIServerState.STOPPED

    def start(self, blocking: bool = False) -> bool:
        """Start the API server.

        Args:
            blocking: If True, block until server stops. If False, run in background thread.

        Returns:
            True if server started successfully.
        """
        if self._state == APIServerState.RUNNING:
            logger.warning("API server is already running")
            return False

        import uvicorn

        self._state = APIServerState.STARTING
        try:
            app = self.create_app()
        except VaultSyncError:
            self._state = APIServerState.ERROR
            raise

        config = uvicorn.Config(
            app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        if blocking:
            try:
                asyncio.run(self._server.serve())
            except Exception as e:
                logger.exception("API server error: %s", e)
                self._state = APIServerState.ERROR
                return False
            return True

        self._thread = threading.Thread(
            target=self._run_in_thread,
            daemon=True,
            name="vaultsync-api-server",
        )
        self._thread.start()

        for _ in range(20):  # Wait up to 2 seconds
            time.sleep(0.1)
            if self._state == APIServerState.RUNNING:
                break

        return self._state == APIServerState.RUNNING

    def _run_in_thread(self) -> None:
        """Run the server in a background thread."""
        try:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self._server.serve())
        except Exception as e:
            logger.exception("API server thread error: %s", e)
            self._state = APIServerState.ERROR
        finally:
            if self._loop:
                self._loop.close()
            if self._state != APIServerState.ERROR:
                self._state = APIServerState.STOPPED

    def stop(self) -> bool:
        """Stop the API server.

        Returns:
            True if server stopped successfully.
        """
        if self._state != APIServerState.RUNNING:
            logger.warning("API server is not running")
            return False

        self._state = APIServerState.STOPPING

        if self._server:
            self._server.should_exit = True

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._state = APIServerState.STOPPED
        self._server = None
        self._thread = None

        return True

    def status(self) -> Dict[str, Any]:
        """Get server status information."""
        running = self._state == APIServerState.RUNNING
        return {
            "state": self._state.value,
            "host": self.host,
            "port": self.port,
            "url": self.url if running else None,
        }


def main() -> None:
    """Entry point for ``vaultsync-server``."""

    bundle = load_runtime_configuration()
    bundle.data_dir.mkdir(parents=True, exist_ok=True)
    logging_config = bundle.merged.get("logging", {}) or {}
    bundle.log_path = setup_logging(
        bundle.data_dir,
        logging_config.get("level", "INFO"),
        structured=bool(logging_config.get("structured", True)),
    )
    for diag in bundle.diagnostics:
        logger.log(
            logging.ERROR if diag.level == "error" else logging.INFO,
            "config: %s", diag.message,
        )

    server = SyncAPIServer(config_bundle=bundle)
    if not server.start(blocking=True):
        raise SystemExit(1)


__all__ = ["APIServerState", "SyncAPIServer", "create_app", "main"]
