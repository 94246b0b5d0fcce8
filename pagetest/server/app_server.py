import socket
import threading
import time
import logging
from typing import Any, Callable, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from pagetest.server.page import render_document, render_error_page
from pagetest.shared.errors import BindFailure
from pagetest.shared.schemas import HealthResponse
from pagetest.utils.config import WILDCARD_HOSTS

logger = logging.getLogger(__name__)

PageHandler = Callable[[Request], Any]


def create_app(server: "AppServer") -> FastAPI:
    app = FastAPI(
        title="pagetest application server",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # ---- Health ----
    # Probed before every navigation; must never invoke the page handler.
    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse(
            status="ok" if server.is_running else "stopping",
            serving=server.is_running,
            serve_count=server.serve_count,
            last_error=server.last_error,
        )

    # ---- Page ----
    # Sync endpoint: FastAPI runs it on its worker thread pool, off the event loop.
    @app.get("/", response_class=HTMLResponse)
    def page(request: Request):
        return server.serve(request)

    return app


def bind_socket(host: str, port: int) -> socket.socket:
    """Binds the listening socket up front so bind errors reach the caller's thread."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BindFailure(host, port, e.strerror or str(e)) from e
    return sock


def ensure_port_available(host: str, port: int, timeout: float = 0.2):
    """Refuses to share a port with a server this session does not own.

    Something answering on the port (a stray server from an earlier run, or an ambient
    display server) would receive the browser's requests instead of ours.
    """
    probe_host = "127.0.0.1" if host in WILDCARD_HOSTS else host
    try:
        with socket.create_connection((probe_host, port), timeout=timeout):
            pass
    except OSError:
        return
    logger.warning(f"Another server is already listening on {probe_host}:{port}")
    raise BindFailure(host, port, "another server is already listening on this port")


class AppServer:
    """Serves one page handler on a background uvicorn thread.

    ``GET /`` invokes the handler once per request and embeds the serve cycle number in the
    document; a handler exception is logged and answered with HTTP 500 instead of crashing
    the server.
    """

    def __init__(
        self,
        host: str,
        port: int,
        handler: PageHandler,
        start_timeout: float = 10.0,
        title: str = "pagetest",
    ):
        self.host = host
        self.port = port
        self.handler = handler
        self.start_timeout = start_timeout
        self.title = title
        self.serve_count = 0
        self.last_error: Optional[str] = None
        self.app = create_app(self)

        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._sockets: List[socket.socket] = []
        self._serve_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return (
            self._server is not None
            and self._thread is not None
            and self._thread.is_alive()
            and self._server.started
            and not self._server.should_exit
        )

    def start(self):
        if self.is_running:
            return

        sock = bind_socket(self.host, self.port)
        self._sockets = [sock]
        config = uvicorn.Config(self.app, log_level="warning", lifespan="off")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": self._sockets},
            name=f"pagetest-server-{self.port}",
            daemon=True,
        )
        self._thread.start()

        deadline = time.monotonic() + self.start_timeout
        while not self._server.started:
            if not self._thread.is_alive():
                self._release_sockets()
                raise BindFailure(self.host, self.port, "server thread exited during startup")
            if time.monotonic() > deadline:
                self.stop()
                raise BindFailure(
                    self.host, self.port, f"server did not start within {self.start_timeout}s"
                )
            time.sleep(0.01)
        logger.info(f"Application server listening on {self.host}:{self.port}")

    def serve(self, request: Request) -> HTMLResponse:
        if not self._serve_lock.acquire(blocking=False):
            logger.warning("Concurrent page request; waiting for the in-flight serve to finish")
            self._serve_lock.acquire()
        try:
            self.serve_count += 1
            cycle = self.serve_count
            logger.debug(f"Serving page cycle {cycle} for {request.url}")
            try:
                content = self.handler(request)
                document = render_document(content, cycle, title=self.title)
            except Exception as e:
                logger.exception(f"Page handler failed in serve cycle {cycle}")
                self.last_error = f"{type(e).__name__}: {e}"
                return HTMLResponse(render_error_page(e), status_code=500)
            self.last_error = None
            return HTMLResponse(document)
        finally:
            self._serve_lock.release()

    def stop(self, timeout: float = 5.0):
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Application server slow to stop, forcing exit")
                self._server.force_exit = True
                self._thread.join(timeout)
            if self._thread.is_alive():
                raise RuntimeError(f"Application server on port {self.port} did not stop")
        self._release_sockets()
        logger.info(f"Application server on {self.host}:{self.port} stopped")

    def _release_sockets(self):
        for sock in self._sockets:
            sock.close()
        self._sockets = []
