"""Session lifecycle controller.

A :class:`TestSession` owns one application server binding and one browser window, and
drives them through ``start`` -> ready -> (``reload``) -> ``close``::

    with testsession(handler, port=8081, timeout=10) as session:
        assert session.evaluate("document.querySelectorAll('input').length") == 2

The page handler runs on the server's worker thread, and the ready signal comes from the
page's own script runtime. Neither can propagate through the caller's stack, so the
controller polls while it waits: is the window still there, did the handler record an
error, did the page script fail, has the page signalled ready. One timeout budget covers
both the navigation and this wait.
"""

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Tuple

import requests
from playwright.sync_api import Error, JSHandle
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from pagetest.browser_interaction.helper_script import LIBRARY_GLOBAL
from pagetest.browser_interaction.script_bridge import Expression, ScriptBridge
from pagetest.browser_interaction.session_manager import BrowserShell, ShellWindow
from pagetest.server.app_server import AppServer, ensure_port_available
from pagetest.server.page import ROOT_SELECTOR, to_html
from pagetest.shared.errors import (
    HandlerError,
    InvalidTransition,
    PageScriptError,
    ReadyTimeout,
    SessionClosed,
    SessionNotReady,
    WindowClosedPrematurely,
)
from pagetest.utils.config import SessionConfig

logger = logging.getLogger(__name__)

PageBuilder = Callable[["TestSession", Any], Any]


class SessionState(Enum):
    CREATED = "created"
    STARTING = "starting"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


TRANSITIONS = {
    SessionState.CREATED: {SessionState.STARTING, SessionState.CLOSED},
    SessionState.STARTING: {SessionState.AWAITING_READY, SessionState.FAILED, SessionState.CLOSED},
    SessionState.AWAITING_READY: {SessionState.READY, SessionState.FAILED, SessionState.CLOSED},
    SessionState.READY: {SessionState.AWAITING_READY, SessionState.CLOSED},
    SessionState.FAILED: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class TestSession:
    """A served page plus the browser window displaying it.

    ``page_builder(session, request)`` is called once per serve cycle on the server's worker
    thread and returns the page markup (a string or an ``__html__`` object). It must not call
    back into the session's script bridge, which belongs to the caller's thread.

    Pass ``shell`` to share one :class:`BrowserShell` between overlapping sessions; a
    borrowed shell is left running on close.
    """

    __test__ = False

    def __init__(
        self,
        page_builder: PageBuilder,
        config: Optional[SessionConfig] = None,
        *,
        host: Optional[str] = None,
        port: Optional[int] = None,
        timeout: Optional[float] = None,
        headless: Optional[bool] = None,
        shell: Optional[BrowserShell] = None,
        server_factory: Callable[..., AppServer] = AppServer,
        bridge: Optional[ScriptBridge] = None,
    ):
        self.config = (config or SessionConfig()).with_overrides(
            host=host, port=port, timeout=timeout, headless=headless
        )
        self.page_builder = page_builder
        self.url = self.config.url
        self.server: Optional[AppServer] = None
        self.window: Optional[ShellWindow] = None
        self.bridge = bridge or ScriptBridge()

        # Written by the server thread during a serve cycle
        self.page_root: Any = None
        self.request: Any = None
        self.pending_error: Optional[BaseException] = None

        self.error: Optional[BaseException] = None
        self._state = SessionState.CREATED
        self._server_factory = server_factory
        self._shell = shell
        self._owns_shell = shell is None
        self._page_root_handle: Optional[JSHandle] = None
        # Readiness clock of the current serve cycle, started before navigation
        self._wait_started: Optional[float] = None
        self._script_library: Optional[JSHandle] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def endpoint(self) -> Tuple[str, int]:
        return self.config.host, self.config.port

    @property
    def page_root_handle(self) -> JSHandle:
        """The container of the current cycle's markup. Invalidated by ``reload``."""
        self._require_ready("page_root_handle")
        return self._page_root_handle

    @property
    def script_library(self) -> JSHandle:
        """Handle to the in-page ``PageTest`` helper module. Invalidated by ``reload``."""
        self._require_ready("script_library")
        return self._script_library

    def _advance(self, new_state: SessionState):
        if new_state not in TRANSITIONS[self._state]:
            raise InvalidTransition(self._state, new_state)
        logger.debug(f"Session {self.url}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _require_ready(self, what: str):
        if self._state is not SessionState.READY:
            raise SessionNotReady(self._state, what)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Starts server and window, serves the page and waits until it is ready.

        Any failure closes the session before the error is re-raised.
        """
        if self._state is SessionState.CLOSED:
            raise SessionClosed()
        if self._state is SessionState.READY:
            return True

        try:
            # Raises for a session left FAILED by wait_until_ready, which then gets closed
            self._advance(SessionState.STARTING)
            logger.info(f"Starting test session at {self.url}")
            self._ensure_server()
            self._ensure_window()
            self._advance(SessionState.AWAITING_READY)
            self._navigate()
            self.wait_until_ready()
        except BaseException as e:
            self._fail_and_close(e)
            raise
        return True

    def reload(self) -> bool:
        """Serves and loads the page again in the same window and waits until it is ready."""
        if self._state is SessionState.CLOSED:
            raise SessionClosed()
        self._require_ready("reload")

        logger.info(f"Reloading test session at {self.url}")
        self._advance(SessionState.AWAITING_READY)
        try:
            self._ensure_window()
            self._navigate()
            self.wait_until_ready()
        except BaseException as e:
            self._fail_and_close(e)
            raise
        return True

    def wait_until_ready(self) -> bool:
        """Blocks until the current serve cycle is ready.

        Unlike ``start``/``reload`` this leaves a failed session open (state ``FAILED``) so
        it can be inspected; the caller must ``close`` it.
        """
        if self._state is SessionState.READY:
            return True
        if self._state is not SessionState.AWAITING_READY:
            raise InvalidTransition(self._state, SessionState.READY)

        try:
            self._poll_until_ready()
            # Only now do references into the page make sense
            self._script_library = self.bridge.resolve_handle(f"window.{LIBRARY_GLOBAL}")
            self._page_root_handle = self.bridge.resolve_handle(
                f"document.querySelector('{ROOT_SELECTOR}')"
            )
        except Exception as e:
            self.error = e
            self._advance(SessionState.FAILED)
            raise

        self._advance(SessionState.READY)
        logger.info(f"Test session at {self.url} is ready")
        return True

    def close(self):
        """Tears everything down. Safe to call in any state, any number of times.

        Errors while stopping the server are logged and swallowed. Errors while closing
        the browser propagate: a lingering browser process is a real leak.
        """
        if self._state is SessionState.CLOSED:
            return
        logger.info(f"Closing test session at {self.url}")
        self._drop_handles()
        self._advance(SessionState.CLOSED)
        self._stop_server()
        self._close_window()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Bridge access
    # ------------------------------------------------------------------

    def evaluate(self, js: Expression, arg: Any = None) -> Any:
        """Runs ``js`` in the page and returns its JSON-serializable value.

        Non-serializable results come back as whatever Playwright makes of them.
        """
        self._require_ready("evaluate")
        return self.bridge.evaluate(js, arg)

    def resolve_handle(self, js: Expression, arg: Any = None) -> JSHandle:
        self._require_ready("resolve_handle")
        return self.bridge.resolve_handle(js, arg)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _serve(self, request) -> str:
        """Server-side handler; runs on the server's worker thread."""
        try:
            root = self.page_builder(self, request)
            markup = to_html(root)
        except Exception as e:
            self.pending_error = e
            raise
        self.page_root = root
        self.request = request
        return markup

    def _ensure_server(self):
        if self.server is not None and self.server.is_running:
            return
        if self.server is None:
            ensure_port_available(self.config.host, self.config.port)
            self.server = self._server_factory(
                self.config.host,
                self.config.port,
                self._serve,
                start_timeout=self.config.server_start_timeout,
            )
        self.server.start()

    def _ensure_window(self):
        if self.window is not None and self.window.exists:
            return
        if self.window is not None:
            logger.warning(f"Browser window for {self.url} is gone, opening a new one")
        if self._shell is None:
            self._shell = BrowserShell(headless=self.config.headless, browser=self.config.browser)
            self._owns_shell = True
        self.window = self._shell.create_window(bridge=self.bridge)

    def _probe_server(self):
        """Makes sure the server answers before navigating; otherwise the wait would hang."""
        if not self.server.is_running:
            raise AssertionError(f"Application server for {self.url} is not running")
        try:
            response = requests.get(f"{self.url}/health", timeout=self.config.probe_timeout)
        except requests.RequestException as e:
            raise AssertionError(f"Application server at {self.url} is not answering: {e}") from e
        if response.status_code != 200:
            raise AssertionError(
                f"Application server at {self.url} answered health probe with HTTP {response.status_code}"
            )

    def _navigate(self):
        self._probe_server()
        self.pending_error = None
        self._drop_handles()
        # The next GET / is served as cycle serve_count + 1
        self.bridge.reset(self.server.serve_count + 1)

        # The navigation spends the same budget as the readiness wait that follows it
        self._wait_started = time.monotonic()
        try:
            self.window.load(self.url, timeout_ms=self._remaining_budget() * 1000)
        except PlaywrightTimeoutError:
            if self.pending_error is not None:
                cause = self.pending_error
                raise HandlerError(cause) from cause
            raise ReadyTimeout(self._elapsed(), self.config.timeout) from None
        except Error:
            if not self.window.exists:
                raise WindowClosedPrematurely() from None
            raise

    def _elapsed(self) -> float:
        return time.monotonic() - self._wait_started

    def _remaining_budget(self) -> float:
        # Playwright reads a zero timeout as "wait forever"
        return max(self.config.timeout - self._elapsed(), 0.001)

    def _poll_until_ready(self):
        if self._wait_started is None:
            self._wait_started = time.monotonic()
        try:
            self._poll_terminal_conditions()
        finally:
            self._wait_started = None

    def _poll_terminal_conditions(self):
        while True:
            if not self.window.exists:
                raise WindowClosedPrematurely()
            if self.pending_error is not None:
                cause = self.pending_error
                raise HandlerError(cause) from cause
            if self.bridge.init_error is not None:
                raise PageScriptError(self.bridge.init_error)
            if self.bridge.ready:
                return
            elapsed = self._elapsed()
            if elapsed > self.config.timeout:
                raise ReadyTimeout(elapsed, self.config.timeout)
            self.window.pump(self.config.poll_interval)

    def _fail_and_close(self, error: BaseException):
        self.error = error
        if self._state in (SessionState.STARTING, SessionState.AWAITING_READY):
            self._advance(SessionState.FAILED)
        logger.error(f"Test session at {self.url} failed: {error}")
        self.close()

    def _drop_handles(self):
        for handle in (self._script_library, self._page_root_handle):
            if handle is None:
                continue
            try:
                handle.dispose()
            except Error as e:
                # Already invalid once the page navigated or closed
                logger.debug(f"Ignoring stale handle on dispose: {e}")
        self._script_library = None
        self._page_root_handle = None

    def _stop_server(self):
        if self.server is None:
            return
        was_running = self.server.is_running
        try:
            self.server.stop()
        except Exception as e:
            logger.warning(f"Error while stopping application server at {self.url}: {e}")
        if not was_running:
            return
        try:
            response = requests.get(f"{self.url}/health", timeout=self.config.probe_timeout)
        except requests.ConnectionError:
            # Refused: the server is really gone
            return
        except requests.RequestException as e:
            logger.warning(f"Shutdown probe of {self.url} failed: {e}")
            return
        logger.warning(f"{self.url} still answered with HTTP {response.status_code} after shutdown")

    def _close_window(self):
        window, self.window = self.window, None
        try:
            if window is not None and window.exists:
                window.close()
        finally:
            if self._owns_shell and self._shell is not None:
                shell, self._shell = self._shell, None
                shell.close()


@contextmanager
def testsession(page_builder: PageBuilder, **kwargs) -> Iterator[TestSession]:
    """Starts a session for ``page_builder`` and always closes it afterwards.

    Keyword arguments are passed to :class:`TestSession`.
    """
    session = TestSession(page_builder, **kwargs)
    try:
        session.start()
        yield session
    finally:
        session.close()


testsession.__test__ = False
