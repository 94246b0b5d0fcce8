from playwright.sync_api import sync_playwright, Browser, BrowserContext, Page, Playwright, Error
from typing import Optional, Sequence
import threading
import logging

logger = logging.getLogger(__name__)

BROWSERS = ("chromium", "firefox", "webkit")

# The sync API allows one running driver per thread, so shells on the same thread share it.
_drivers = threading.local()


def acquire_driver() -> Playwright:
    """Returns this thread's Playwright driver, starting it for the first user."""
    if getattr(_drivers, "playwright", None) is None:
        _drivers.playwright = sync_playwright().start()
        _drivers.users = 0
        logger.debug("Started Playwright driver")
    _drivers.users += 1
    return _drivers.playwright


def release_driver(playwright: Playwright):
    """Drops one user of ``playwright``; the last one stops the driver."""
    if getattr(_drivers, "playwright", None) is not playwright:
        logger.warning("Playwright driver released from a thread that does not own it")
        return
    _drivers.users -= 1
    if _drivers.users <= 0:
        _drivers.playwright = None
        _drivers.users = 0
        playwright.stop()
        logger.debug("Stopped Playwright driver")


class BrowserShell:
    """The browser application: a launched browser on this thread's Playwright driver.

    Windows created from it are independent browser contexts, so several sessions can share
    a shell without sharing cookies or storage. Separate shells on one thread borrow the same
    driver and each launch their own browser.
    """

    def __init__(self, headless: bool = True, browser: str = "chromium", launch_args: Optional[Sequence[str]] = None):
        if browser not in BROWSERS:
            raise ValueError(f"Unknown browser '{browser}', expected one of {', '.join(BROWSERS)}")
        self.headless = headless
        self.browser_name = browser
        self.launch_args = list(launch_args or [])
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None

    @property
    def is_running(self) -> bool:
        return self.browser is not None and self.browser.is_connected()

    def launch(self) -> Browser:
        """Starts the driver and browser; a crashed browser is relaunched."""
        if self.is_running:
            return self.browser

        if self.playwright is None:
            self.playwright = acquire_driver()
        browser_type = getattr(self.playwright, self.browser_name)
        try:
            self.browser = browser_type.launch(headless=self.headless, args=self.launch_args)
        except Error:
            # e.g. browser binary not installed
            playwright, self.playwright = self.playwright, None
            release_driver(playwright)
            raise
        logger.info(f"Launched {self.browser_name} (headless={self.headless})")
        return self.browser

    def create_window(self, bridge=None) -> "ShellWindow":
        """Opens a fresh window; ``bridge`` is attached before any navigation happens."""
        self.launch()
        context = self.browser.new_context()
        page = context.new_page()
        if bridge is not None:
            bridge.attach(page)
        return ShellWindow(self, context, page)

    def close(self):
        """Closes the browser and releases the driver."""
        if self.browser:
            if self.browser.is_connected():
                self.browser.close()
            self.browser = None
        if self.playwright:
            playwright, self.playwright = self.playwright, None
            release_driver(playwright)

    def __enter__(self):
        self.launch()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ShellWindow:
    """A single browser window (context + page) owned by one session."""

    def __init__(self, shell: BrowserShell, context: BrowserContext, page: Page):
        self.shell = shell
        self.context: Optional[BrowserContext] = context
        self.page = page

    @property
    def exists(self) -> bool:
        return self.context is not None and self.shell.is_running and not self.page.is_closed()

    def load(self, url: str, timeout_ms: float = 30000):
        """Navigates to ``url``, returning once the response starts arriving.

        Readiness is decided by the caller, not by the browser's load event.
        """
        if not self.exists:
            raise RuntimeError("Window is closed")
        self.page.goto(url, wait_until="commit", timeout=timeout_ms)

    def pump(self, seconds: float):
        """Yields to the browser for ``seconds`` so exposed-function callbacks can fire."""
        if not self.exists:
            return
        try:
            self.page.wait_for_timeout(seconds * 1000)
        except Error:
            if self.exists:
                raise
            # Window vanished mid-wait; callers re-check `exists`.

    def close(self):
        if self.context is None:
            return
        if self.shell.is_running:
            self.context.close()
        self.context = None
