"""Failures a TestSession can surface to the test author."""

from typing import Optional

from playwright.sync_api import Error as RemoteEvaluationError

__all__ = [
    "SessionError",
    "BindFailure",
    "HandlerError",
    "WindowClosedPrematurely",
    "ReadyTimeout",
    "PageScriptError",
    "SessionNotReady",
    "SessionClosed",
    "InvalidTransition",
    "RemoteEvaluationError",
]


class SessionError(RuntimeError):
    """Base class for every lifecycle failure raised by pagetest."""


class BindFailure(SessionError):
    """The application server could not bind its address (port in use, bad host)."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"Could not bind {host}:{port}: {reason}")


class HandlerError(SessionError):
    """The page-builder raised while the server was serving the page.

    The original exception is kept on ``cause`` and chained as ``__cause__``.
    """

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Page builder raised {type(cause).__name__}: {cause}")


class WindowClosedPrematurely(SessionError):
    def __init__(self, message: str = "Window closed before the page signalled readiness"):
        super().__init__(message)


class ReadyTimeout(SessionError):
    def __init__(self, elapsed: float, timeout: float):
        self.elapsed = elapsed
        self.timeout = timeout
        super().__init__(
            f"Timed out after {elapsed:.2f}s waiting for the page to become ready "
            f"(limit {timeout}s). Likely an error happened on the JS side, or the page "
            f"takes longer to initialize. If the browser console shows no error, try "
            f"increasing the timeout."
        )


class PageScriptError(SessionError):
    """In-page script failed before signalling readiness."""

    def __init__(self, message: str):
        self.script_message = message
        super().__init__(f"Page script failed during initialization: {message}")


class SessionNotReady(SessionError):
    def __init__(self, state, what: Optional[str] = None):
        self.state = state
        target = what or "this operation"
        super().__init__(f"Session is {state.value}; {target} needs a ready session")


class SessionClosed(SessionError):
    def __init__(self):
        super().__init__("Session is closed; create a new TestSession instead")


class InvalidTransition(SessionError):
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Illegal session transition {current.value} -> {requested.value}")
