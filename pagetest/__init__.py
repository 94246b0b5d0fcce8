"""Browser end-to-end test sessions for dynamically served pages."""

from pagetest.browser_interaction.interactions import (
    inner_text,
    query_testid,
    query_testid_js,
    trigger_key_press,
    trigger_mouse_move,
    wait_for,
)
from pagetest.browser_interaction.script_bridge import JSExpression
from pagetest.browser_interaction.session_manager import BrowserShell
from pagetest.session import SessionState, TestSession, testsession
from pagetest.shared.errors import (
    BindFailure,
    HandlerError,
    PageScriptError,
    ReadyTimeout,
    RemoteEvaluationError,
    SessionClosed,
    SessionError,
    SessionNotReady,
    WindowClosedPrematurely,
)
from pagetest.utils.config import SessionConfig

__version__ = "0.1.0"

__all__ = [
    "TestSession",
    "SessionState",
    "SessionConfig",
    "BrowserShell",
    "JSExpression",
    "testsession",
    "query_testid",
    "query_testid_js",
    "trigger_key_press",
    "trigger_mouse_move",
    "inner_text",
    "wait_for",
    "SessionError",
    "BindFailure",
    "HandlerError",
    "PageScriptError",
    "ReadyTimeout",
    "RemoteEvaluationError",
    "SessionClosed",
    "SessionNotReady",
    "WindowClosedPrematurely",
]
