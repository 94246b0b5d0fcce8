"""Input synthesis and element lookup on a ready TestSession.

Everything here goes through the session's script bridge, so script failures surface as
Playwright errors, unchanged.
"""

import time
import logging
from typing import Any, Callable, Optional, Sequence

from playwright.sync_api import ElementHandle, JSHandle

from pagetest.browser_interaction.script_bridge import JSExpression
from pagetest.utils.config import SessionConfig

logger = logging.getLogger(__name__)

TESTID_ATTRIBUTE = "data-test-id"

_QUERY_TESTID = """(testid) => {
    const selector = '[%(attr)s="' + CSS.escape(testid) + '"]';
    const found = document.querySelectorAll(selector);
    if (found.length === 0) {
        throw new Error('No element with %(attr)s=' + JSON.stringify(testid));
    }
    if (found.length > 1) {
        throw new Error(found.length + ' elements share %(attr)s=' + JSON.stringify(testid));
    }
    return found[0];
}""" % {"attr": TESTID_ATTRIBUTE}


def query_testid_js(testid: str) -> JSExpression:
    """Script selecting the one element whose test id is ``testid``.

    The id is passed as the function argument and escaped in the page, so it can hold
    quotes or brackets without changing the script.
    """
    return JSExpression(_QUERY_TESTID, testid)


def query_testid(session, testid: str) -> ElementHandle:
    """Handle to the element carrying ``data-test-id=testid``.

    A missing (or duplicated) id fails inside the page, as a Playwright error.
    """
    return session.resolve_handle(query_testid_js(testid))


def trigger_key_press(session, code: str, target: Optional[JSHandle] = None):
    """Dispatches keydown + keyup for ``code`` (e.g. "KeyRight") on ``target``, or the document.

    Key code names: https://keycode.info/
    """
    session.script_library.evaluate(
        "(lib, [code, element]) => lib.trigger_keyboard_press(code, element)",
        [code, target],
    )


def trigger_mouse_move(session, position: Sequence[int], target: Optional[JSHandle] = None):
    """Dispatches a mousemove at client ``position`` on ``target``.

    Without a target the first canvas on the page receives it; no canvas is an error.
    """
    x, y = position
    session.script_library.evaluate(
        "(lib, [position, element]) => lib.trigger_mouse_move(position, element)",
        [[x, y], target],
    )


def inner_text(session, target: JSHandle) -> str:
    return session.evaluate("(element) => element.innerText", target)


def wait_for(
    predicate: Callable[[], Any],
    timeout: float = SessionConfig.wait_for_timeout,
    interval: float = SessionConfig.wait_for_interval,
    message: Optional[str] = None,
):
    """Polls ``predicate`` until it is truthy or ``timeout`` runs out, then asserts it.

    A timeout shows up as the failed assertion on the predicate, not as a separate error.
    """
    deadline = time.monotonic() + timeout
    result = predicate()
    while not result:
        if time.monotonic() >= deadline:
            logger.debug(f"wait_for gave up after {timeout}s")
            break
        time.sleep(interval)
        result = predicate()
    name = getattr(predicate, "__name__", repr(predicate))
    assert result, message or f"Condition {name} was still false after {timeout}s"
