import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from playwright.sync_api import JSHandle, Page

from pagetest.browser_interaction.helper_script import SIGNAL_BINDING

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JSExpression:
    """A script function plus the argument it is called with.

    Values travel as the argument, never spliced into ``source``, so they cannot inject
    script.
    """
    source: str
    arg: Any = None


Expression = Union[str, JSExpression]


def unpack_expression(expression: Expression, arg: Any = None) -> Tuple[str, Any]:
    if isinstance(expression, JSExpression):
        if arg is not None:
            raise TypeError("Pass the argument inside the JSExpression, not alongside it")
        return expression.source, expression.arg
    return expression, arg


class ScriptBridge:
    """Evaluates script in the session's page and tracks the in-page readiness handshake.

    The helper module reports ``ready`` / ``error`` through an exposed function; signals are
    tagged with the serve cycle of the page that sent them, and anything older than the
    cycle passed to ``reset`` is dropped.
    """

    def __init__(self):
        self.page: Optional[Page] = None
        self._cycle = 0
        self._ready = False
        self._init_error: Optional[str] = None

    def attach(self, page: Page):
        """Exposes the signal binding. Must run before the first navigation."""
        page.expose_function(SIGNAL_BINDING, self._on_signal)
        self.page = page

    def reset(self, cycle: int):
        self._cycle = cycle
        self._ready = False
        self._init_error = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def init_error(self) -> Optional[str]:
        return self._init_error

    def _on_signal(self, kind: str, cycle: Any, payload: Any = None):
        """Called from JS via expose_function. Only records state, no Playwright calls here."""
        if cycle is None or int(cycle) < self._cycle:
            logger.debug(f"Dropping stale '{kind}' signal from cycle {cycle} (current {self._cycle})")
            return
        if kind == "ready":
            self._ready = True
        elif kind == "error":
            self._init_error = str(payload) if payload else "unknown error"
        else:
            logger.warning(f"Unknown page signal '{kind}'")

    def _require_page(self) -> Page:
        if self.page is None:
            raise RuntimeError("Script bridge is not attached to a page")
        return self.page

    def evaluate(self, expression: Expression, arg: Any = None) -> Any:
        """Returns the JSON-serializable result. Script errors propagate as Playwright errors."""
        source, arg = unpack_expression(expression, arg)
        return self._require_page().evaluate(source, arg)

    def resolve_handle(self, expression: Expression, arg: Any = None) -> JSHandle:
        source, arg = unpack_expression(expression, arg)
        return self._require_page().evaluate_handle(source, arg)
