import pytest
from unittest.mock import MagicMock

from pagetest.browser_interaction.interactions import (
    TESTID_ATTRIBUTE,
    query_testid,
    query_testid_js,
    trigger_key_press,
    trigger_mouse_move,
    wait_for,
)
from pagetest.browser_interaction.script_bridge import JSExpression


def test_query_testid_js_is_parameterized():
    hostile = "x'] , body, [id='y"
    expr = query_testid_js(hostile)
    assert isinstance(expr, JSExpression)
    assert expr.arg == hostile
    assert hostile not in expr.source
    assert "CSS.escape" in expr.source
    assert TESTID_ATTRIBUTE in expr.source


def test_query_testid_resolves_through_session():
    session = MagicMock()
    handle = query_testid(session, "test")
    session.resolve_handle.assert_called_once_with(query_testid_js("test"))
    assert handle is session.resolve_handle.return_value


def test_trigger_key_press_defaults_to_document():
    session = MagicMock()
    trigger_key_press(session, "KeyRight")
    source, arg = session.script_library.evaluate.call_args[0]
    assert "trigger_keyboard_press" in source
    assert arg == ["KeyRight", None]


def test_trigger_mouse_move_with_target():
    session = MagicMock()
    target = MagicMock()
    trigger_mouse_move(session, (3, 4), target)
    source, arg = session.script_library.evaluate.call_args[0]
    assert "trigger_mouse_move" in source
    assert arg == [[3, 4], target]


def test_wait_for_polls_until_true():
    calls = []

    def becomes_true():
        calls.append(1)
        return len(calls) >= 3

    wait_for(becomes_true, timeout=2, interval=0.001)
    assert len(calls) >= 3


def test_wait_for_reports_false_predicate():
    def never():
        return False

    with pytest.raises(AssertionError, match="never"):
        wait_for(never, timeout=0.05, interval=0.01)

    with pytest.raises(AssertionError, match="slider never moved"):
        wait_for(never, timeout=0.01, message="slider never moved")


def test_wait_for_keeps_the_passing_result():
    results = iter([False, True, False])
    calls = []

    def flips_back():
        calls.append(1)
        return next(results)

    wait_for(flips_back, timeout=2, interval=0.001)
    assert len(calls) == 2
