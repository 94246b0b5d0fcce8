import socket

import pytest
from pagetest.browser_interaction.session_manager import BrowserShell

_chromium_ok = None


def _chromium_installed() -> bool:
    global _chromium_ok
    if _chromium_ok is None:
        try:
            with BrowserShell(headless=True):
                pass
            _chromium_ok = True
        except Exception:
            _chromium_ok = False
    return _chromium_ok


@pytest.fixture(autouse=True)
def _skip_without_browser(request):
    """Tests marked `browser` drive real Chromium; skip them where it is not installed."""
    if request.node.get_closest_marker("browser") and not _chromium_installed():
        pytest.skip("Playwright Chromium is not installed (run `playwright install chromium`)")


@pytest.fixture
def free_port() -> int:
    """An ephemeral port from the OS."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    _, port = s.getsockname()
    s.close()
    return port
