import socket

import pytest
import requests

from pagetest.server.app_server import AppServer, ensure_port_available
from pagetest.server.page import ROOT_ATTRIBUTE
from pagetest.shared.errors import BindFailure


def test_serves_handler_once_per_request(free_port):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return "<p>served</p>"

    server = AppServer("127.0.0.1", free_port, handler)
    server.start()
    try:
        assert server.is_running
        url = f"http://127.0.0.1:{free_port}"

        response = requests.get(url, timeout=3)
        assert response.status_code == 200
        assert "<p>served</p>" in response.text
        assert f'{ROOT_ATTRIBUTE}="1"' in response.text

        # Health probes never reach the handler
        health = requests.get(f"{url}/health", timeout=3).json()
        assert health == {"status": "ok", "serving": True, "serve_count": 1, "last_error": None}
        assert calls == ["/"]

        response = requests.get(url, timeout=3)
        assert f'{ROOT_ATTRIBUTE}="2"' in response.text
        assert server.serve_count == 2
    finally:
        server.stop()


def test_handler_error_becomes_500(free_port):
    def handler(request):
        raise ValueError("broken builder")

    server = AppServer("127.0.0.1", free_port, handler)
    server.start()
    try:
        url = f"http://127.0.0.1:{free_port}"
        response = requests.get(url, timeout=3)
        assert response.status_code == 500
        assert "broken builder" in response.text
        assert server.last_error == "ValueError: broken builder"

        # Server keeps serving after a failed cycle
        assert requests.get(f"{url}/health", timeout=3).status_code == 200
    finally:
        server.stop()


def test_stop_refuses_connections(free_port):
    server = AppServer("127.0.0.1", free_port, lambda request: "<p/>")
    server.start()
    server.stop()
    assert not server.is_running
    with pytest.raises(requests.ConnectionError):
        requests.get(f"http://127.0.0.1:{free_port}/health", timeout=3)

    # Stopping twice is harmless
    server.stop()


def test_stop_without_start_is_noop(free_port):
    server = AppServer("127.0.0.1", free_port, lambda request: "<p/>")
    server.stop()
    assert not server.is_running


def test_bind_failure_when_port_taken(free_port):
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", free_port))
    blocker.listen(1)
    try:
        server = AppServer("127.0.0.1", free_port, lambda request: "<p/>")
        with pytest.raises(BindFailure) as excinfo:
            server.start()
        assert excinfo.value.port == free_port
        assert not server.is_running

        with pytest.raises(BindFailure, match="already listening"):
            ensure_port_available("127.0.0.1", free_port)
    finally:
        blocker.close()


def test_ensure_port_available_on_free_port(free_port):
    ensure_port_available("0.0.0.0", free_port)
