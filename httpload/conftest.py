"""
Pytest configuration and fixtures for httpload.

This module provides shared fixtures: a threaded local HTTP server for
real-socket tests, a port nothing listens on, and Hypothesis profiles.
"""

import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from hypothesis import settings, Verbosity

# Configure Hypothesis profiles
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Load the default hypothesis profile
    settings.load_profile("default")
    config.addinivalue_line("markers", "property: property-based tests")


class _TargetHandler(BaseHTTPRequestHandler):
    """Test target.

    Paths:
        /             200 "ok"
        /flaky        200, 200, 500, repeating (per server)
        /slow         200 after 50ms
        /status/<n>   responds with status n
    """

    protocol_version = "HTTP/1.1"

    def _respond(self, status: int, body: bytes = b"ok") -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _handle(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        if length:
            self.rfile.read(length)

        if self.path == "/flaky":
            with self.server.lock:
                self.server.counter += 1
                count = self.server.counter
            self._respond(500 if count % 3 == 0 else 200)
        elif self.path == "/slow":
            time.sleep(0.05)
            self._respond(200)
        elif self.path.startswith("/status/"):
            self._respond(int(self.path.rsplit("/", 1)[1]))
        else:
            self._respond(200)

    do_GET = _handle
    do_POST = _handle
    do_PUT = _handle

    def log_message(self, format, *args):  # noqa: A002
        pass


@pytest.fixture
def http_server():
    """Start a local HTTP server and yield its base URL."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _TargetHandler)
    server.daemon_threads = True
    server.lock = threading.Lock()
    server.counter = 0
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def unused_port():
    """A local TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
