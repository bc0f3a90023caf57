"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Generator
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from redirecterrors import HTTPServer, RedirectErrorsConfig, ServerConfig
from redirecterrors.http import HTTPRequest, ResponseRecorder, ResponseWriter


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request as sent by a reverse proxy."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"X-Forwarded-Proto: https\r\n"
        b"X-Forwarded-Host: example.com\r\n"
        b"Cookie: authentik_proxy_user=u; keep_this=k\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def plain_request() -> HTTPRequest:
    """Absolute-form request with no proxy headers."""
    return HTTPRequest(method="GET", target="http://localhost")


@pytest.fixture
def proxied_request() -> HTTPRequest:
    """Request as it arrives behind a reverse proxy."""
    return HTTPRequest(
        method="GET",
        target="/dashboard?tab=1",
        headers={
            "Host": "app.internal:8080",
            "X-Forwarded-Proto": "https",
            "X-Forwarded-Host": "app.example.com",
        },
    )


@pytest.fixture
def recorder() -> ResponseRecorder:
    return ResponseRecorder()


@pytest.fixture
def redirect_config() -> RedirectErrorsConfig:
    """Minimal config: 401 → 302 to a templated target."""
    return RedirectErrorsConfig(
        status=["401"],
        target="http://target/?status={status}&url={url}",
    )


@pytest.fixture
def status_handler():
    """Factory for handlers that answer with a fixed status."""
    def make(status: int, body: bytes = b"", headers: dict = None):
        def handler(request: HTTPRequest, writer: ResponseWriter) -> None:
            for name, value in (headers or {}).items():
                writer.headers.set(name, value)
            writer.write_header(status)
            if body:
                writer.write(body)
        return handler
    return make


class TestServer:
    """Test server helper that runs in a background thread."""

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        """Stop the server."""
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def request(self, raw: bytes) -> bytes:
        """Send raw request bytes and read until the server closes."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=5.0) as s:
            s.sendall(raw)
            chunks = []
            while True:
                chunk = s.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
        return b"".join(chunks)


@pytest.fixture
def make_server() -> Generator:
    """
    Factory for running servers; every server started is stopped at
    teardown.

        srv = make_server(handler, RedirectErrorsMiddleware(config))
        srv.request(b"GET / HTTP/1.1\\r\\n\\r\\n")
    """
    started = []

    def factory(handler, *middleware) -> TestServer:
        server = HTTPServer(handler, ServerConfig(
            host="127.0.0.1",
            port=0,  # Let OS pick a free port
            workers=4,
            timeout=5.0,
            log_level="WARNING",
        ))
        for mw in middleware:
            server.use(mw)
        test_srv = TestServer(server)
        test_srv.start()
        started.append(test_srv)
        return test_srv

    yield factory

    for test_srv in started:
        test_srv.stop()
