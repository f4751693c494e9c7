"""
pytest configuration and fixtures.
"""

import io
import socket
import threading
from pathlib import Path
from typing import Generator, Optional

import pytest

from httpchain import HTTPServer, ServerConfig, create_app
from httpchain.http import HTTPRequest, HTTPResponse


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request for a static file."""
    return (
        b"GET /public/docs/?lang=en HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: text/html\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a body."""
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
def static_root(tmp_path: Path) -> Path:
    """
    A served directory plus a file outside it:

        tmp/
        ├── secret.txt            (must never be served)
        └── public/
            ├── readme.txt
            ├── docs/index.html
            └── nested/deep/file.txt
    """
    (tmp_path / "secret.txt").write_bytes(b"top secret")

    root = tmp_path / "public"
    (root / "docs").mkdir(parents=True)
    (root / "nested" / "deep").mkdir(parents=True)

    (root / "readme.txt").write_bytes(b"hello from readme\n")
    (root / "docs" / "index.html").write_bytes(b"<h1>docs</h1>")
    (root / "nested" / "deep" / "file.txt").write_bytes(b"deep")

    return root


def make_request(target: str, method: str = "GET", **headers: str) -> HTTPRequest:
    """Build an HTTPRequest without going through the parser."""
    return HTTPRequest(
        method=method,
        target=target,
        headers={k.replace("_", "-").lower(): v for k, v in headers.items()},
        client_address=("127.0.0.1", 54321),
    )


def make_response(method: str = "GET") -> tuple[HTTPResponse, io.BytesIO]:
    """A response writing into memory, plus the buffer to inspect."""
    sink = io.BytesIO()
    return HTTPResponse(sink, head_only=method == "HEAD"), sink


def split_response(raw: bytes) -> tuple[str, dict, bytes]:
    """Split raw response bytes into (status line, headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return lines[0], headers, body


@pytest.fixture
def sink() -> io.BytesIO:
    return io.BytesIO()


@pytest.fixture
def response(sink: io.BytesIO) -> HTTPResponse:
    """A GET response bound to the in-memory sink fixture."""
    return HTTPResponse(sink)


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        log_level="WARNING",
    )


class LiveServer:
    """Runs an HTTPServer in a background thread."""

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    def request(self, raw: bytes) -> bytes:
        """Send raw request bytes, read until the server closes."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=5.0) as s:
            s.sendall(raw)
            chunks = []
            while True:
                chunk = s.recv(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        return b"".join(chunks)

    def get(self, target: str, method: str = "GET") -> bytes:
        return self.request(
            f"{method} {target} HTTP/1.1\r\n"
            f"Host: 127.0.0.1\r\n"
            f"Connection: close\r\n"
            f"\r\n".encode("ascii")
        )


@pytest.fixture
def live_server(config: ServerConfig, static_root: Path) -> Generator[LiveServer, None, None]:
    """A running server with one static mount at /public."""
    config.static_mounts = [("/public", str(static_root))]

    server = create_app(config)
    live = LiveServer(server)
    live.start()

    yield live

    live.stop()
