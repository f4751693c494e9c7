"""
=============================================================================
HTTP RESPONSE
=============================================================================

A write-once output channel bound to a byte sink.

=============================================================================
WHY WRITE-ONCE?
=============================================================================

The response writes straight into the connection instead of being built in
memory and serialized at the end. Static files are copied from disk to the
socket without ever being held whole in RAM, but bytes that reached the
socket cannot be taken back. The object therefore moves through three
states and never goes backwards:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      RESPONSE LIFECYCLE                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   PENDING ──────────► STREAMING ──────────► FINISHED                │
    │      │     head written    │     body done                          │
    │      │                     │                                        │
    │   set_status()          status/headers        every write raises    │
    │   set_header()          are frozen            ResponseStateError    │
    │   send() / send_file()                                              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Once a stage has sent a body, a later stage that tries to touch the response
gets a ResponseStateError instead of silently corrupting the stream.

=============================================================================
WIRE FORMAT
=============================================================================

    HTTP/1.1 200 OK\r\n
    Content-Length: 27\r\n        ← always set by the response itself
    Date: Wed, 01 Jan 2026 ...\r\n
    Server: httpchain/1.0\r\n
    \r\n
    <body bytes>

For HEAD requests (head_only=True) the head carries the Content-Length the
body would have had, and the body is not written.

=============================================================================
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Protocol, Union
from types import MappingProxyType
import logging
import os

from .status_codes import HTTPStatus


logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "httpchain/1.0"

# Chunk size for disk-to-socket copies.
COPY_BUFFER_SIZE = 64 * 1024


class Sink(Protocol):
    """Anything bytes can be written to: a Connection, io.BytesIO, ..."""

    def write(self, data: bytes) -> int: ...

    def flush(self) -> None: ...


class ResponseStateError(RuntimeError):
    """Raised when a response is modified after its head was written."""


class TruncatedBodyError(OSError):
    """A file ended before the Content-Length already sent for it."""


class ResponseState(Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    FINISHED = "finished"


class HTTPResponse:
    """
    Outgoing HTTP response.

    Usage inside a stage:

        response.set_header("X-Stage", "greeter")
        response.send(b"hello")          # head + body, response finished

        response.send_file(path)         # head + file bytes, finished

    Exactly one send()/send_file() call is allowed per response.
    """

    def __init__(
        self,
        sink: Sink,
        status: HTTPStatus = HTTPStatus.OK,
        headers: Optional[dict[str, str]] = None,
        version: str = "HTTP/1.1",
        server_name: str = DEFAULT_SERVER_NAME,
        head_only: bool = False,
    ):
        self._sink = sink
        self._status = HTTPStatus(status)
        self._headers: dict[str, str] = {}
        self.version = version
        self.server_name = server_name
        self.head_only = head_only

        self._state = ResponseState.PENDING
        self._bytes_sent = 0

        for name, value in (headers or {}).items():
            self.set_header(name, value)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ResponseState:
        return self._state

    @property
    def headers_sent(self) -> bool:
        """True once the status line and headers reached the sink."""
        return self._state is not ResponseState.PENDING

    @property
    def finished(self) -> bool:
        return self._state is ResponseState.FINISHED

    @property
    def bytes_sent(self) -> int:
        """Body bytes written (0 for HEAD)."""
        return self._bytes_sent

    @property
    def status(self) -> HTTPStatus:
        return self._status

    @property
    def headers(self) -> Mapping[str, str]:
        """Read-only view; use set_header() to change headers."""
        return MappingProxyType(self._headers)

    @property
    def status_line(self) -> str:
        return f"{self.version} {int(self._status)} {self._status.phrase}"

    # =========================================================================
    # MUTATION (only while PENDING)
    # =========================================================================

    def set_status(self, status: Union[HTTPStatus, int]) -> "HTTPResponse":
        self._ensure_pending()
        self._status = HTTPStatus(status)
        return self

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """
        Set a header, replacing any existing one with the same name in any
        letter case. Returns self for chaining.
        """
        self._ensure_pending()
        self._drop_header(name)
        self._headers[name] = value
        return self

    def remove_header(self, name: str) -> "HTTPResponse":
        self._ensure_pending()
        self._drop_header(name)
        return self

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self._headers.items():
            if key.lower() == lowered:
                return value
        return default

    # =========================================================================
    # SENDING
    # =========================================================================

    def send(self, body: Union[str, bytes] = b"") -> None:
        """
        Write the head and a complete in-memory body, then finish.

        Strings are encoded as UTF-8.
        """
        self._ensure_pending()

        if isinstance(body, str):
            body = body.encode("utf-8")

        self._write_head(len(body))
        if not self.head_only and body:
            self._sink.write(body)
            self._bytes_sent = len(body)
        self._finish()

    def send_file(self, path: Union[str, os.PathLike]) -> None:
        """
        Stream a file from disk as the response body, then finish.

        The file is opened before anything is written, so when it cannot be
        opened (removed since the caller checked it, permission denied) the
        OSError propagates with the response still PENDING and the caller can
        still answer with an error status.

        No Content-Type is set. The length comes from fstat() on the open
        descriptor, not from an earlier stat() of the path.
        Exactly that many bytes are sent even if the file grows meanwhile;
        a file that shrinks raises TruncatedBodyError after the head is out,
        and the connection has to be closed.

        Raises:
            OSError: If the file cannot be opened or read.
            TruncatedBodyError: If the file shrank while being sent.
            ResponseStateError: If the response was already sent.
        """
        self._ensure_pending()

        with open(path, "rb") as f:
            size = os.fstat(f.fileno()).st_size
            self._write_head(size)

            if not self.head_only:
                self._copy_exactly(f, size)

        logger.debug(f"Sent file {Path(path).name} ({size} bytes)")
        self._finish()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _copy_exactly(self, f, size: int):
        remaining = size
        while remaining:
            chunk = f.read(min(remaining, COPY_BUFFER_SIZE))
            if not chunk:
                raise TruncatedBodyError(
                    f"File ended after {size - remaining} of {size} bytes"
                )
            self._sink.write(chunk)
            remaining -= len(chunk)
            self._bytes_sent += len(chunk)

    def _ensure_pending(self):
        if self._state is ResponseState.FINISHED:
            raise ResponseStateError("Response already sent")
        if self._state is ResponseState.STREAMING:
            raise ResponseStateError("Response head already written")

    def _drop_header(self, name: str):
        lowered = name.lower()
        for key in [k for k in self._headers if k.lower() == lowered]:
            del self._headers[key]

    def head_bytes(self, content_length: int) -> bytes:
        """
        Serialize status line and headers.

        Content-Length always reflects the body about to be written; Date and
        Server are added unless a stage already set them.
        """
        headers = dict(self._headers)
        for key in [k for k in headers if k.lower() == "content-length"]:
            del headers[key]
        headers["Content-Length"] = str(content_length)

        if self.get_header("Date") is None:
            headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if self.get_header("Server") is None:
            headers["Server"] = self.server_name

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        lines.append("")

        return "\r\n".join(lines).encode("latin-1") + b"\r\n"

    def _write_head(self, content_length: int):
        self._sink.write(self.head_bytes(content_length))
        self._state = ResponseState.STREAMING

    def _finish(self):
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            flush()
        self._state = ResponseState.FINISHED

    def __repr__(self) -> str:
        return (
            f"HTTPResponse(status={int(self._status)}, "
            f"state={self._state.value}, head_only={self.head_only})"
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an RFC 7231 HTTP-date.

    Example: Wed, 01 Jan 2026 12:00:00 GMT

    Built by hand because strftime("%a") and "%b" follow the process locale,
    and HTTP dates must be English.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    dt = dt.astimezone(timezone.utc)
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================
#
# One-liners for the plain-text error answers the server produces itself.
# Each one finishes the response it is given.
#
# =============================================================================

def send_text(response: HTTPResponse, status: HTTPStatus, message: str) -> None:
    """Answer with a plain-text body and the given status."""
    (response
        .set_status(status)
        .set_header("Content-Type", "text/plain; charset=utf-8")
        .send(message))


def not_found(response: HTTPResponse, message: str = "Not Found") -> None:
    send_text(response, HTTPStatus.NOT_FOUND, message)


def internal_error(response: HTTPResponse, message: str = "Internal Server Error") -> None:
    send_text(response, HTTPStatus.INTERNAL_SERVER_ERROR, message)
