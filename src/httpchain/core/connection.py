"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket.

Reading: TCP is a byte stream, so bytes are buffered until a complete
request (head terminated by \\r\\n\\r\\n, plus Content-Length body bytes) is
available. Extra bytes stay buffered for the next keep-alive request.

Writing: a Connection is the byte sink an HTTPResponse writes into. write()
uses sendall(), so a response streaming a large file blocks the worker until
the kernel has taken every byte; there is no other backpressure.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONNECTION STATES                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   NEW ──► READING ──► PROCESSING ──► KEEP_ALIVE ──► READING ...     │
    │                            │                                         │
    │                            └──► CLOSING ──► CLOSED                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import logging
import socket
import time
import uuid


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


HEAD_TERMINATOR = b"\r\n\r\n"


class RequestTooLarge(ValueError):
    """Buffered request grew past max_request_size."""


@dataclass
class Connection:
    """
    A client connection.

    Attributes:
        socket: The accepted client socket.
        address: Client (ip, port).
        id: Short identifier used in log lines.
        requests_handled: Requests read on this connection so far.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request.

        Uses the shorter keep_alive_timeout for every request after the
        first: an idle keep-alive client is normal and just means "close".

        Returns:
            Request bytes, or None if the client closed the connection or
            went quiet between keep-alive requests.

        Raises:
            TimeoutError: The first request never arrived in time.
            RequestTooLarge: The request exceeds max_request_size.
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()
        idle_wait = self.keep_alive_timeout if self.requests_handled else self.timeout
        self.socket.settimeout(idle_wait)

        try:
            if not self._fill_until(lambda: HEAD_TERMINATOR in self._buffer):
                return None

            body_start = self._buffer.index(HEAD_TERMINATOR) + len(HEAD_TERMINATOR)
            wanted = body_start + self._parse_content_length(self._buffer[:body_start])

            # A short body is left to RequestParser to report.
            self._fill_until(lambda: len(self._buffer) >= wanted)

            request_bytes, self._buffer = self._buffer[:wanted], self._buffer[wanted:]
            self.requests_handled += 1
            return request_bytes

        except socket.timeout:
            if self.requests_handled:
                logger.debug(f"[{self.id}] Idle keep-alive connection timed out")
                return None
            raise TimeoutError("No request received before the timeout")

        finally:
            if self.state is not ConnectionState.CLOSED:
                self.socket.settimeout(self.timeout)

    def _fill_until(self, done) -> bool:
        """Receive into the buffer until done() holds. False on EOF."""
        while not done():
            chunk = self._recv()
            if not chunk:
                return False
            self._buffer += chunk
            if len(self._buffer) > self.max_request_size:
                raise RequestTooLarge(f"Request exceeds {self.max_request_size} bytes")
        return True

    def _recv(self) -> bytes:
        try:
            chunk = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""
        self.last_activity = time.time()
        return chunk

    @staticmethod
    def _parse_content_length(head: bytes) -> int:
        """
        Content-Length from raw head bytes, 0 when absent or unparsable.

        Needed before the request can be parsed, hence the crude scan.
        A bad value is reported properly by RequestParser afterwards.
        """
        for line in head.split(b"\r\n")[1:]:
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                try:
                    return max(0, int(value.strip()))
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING (byte sink for HTTPResponse)
    # =========================================================================

    def write(self, data: bytes) -> int:
        """
        Send all of data.

        Raises:
            OSError: The client went away mid-response.
        """
        self.socket.sendall(data)
        self.last_activity = time.time()
        return len(data)

    def flush(self) -> None:
        """Nothing is buffered on our side; sendall() already pushed it."""

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close gracefully: FIN, drain briefly, release the descriptor.
        Safe to call more than once.
        """
        if self.state is ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
