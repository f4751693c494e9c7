"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.1 request bytes into an HTTPRequest.

=============================================================================
REQUEST LINE
=============================================================================

    GET /public/docs/?lang=en HTTP/1.1\r\n
    ─┬─ ──────────┬────────── ────┬───
     │            │               │
   Method      Target          Version
                  │
        ┌─────────┴─────────┐
        │                   │
      Path               Query
  /public/docs/          lang=en

The target is kept exactly as it arrived on the wire. Nothing here
percent-decodes it or inspects ".." segments: turning a target into a
filesystem location is the job of the static file stage, which has to see
the raw form to reject encoded traversal (%2e%2e, %2f) reliably. Decoding
early would hand it a string that already lost that information.

=============================================================================
METHODS
=============================================================================

Any uppercase token is accepted. Only GET and HEAD mean anything to the
built-in stages; everything else is carried through the pipeline untouched
so a later stage can decide what to do with it.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional
import re


class HTTPParseError(Exception):
    """
    Raised when request bytes cannot be parsed.

    Carries the status code the server should answer with:

        400 Bad Request                 - malformed syntax
        413 Payload Too Large           - over max_request_size
        505 HTTP Version Not Supported  - not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    One instance exists per request. It is handed from stage to stage by the
    pipeline; a stage either returns it inside Continue or stops forwarding
    it by terminating.

    Attributes:
        method:         "GET", "HEAD", or any other token (opaque).
        target:         Raw request URI, query string included.
        version:        "HTTP/1.0" or "HTTP/1.1".
        headers:        Header dict with lowercase keys.
        body:           Raw body bytes (opaque to the pipeline).
        client_address: (ip, port) of the peer.
    """

    method: str
    target: str
    version: str = "HTTP/1.1"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_address: tuple[str, int] = ("", 0)

    @property
    def path(self) -> str:
        """Target up to the first "?" (still percent-encoded)."""
        return self.target.split("?", 1)[0]

    @property
    def query(self) -> str:
        """Raw query string, "" when absent."""
        parts = self.target.split("?", 1)
        return parts[1] if len(parts) == 2 else ""

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client wants the connection kept open.

            HTTP/1.1: keep alive unless "Connection: close"
            HTTP/1.0: close unless "Connection: keep-alive"
        """
        connection = self.headers.get("connection", "").lower()

        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)


class RequestParser:
    """
    Parses raw request bytes into HTTPRequest objects.

    Steps:
        1. size check (413)
        2. split head and body at \\r\\n\\r\\n
        3. request line: METHOD SP TARGET SP VERSION
        4. headers: "Name: value", names lowercased, repeats comma-joined
        5. body: exactly Content-Length bytes
    """

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data.

        Args:
            data: Raw bytes as read from the connection.
            client_address: Peer (ip, port), kept for logging.

        Returns:
            Parsed HTTPRequest.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413,
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        try:
            # Request line and headers are ASCII per RFC 7230; anything
            # else is a client bug, not something to guess around.
            header_section = data[:header_end].decode("ascii")
        except UnicodeDecodeError as e:
            raise HTTPParseError(f"Non-ASCII bytes in request head: {e}")

        body = data[header_end + 4:]
        lines = header_section.split("\r\n")

        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")
        if content_length < 0:
            raise HTTPParseError("Negative Content-Length header")

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            target=target,
            version=version,
            headers=headers,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        return method, target, version

    def _parse_headers(self, lines: list[str]) -> dict[str, str]:
        """
        Parse header lines into a dict.

        - names are lowercased (headers are case-insensitive)
        - obsolete line folding is joined onto the previous header
        - repeated headers are combined with ", "
        - lines without a colon are skipped (lenient)
        """
        headers: dict[str, str] = {}
        current_name: Optional[str] = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """Parse one request with a throwaway RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
