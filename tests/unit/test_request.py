"""
Unit tests for HTTP request parsing.
"""

import pytest

from httpchain.http.request import (
    HTTPRequest,
    RequestParser,
    HTTPParseError,
    parse_request,
)


class TestRequestParser:
    """Tests for RequestParser class."""

    def test_parse_simple_get(self, sample_get_request: bytes):
        """Test parsing a simple GET request."""
        parser = RequestParser()
        request = parser.parse(sample_get_request, ("127.0.0.1", 12345))

        assert request.method == "GET"
        assert request.target == "/public/docs/?lang=en"
        assert request.path == "/public/docs/"
        assert request.query == "lang=en"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)

    def test_parse_headers(self, sample_get_request: bytes):
        """Test that headers are parsed correctly."""
        request = parse_request(sample_get_request)

        assert request.host == "localhost:8080"
        assert request.user_agent == "pytest"
        assert request.headers["accept"] == "text/html"
        assert request.is_keep_alive is True

    def test_parse_post_with_body(self, sample_post_request: bytes):
        """Test parsing POST request with a body."""
        request = parse_request(sample_post_request)

        assert request.method == "POST"
        assert request.path == "/api/users"
        assert request.body.startswith(b'{"name": "John"')
        assert request.is_keep_alive is False

    def test_target_kept_raw(self):
        """Percent-encoding and dot segments reach the stages untouched."""
        raw = b"GET /public/%2e%2e/../a%20b.txt?q=hello%20world HTTP/1.1\r\nHost: test\r\n\r\n"
        request = parse_request(raw)

        assert request.target == "/public/%2e%2e/../a%20b.txt?q=hello%20world"
        assert request.path == "/public/%2e%2e/../a%20b.txt"
        assert request.query == "q=hello%20world"

    def test_any_method_token_accepted(self):
        """Unknown methods are carried through for stages to decide on."""
        request = parse_request(b"PURGE /cache HTTP/1.1\r\nHost: test\r\n\r\n")
        assert request.method == "PURGE"

    def test_lowercase_method_rejected(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"get / HTTP/1.1\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_parse_invalid_request_line(self):
        """Test handling of malformed request line."""
        raw = b"GET\r\nHost: test\r\n\r\n"

        with pytest.raises(HTTPParseError):
            parse_request(raw)

    def test_parse_missing_headers(self):
        """Test parsing request with no headers."""
        raw = b"GET / HTTP/1.1\r\n\r\n"
        request = parse_request(raw)

        assert request.method == "GET"
        assert request.path == "/"
        assert len(request.headers) == 0

    def test_missing_terminator(self):
        with pytest.raises(HTTPParseError, match="terminator"):
            parse_request(b"GET / HTTP/1.1\r\nHost: test\r\n")

    def test_non_ascii_head_rejected(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request("GET /café HTTP/1.1\r\n\r\n".encode("utf-8"))

        assert exc_info.value.status_code == 400

    def test_parse_request_too_large(self):
        """Test that oversized requests are rejected."""
        parser = RequestParser(max_request_size=100)
        raw = b"GET / HTTP/1.1\r\n" + b"X-Large: " + b"A" * 200 + b"\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parser.parse(raw)

        assert exc_info.value.status_code == 413

    def test_unsupported_version(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/2.0\r\n\r\n")

        assert exc_info.value.status_code == 505

    def test_http_version_parsing(self):
        """Test HTTP/1.0 and HTTP/1.1 version handling."""
        # HTTP/1.0 (Connection: close by default)
        request_10 = parse_request(b"GET / HTTP/1.0\r\nHost: test\r\n\r\n")
        assert request_10.version == "HTTP/1.0"
        assert request_10.is_keep_alive is False

        request_10_ka = parse_request(b"GET / HTTP/1.0\r\nConnection: Keep-Alive\r\n\r\n")
        assert request_10_ka.is_keep_alive is True

        # HTTP/1.1 (keep-alive by default)
        request_11 = parse_request(b"GET / HTTP/1.1\r\nHost: test\r\n\r\n")
        assert request_11.version == "HTTP/1.1"
        assert request_11.is_keep_alive is True

    def test_content_length_handling(self):
        """Test Content-Length validation."""
        body = b"test body"
        raw = (
            b"POST / HTTP/1.1\r\n"
            b"Content-Length: 9\r\n"
            b"\r\n"
        ) + body

        request = parse_request(raw)
        assert request.content_length == 9
        assert request.body == body

    @pytest.mark.parametrize("value", [b"abc", b"-1"])
    def test_bad_content_length(self, value: bytes):
        raw = b"POST / HTTP/1.1\r\nContent-Length: " + value + b"\r\n\r\n"

        with pytest.raises(HTTPParseError):
            parse_request(raw)

    def test_short_body(self):
        raw = b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\nabc"

        with pytest.raises(HTTPParseError, match="Incomplete body"):
            parse_request(raw)

    def test_case_insensitive_headers(self):
        """Test that header names are case-insensitive."""
        raw = b"GET / HTTP/1.1\r\nCONTENT-TYPE: text/html\r\n\r\n"
        request = parse_request(raw)

        assert request.get_header("Content-Type") == "text/html"
        assert request.get_header("content-type") == "text/html"

    def test_repeated_headers_joined(self):
        raw = b"GET / HTTP/1.1\r\nAccept: a\r\nAccept: b\r\n\r\n"
        assert parse_request(raw).headers["accept"] == "a, b"


class TestHTTPRequest:
    """Tests for HTTPRequest dataclass."""

    def test_get_header_default(self):
        """Test get_header with default value."""
        request = HTTPRequest(method="GET", target="/")

        assert request.get_header("X-Missing") == ""
        assert request.get_header("X-Missing", "default") == "default"

    def test_query_empty(self):
        request = HTTPRequest(method="GET", target="/public/a.txt")

        assert request.path == "/public/a.txt"
        assert request.query == ""
