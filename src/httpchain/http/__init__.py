"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │ REQUEST (request.py)                                                │
    │ ─────────────────────────────────────────────────────────────────── │
    │ Raw bytes → HTTPRequest. Keeps the target undecoded.                │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │ RESPONSE (response.py)                                              │
    │ ─────────────────────────────────────────────────────────────────── │
    │ Write-once channel onto a byte sink. send() for in-memory bodies,   │
    │ send_file() to stream a file from disk.                             │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │ STATUS CODES (status_codes.py)                                      │
    │ ─────────────────────────────────────────────────────────────────── │
    │ HTTPStatus IntEnum with reason phrases.                             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    ResponseState,
    ResponseStateError,
    TruncatedBodyError,
    format_http_date,
    send_text,
    not_found,
    internal_error,
)
from .status_codes import HTTPStatus

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",

    "HTTPResponse",
    "ResponseState",
    "ResponseStateError",
    "TruncatedBodyError",
    "format_http_date",
    "send_text",
    "not_found",
    "internal_error",

    "HTTPStatus",
]
