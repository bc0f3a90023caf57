"""
=============================================================================
HTTP PROTOCOL PRIMITIVES
=============================================================================

    REQUEST:                          RESPONSE:
    ─────────                         ──────────
    GET /path HTTP/1.1\r\n            HTTP/1.1 302 Found\r\n
    Header: Value\r\n                 Location: https://login/...\r\n
    Cookie: a=1; b=2\r\n              Set-Cookie: a=; Max-Age=0\r\n
    \r\n                              \r\n
    [body]                            Redirecting

- HTTPRequest / RequestParser: parse what the client sent
- Headers: case-insensitive multimap for response headers
- ResponseWriter and friends: where handlers write their response
- CodeRangeSet: which status codes a middleware cares about
=============================================================================
"""

from .headers import Headers, canonical_header_name
from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    ResponseWriter,
    ResponseRecorder,
    StreamResponseWriter,
    write_response,
    format_http_date,
    text_response,
    ok,
    unauthorized,
    bad_gateway,
    internal_error,
)
from .status import CodeRange, CodeRangeSet, reason_phrase

__all__ = [
    # Headers
    "Headers",
    "canonical_header_name",

    # Requests
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",

    # Responses
    "HTTPResponse",
    "ResponseBuilder",
    "ResponseWriter",
    "ResponseRecorder",
    "StreamResponseWriter",
    "write_response",
    "format_http_date",
    "text_response",
    "ok",
    "unauthorized",
    "bad_gateway",
    "internal_error",

    # Status codes
    "CodeRange",
    "CodeRangeSet",
    "reason_phrase",
]
