"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.x request bytes into HTTPRequest objects.

=============================================================================
WHAT THE REDIRECT PIPELINE NEEDS FROM A REQUEST
=============================================================================

    GET /api/test?x=1 HTTP/1.1\r\n
    Host: localhost:8080\r\n
    X-Forwarded-Proto: https\r\n          ─► forwarded_proto
    X-Forwarded-Host: example.com\r\n     ─► forwarded_host
    Cookie: authentik_proxy_user=u; keep_this=k\r\n   ─► cookies
    \r\n

    request line target  "/api/test?x=1"   ─► url, request_uri

Behind a reverse proxy the request line only carries the path; the
scheme and public host the browser used arrive in X-Forwarded-* headers.
The redirect target uses them to rebuild the URL the user actually asked
for, so the login page can send them back there.

The target may also be in absolute form ("GET http://localhost/ HTTP/1.1"),
as sent to forward proxies. `url` returns whichever form arrived.
=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit, unquote
import re


# Cookie names must be HTTP tokens; anything else is skipped.
_COOKIE_NAME_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code to answer with:

        400 Bad Request                 - Malformed request syntax
        405 Method Not Allowed          - Unknown method
        413 Payload Too Large           - Request exceeds size limit
        505 HTTP Version Not Supported  - Unknown HTTP version
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    Header names are stored lower-cased; use get_header() for lookups.

        request = HTTPRequest(
            method="GET",
            target="/api/test",
            headers={"X-Forwarded-Proto": "https", "X-Forwarded-Host": "example.com"},
        )
        request.forwarded_proto   # "https"
        request.request_uri       # "/api/test"
    """

    method: str
    target: str = "/"                    # Request-target exactly as received
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_address: Tuple[str, int] = ("", 0)

    # Derived from target in __post_init__
    path: str = field(init=False)
    query_params: Dict[str, List[str]] = field(init=False)

    def __post_init__(self):
        self.headers = {name.lower(): value for name, value in self.headers.items()}
        parsed = urlsplit(self.target)
        self.path = unquote(parsed.path) or "/"
        self.query_params = parse_qs(parsed.query, keep_blank_values=True)

    # =========================================================================
    # URL ACCESSORS
    # =========================================================================

    @property
    def url(self) -> str:
        """The request target as the server saw it."""
        return self.target

    @property
    def request_uri(self) -> str:
        """
        Escaped path and query, e.g. "/api/test?x=1".

        For an absolute-form target the scheme and host are dropped.
        """
        parsed = urlsplit(self.target)
        uri = parsed.path or "/"
        if parsed.query:
            uri += "?" + parsed.query
        return uri

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def forwarded_proto(self) -> str:
        """X-Forwarded-Proto set by the reverse proxy ("" if absent)."""
        return self.headers.get("x-forwarded-proto", "")

    @property
    def forwarded_host(self) -> str:
        """X-Forwarded-Host set by the reverse proxy ("" if absent)."""
        return self.headers.get("x-forwarded-host", "")

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    # =========================================================================
    # COOKIES
    # =========================================================================

    @property
    def cookies(self) -> List[Tuple[str, str]]:
        """
        Cookies sent by the client, in order, as (name, value) pairs.

            Cookie: a=1; b=2; a=3   ─►  [("a", "1"), ("b", "2"), ("a", "3")]

        Duplicates are kept (browsers send one per matching path/domain).
        Pairs without a valid name are skipped.
        """
        header = self.headers.get("cookie", "")
        cookies = []
        for part in header.split(";"):
            part = part.strip()
            if not part:
                continue
            name, _, value = part.partition("=")
            name = name.strip()
            if not _COOKIE_NAME_PATTERN.match(name):
                continue
            value = value.strip()
            if len(value) > 1 and value[0] == value[-1] == '"':
                value = value[1:-1]
            cookies.append((name, value))
        return cookies

    def get_cookie(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first cookie with this name."""
        for cookie_name, value in self.cookies:
            if cookie_name == name:
                return value
        return default

    def get_header(self, name: str, default: str = "") -> str:
        """Get a header value (case-insensitive lookup)."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

        Raw bytes
            │
            ├── size check                  413
            ├── split at \r\n\r\n           400 if missing
            ├── request line                400 / 405 / 505
            ├── header lines                lower-cased, repeats joined
            └── body (Content-Length bytes) 400 if short
            ▼
        HTTPRequest
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: Tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {headers['content-length']!r}")
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

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        """Split "METHOD SP TARGET SP VERSION" and validate each part."""
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        return method, target, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        """
        Parse header lines into a dict with lower-cased names.

        Repeated headers are folded into one value. Cookie headers are
        joined with "; " (RFC 6265), everything else with ", " (RFC 7230).
        Obsolete line folding (leading whitespace) continues the previous
        header.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue  # lenient: skip malformed header lines

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                separator = "; " if name == "cookie" else ", "
                headers[name] += separator + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """Parse an HTTP request with a one-off RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
