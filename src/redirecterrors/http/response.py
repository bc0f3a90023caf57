"""
=============================================================================
HTTP RESPONSES AND RESPONSE WRITERS
=============================================================================

Two ways to produce a response live side by side here:

1. BUILD IT WHOLE - HTTPResponse / ResponseBuilder
   A handler returns a complete object and it is serialized in one go.

2. STREAM IT - ResponseWriter
   A handler writes the pieces as it goes:

        writer.headers["Content-Type"] = "text/plain"
        writer.write_header(401)          ◄── status + headers COMMITTED
        writer.write(b"Unauthorized")     ◄── body bytes follow

The redirect middleware needs the streaming form. The status of a
response is only final once it is committed, and a middleware can only
decide "pass it through" vs "replace it with a redirect" by standing in
the write path at that exact moment.

=============================================================================
COMMIT SEMANTICS
=============================================================================

    ┌──────────────────────────┬───────────────────────────────────────────┐
    │  Call                    │  Effect                                   │
    ├──────────────────────────┼───────────────────────────────────────────┤
    │  headers[...] = ...      │  Staged; sent only when committed         │
    │  write_header(status)    │  Commits status + a snapshot of headers   │
    │  write_header() again    │  Ignored (first status wins)              │
    │  write(data) uncommitted │  Implicit write_header(200), then body    │
    │  headers[...] afterwards │  No effect on what was sent               │
    └──────────────────────────┴───────────────────────────────────────────┘

=============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union
import json
import logging

from ..errors import ResponseWriteError
from .headers import Headers
from .status import reason_phrase


logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "redirecterrors/1.0"


@dataclass
class HTTPResponse:
    """
    A complete HTTP response.

        HTTPResponse(status=302, headers=Headers({"Location": "/login"}))
    """

    status: int = 200
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {int(self.status)} {reason_phrase(int(self.status))}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers.set(name, value)
        return self

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def to_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """
        Serialize for the wire, adding Content-Length, Date and Server
        when the response does not carry them.
        """
        headers = self.headers.copy()
        if "Content-Length" not in headers:
            headers.set("Content-Length", str(len(self.body)))
        if "Date" not in headers:
            headers.set("Date", format_http_date(datetime.now(timezone.utc)))
        if "Server" not in headers:
            headers.set("Server", server_name)
        return serialize_head(self.status_line, headers) + self.body


class ResponseBuilder:
    """
    Fluent builder for HTTPResponse.

        ResponseBuilder().status(401).header("WWW-Authenticate", "Bearer").text("no").build()
    """

    def __init__(self):
        self._status = 200
        self._headers = Headers()
        self._body = b""

    def status(self, status: int) -> "ResponseBuilder":
        self._status = int(status)
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers.add(name, value)
        return self

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._headers.set("Content-Type", content_type)
        return self.body(text)

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        self._headers.set("Content-Type", "application/json; charset=utf-8")
        return self.body(json.dumps(data, indent=2 if pretty else None))

    def redirect(self, location: str, status: int = 302) -> "ResponseBuilder":
        self._status = int(status)
        self._headers.set("Location", location)
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(status=self._status, headers=self._headers.copy(), body=self._body)


# =============================================================================
# STREAMING WRITERS
# =============================================================================

class ResponseWriter(ABC):
    """
    The write surface handed to every handler.

    Subclasses decide where committed data goes by implementing
    _commit() and _write_body(); the commit rules in the module docstring
    are enforced here.
    """

    def __init__(self):
        self._headers = Headers()
        self._status: Optional[int] = None

    @property
    def headers(self) -> Headers:
        """Headers staged for the response (mutable until committed)."""
        return self._headers

    @property
    def status(self) -> Optional[int]:
        """Committed status, or None while uncommitted."""
        return self._status

    @property
    def committed(self) -> bool:
        return self._status is not None

    def write_header(self, status: int) -> None:
        if self._status is not None:
            logger.debug(f"Superfluous write_header({status}), status already {self._status}")
            return
        self._status = int(status)
        self._commit(self._status, self._headers.copy())

    def write(self, data: Union[str, bytes]) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if self._status is None:
            self.write_header(200)
        if data:
            self._write_body(data)
        return len(data)

    @abstractmethod
    def _commit(self, status: int, headers: Headers) -> None:
        """Send the status line and headers."""

    @abstractmethod
    def _write_body(self, data: bytes) -> None:
        """Send body bytes (status is already committed)."""


class ResponseRecorder(ResponseWriter):
    """
    In-memory sink that records what a handler wrote.

        recorder = ResponseRecorder()
        handler(request, recorder)
        recorder.status            # 302
        recorder.sent_headers      # headers as committed
        recorder.body              # b"Redirecting"
    """

    def __init__(self):
        super().__init__()
        self.sent_headers = Headers()
        self._body = bytearray()

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def _commit(self, status: int, headers: Headers) -> None:
        self.sent_headers = headers

    def _write_body(self, data: bytes) -> None:
        self._body.extend(data)

    def to_response(self) -> HTTPResponse:
        """Snapshot as an HTTPResponse (status 200 if nothing was written)."""
        return HTTPResponse(
            status=self._status if self._status is not None else 200,
            headers=self.sent_headers.copy(),
            body=self.body,
        )


class StreamResponseWriter(ResponseWriter):
    """
    Streams a response onto anything with a write(bytes) method: a socket
    Connection, a file, io.BytesIO.

    The body length is not known up front, so the response is framed by
    closing the connection ("Connection: close") unless the handler set
    Content-Length itself.

    Raises:
        ResponseWriteError: When the underlying stream fails.
    """

    def __init__(self, stream: Any, server_name: str = DEFAULT_SERVER_NAME,
                 send_body: bool = True):
        super().__init__()
        self._stream = stream
        self._server_name = server_name
        self._send_body = send_body  # False for HEAD requests

    def _commit(self, status: int, headers: Headers) -> None:
        if "Date" not in headers:
            headers.set("Date", format_http_date(datetime.now(timezone.utc)))
        if "Server" not in headers:
            headers.set("Server", self._server_name)
        headers.set("Connection", "close")
        status_line = f"HTTP/1.1 {status} {reason_phrase(status)}"
        self._send(serialize_head(status_line, headers))

    def _write_body(self, data: bytes) -> None:
        if self._send_body:
            self._send(data)

    def _send(self, data: bytes) -> None:
        try:
            self._stream.write(data)
        except OSError as e:
            raise ResponseWriteError(f"failed to write response: {e}") from e


def write_response(writer: ResponseWriter, response: HTTPResponse) -> None:
    """Copy a complete HTTPResponse onto a ResponseWriter."""
    writer.headers.update_from(response.headers)
    if response.body and "Content-Length" not in writer.headers:
        writer.headers.set("Content-Length", str(len(response.body)))
    writer.write_header(response.status)
    if response.body:
        writer.write(response.body)


def serialize_head(status_line: str, headers: Headers) -> bytes:
    """Status line + header lines + the blank separator line."""
    lines = [status_line]
    lines.extend(f"{name}: {value}" for name, value in headers.items())
    lines.append("")
    return ("\r\n".join(lines) + "\r\n").encode("utf-8")


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP date (RFC 7231 IMF-fixdate):

        Sun, 06 Nov 1994 08:49:37 GMT
    """
    weekdays = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    dt = dt.astimezone(timezone.utc)
    return (
        f"{weekdays[dt.weekday()]}, {dt.day:02d} {months[dt.month - 1]} "
        f"{dt.year} {dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def text_response(status: int, message: str) -> HTTPResponse:
    """Plain-text response with the given status."""
    return ResponseBuilder().status(status).text(message).build()


def ok(message: str = "OK") -> HTTPResponse:
    return text_response(200, message)


def unauthorized(message: str = "Unauthorized", challenge: str = "") -> HTTPResponse:
    """
    401 response, optionally with a WWW-Authenticate challenge.

    This is exactly the kind of response the redirect middleware turns
    into a login redirect.
    """
    response = text_response(401, message)
    if challenge:
        response.set_header("WWW-Authenticate", challenge)
    return response


def bad_gateway(message: str = "Bad Gateway") -> HTTPResponse:
    return text_response(502, message)


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return text_response(500, message)
