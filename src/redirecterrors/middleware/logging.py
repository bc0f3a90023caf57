"""
=============================================================================
ACCESS LOGGING MIDDLEWARE
=============================================================================

One line per request: who asked for what, what status went back, how
many body bytes, how long it took, and where the client was sent if the
answer was a redirect.

    10.0.0.7 - - [17/Oct/2026:09:12:44 +0000] "GET /app" 302 11 3.41ms -> https://login/?rd=...

With streaming writers the middleware never gets a response object back,
so it hands the rest of the chain a thin writer that watches the status,
the committed headers and the byte count on their way to the real sink:

    LoggingMiddleware
        │  writer = _ObservingWriter(real_writer)
        ▼
    RedirectErrorsMiddleware ──► upstream
        │
        ▼  status + headers + bytes pass through _ObservingWriter
    real writer ──► client

Because LoggingMiddleware sits OUTSIDE the redirect middleware, the
logged status is what the client received (e.g. 302), not what the
upstream answered (e.g. 401). The redirect middleware logs the latter.
=============================================================================
"""

from dataclasses import asdict, dataclass
from typing import Iterable, Optional
import json
import logging
import time
import uuid

from .base import Middleware, NextHandler
from ..http.headers import Headers
from ..http.request import HTTPRequest
from ..http.response import ResponseWriter


# Separate from the module tree so access logs can be routed on their own:
#   logging.getLogger("redirecterrors.access").addHandler(file_handler)
logger = logging.getLogger("redirecterrors.access")


@dataclass
class AccessRecord:
    """What one request/response exchange looked like from the outside."""

    request_id: str
    method: str
    target: str
    client_ip: str
    user_agent: str
    status: int
    bytes_sent: int
    duration_ms: float
    location: Optional[str]
    timestamp: str

    def to_json(self) -> str:
        fields = asdict(self)
        fields["duration_ms"] = round(self.duration_ms, 2)
        if self.location is None:
            del fields["location"]
        return json.dumps(fields)

    def to_text(self) -> str:
        line = (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.method} {self.target}" {self.status} '
            f'{self.bytes_sent} {self.duration_ms:.2f}ms'
        )
        if self.location:
            line += f" -> {self.location}"
        return line


class _ObservingWriter(ResponseWriter):
    """Forwards everything to `sink`, keeping what a log line needs."""

    def __init__(self, sink: ResponseWriter):
        super().__init__()
        self._sink = sink
        self.sent_headers = Headers()
        self.bytes_written = 0

    def _commit(self, status: int, headers: Headers) -> None:
        self.sent_headers = headers
        self._sink.headers.update_from(headers)
        self._sink.write_header(status)

    def _write_body(self, data: bytes) -> None:
        self._sink.write(data)
        self.bytes_written += len(data)


class LoggingMiddleware(Middleware):
    """
    Access log middleware. Put it FIRST in the pipeline so it sees the
    final answer:

        pipeline.add(LoggingMiddleware(log_format="json"))
        pipeline.add(RedirectErrorsMiddleware(config))

    Args:
        log_format: "text" (Apache-like) or "json".
        include_request_id: Send an 8-character X-Request-ID with every
            response; it also appears in the log record.
        log_level: Level access lines are logged at.
        skip_paths: Request paths that are served but not logged.
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = frozenset(skip_paths or ())

    def __call__(self, request: HTTPRequest, writer: ResponseWriter,
                 next: NextHandler) -> None:
        request_id = uuid.uuid4().hex[:8]
        started = time.perf_counter()

        observer = _ObservingWriter(writer)
        # Staged where inner middleware can see it, and remove it
        if self.include_request_id:
            observer.headers.set("X-Request-ID", request_id)
        try:
            next(request, observer)
        except Exception as e:
            logger.error(
                f"[{request_id}] {request.method} {request.target} failed after "
                f"{_elapsed_ms(started):.2f}ms: {type(e).__name__}: {e}"
            )
            raise

        if request.path in self.skip_paths:
            return

        record = AccessRecord(
            request_id=request_id,
            method=request.method,
            target=request.target,
            client_ip=request.client_address[0],
            user_agent=request.user_agent or "-",
            status=observer.status if observer.status is not None else 200,
            bytes_sent=observer.bytes_written,
            duration_ms=_elapsed_ms(started),
            location=observer.sent_headers.get("Location"),
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )
        message = record.to_json() if self.log_format == "json" else record.to_text()
        logger.log(self.log_level, message)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
