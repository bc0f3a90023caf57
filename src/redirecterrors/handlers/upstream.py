"""
=============================================================================
UPSTREAM (FORWARD-AUTH) HANDLER
=============================================================================

Replays each inbound request against an upstream service and streams its
answer back through the ResponseWriter. Placed behind
RedirectErrorsMiddleware, an authentication service's 401/403 becomes a
login redirect while its 2xx answers pass straight through:

    client ──► HTTPServer ──► RedirectErrorsMiddleware ──► UpstreamHandler
                                                                │ urllib
                                                                ▼
                                                        auth service

The upstream's own redirects are NOT followed: a 302 from upstream is
relayed to the client as-is, like any other status.

Hop-by-hop headers (Connection, Transfer-Encoding, ...) describe one
TCP hop and are dropped in both directions. X-Forwarded-* headers are
added when the inbound request does not carry them already.
=============================================================================
"""

from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.request import HTTPRedirectHandler, ProxyHandler, Request, build_opener
import logging

from ..http.request import HTTPRequest
from ..http.response import ResponseWriter, bad_gateway, write_response


logger = logging.getLogger(__name__)


HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

CHUNK_SIZE = 64 * 1024


class _NoRedirect(HTTPRedirectHandler):
    """Make urllib hand 3xx responses back instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


class UpstreamHandler:
    """
    Handler that forwards requests to `base_url`.

        handler = UpstreamHandler("http://auth.internal:9000", timeout=10)
        handler(request, writer)

    Connection failures are answered with 502 Bad Gateway.
    """

    def __init__(self, base_url: str, timeout: Optional[float] = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Upstreams are internal; *_proxy environment variables do not apply
        self._opener = build_opener(ProxyHandler({}), _NoRedirect)

    def __call__(self, request: HTTPRequest, writer: ResponseWriter) -> None:
        upstream_request = self.build_request(request)

        try:
            response = self._opener.open(upstream_request, timeout=self.timeout)
        except HTTPError as e:
            # 4xx/5xx (and unfollowed 3xx) arrive as exceptions, but they
            # are ordinary responses to relay.
            response = e
        except (URLError, OSError) as e:
            logger.error(f"Upstream {self.base_url} unreachable: {e}")
            write_response(writer, bad_gateway())
            return

        try:
            self._relay(response, writer)
        finally:
            response.close()

    def build_request(self, request: HTTPRequest) -> Request:
        """Translate an inbound HTTPRequest into a urllib Request."""
        headers = {
            name: value
            for name, value in request.headers.items()
            if name not in HOP_BY_HOP_HEADERS and name not in ("host", "content-length")
        }
        if "x-forwarded-host" not in headers and request.host:
            headers["x-forwarded-host"] = request.host
        if "x-forwarded-proto" not in headers:
            headers["x-forwarded-proto"] = "http"
        client_ip = request.client_address[0]
        if client_ip:
            forwarded_for = headers.get("x-forwarded-for")
            headers["x-forwarded-for"] = (
                f"{forwarded_for}, {client_ip}" if forwarded_for else client_ip
            )

        return Request(
            self.base_url + request.request_uri,
            data=request.body or None,
            headers=headers,
            method=request.method,
        )

    def _relay(self, response, writer: ResponseWriter) -> None:
        for name, value in response.headers.items():
            if name.lower() not in HOP_BY_HOP_HEADERS:
                writer.headers.add(name, value)

        writer.write_header(response.getcode())

        while True:
            chunk = response.read(CHUNK_SIZE)
            if not chunk:
                break
            writer.write(chunk)
