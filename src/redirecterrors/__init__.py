"""
=============================================================================
REDIRECTERRORS - REDIRECT ON HTTP ERRORS
=============================================================================

HTTP middleware that watches the status code an upstream handler writes
and, for configured codes, replaces the response with a redirect built
from a URL template, with programmable header and cookie rewriting.

Typical use: turn an authentication check's 401 into a 302 to the login
page, carrying the URL the user wanted, and expire stale auth cookies.

=============================================================================
QUICK START
=============================================================================

    from redirecterrors import RedirectErrorsConfig, new
    from redirecterrors.http import HTTPRequest, ResponseRecorder

    config = RedirectErrorsConfig(
        status=["401"],
        target="https://auth.example.com/login?rd={url}",
        output_remove_cookies=["^authentik_proxy_.+$"],
    )

    def upstream(request, writer):
        writer.write_header(401)

    handler = new(upstream, config)

    recorder = ResponseRecorder()
    handler(HTTPRequest(method="GET", target="http://localhost"), recorder)
    recorder.status                       # 302
    recorder.sent_headers["Location"]     # https://auth.example.com/login?rd=http%3A%2F%2Flocalhost

Or as a standalone server in front of an auth service:

    python -m redirecterrors serve config.json --upstream http://auth:9000

=============================================================================
PACKAGE LAYOUT
=============================================================================

    redirecterrors/
    ├── config.py          RedirectErrorsConfig, ServerConfig
    ├── errors.py          exception hierarchy
    ├── http/              requests, headers, writers, status ranges
    ├── middleware/        pipeline, capture, redirect, access logging
    ├── handlers/          UpstreamHandler
    ├── core/              client connections
    └── server.py          threaded HTTP server
=============================================================================
"""

__version__ = "1.0.0"

from .config import RedirectErrorsConfig, ServerConfig, create_config
from .errors import (
    ConfigError,
    RedirectErrorsError,
    ResponseWriteError,
    StatusRangeError,
)
from .middleware import (
    LoggingMiddleware,
    MiddlewarePipeline,
    RedirectErrorsMiddleware,
    new,
)
from .server import HTTPServer

__all__ = [
    "__version__",
    "RedirectErrorsConfig",
    "ServerConfig",
    "create_config",
    "ConfigError",
    "RedirectErrorsError",
    "ResponseWriteError",
    "StatusRangeError",
    "LoggingMiddleware",
    "MiddlewarePipeline",
    "RedirectErrorsMiddleware",
    "new",
    "HTTPServer",
]
