"""
=============================================================================
REQUEST HANDLERS
=============================================================================

A handler writes a response for a request:

    def handler(request: HTTPRequest, writer: ResponseWriter) -> None

Handlers that prefer returning a whole HTTPResponse can be adapted with
middleware.response_handler.

AVAILABLE HANDLERS

UpstreamHandler:
    Forwards every request to an upstream service (typically an
    authentication check) and relays its answer.
=============================================================================
"""

from .upstream import UpstreamHandler

__all__ = [
    "UpstreamHandler",
]
