"""
=============================================================================
MIDDLEWARE
=============================================================================

Middleware runs BETWEEN receiving a request and the final handler, and
can observe or replace what the handler writes:

    Incoming Request
         │
         ▼
    ┌──────────────────────────┐
    │ LoggingMiddleware        │ ──► access log line, X-Request-ID
    └────────────┬─────────────┘
                 ▼
    ┌──────────────────────────┐
    │ RedirectErrorsMiddleware │ ──► 401 from below? send 302 instead
    └────────────┬─────────────┘
                 ▼
    ┌──────────────────────────┐
    │ Handler (auth upstream)  │
    └──────────────────────────┘

AVAILABLE MIDDLEWARE

LoggingMiddleware:
    Access log per request with timing, status and size.

RedirectErrorsMiddleware:
    Converts configured status codes into redirects, with header and
    cookie rewriting. See middleware.redirect.
=============================================================================
"""

from .base import (
    Handler,
    NextHandler,
    Middleware,
    MiddlewarePipeline,
    FunctionMiddleware,
    function_middleware,
    response_handler,
)
from .capture import CapturedResponse, CodeState, ResponseCapture
from .logging import LoggingMiddleware
from .redirect import (
    CompiledConfig,
    Redirect,
    RedirectComposer,
    RedirectErrorsMiddleware,
    compile_config,
    new,
)

__all__ = [
    # Base classes
    "Handler",
    "NextHandler",
    "Middleware",
    "MiddlewarePipeline",
    "FunctionMiddleware",
    "function_middleware",
    "response_handler",

    # Capture
    "CapturedResponse",
    "CodeState",
    "ResponseCapture",

    # Built-in middleware
    "LoggingMiddleware",
    "RedirectErrorsMiddleware",

    # Redirect internals
    "CompiledConfig",
    "Redirect",
    "RedirectComposer",
    "compile_config",
    "new",
]
