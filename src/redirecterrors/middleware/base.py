"""
=============================================================================
BASE MIDDLEWARE INTERFACE
=============================================================================

Defines the handler/middleware protocol and the pipeline for chaining
middleware. Implements the Chain of Responsibility design pattern.

=============================================================================
STREAMING HANDLERS
=============================================================================

A handler does not RETURN a response, it WRITES one:

    def handler(request: HTTPRequest, writer: ResponseWriter) -> None:
        writer.headers["Content-Type"] = "text/plain"
        writer.write_header(401)
        writer.write(b"Unauthorized")

A middleware receives the same pair plus the next handler, and may hand
the next handler a DIFFERENT writer that wraps the real one:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   client ◄── real writer ◄── wrapping writer ◄── next handler        │
    │                    ▲               │                                 │
    │                    │               └─ sees every status/header/byte  │
    │                    │                  before the client does         │
    │                    └─ middleware may write its own response here     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

That is how the redirect middleware can swallow a 401 body and send a
302 instead: it is standing between the handler and the socket.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseWriter, write_response


logger = logging.getLogger(__name__)


# A handler takes a request and a writer, and writes its response.
Handler = Callable[[HTTPRequest, ResponseWriter], None]

# Kept for readability in middleware signatures.
NextHandler = Handler


class Middleware(ABC):
    """
    Abstract base class for middleware.

        class MyMiddleware(Middleware):
            def __call__(self, request, writer, next):
                writer.headers["X-Processed-By"] = "MyMiddleware"   # before
                next(request, writer)                              # continue
                # after: the response may already be on the wire
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, writer: ResponseWriter,
                 next: NextHandler) -> None:
        """
        Process the request.

        Args:
            request: The incoming HTTP request
            writer: Where the response goes
            next: The next handler in the chain (call this to continue!)
        """

    @property
    def name(self) -> str:
        """Get the middleware name for logging."""
        return self.__class__.__name__


class MiddlewarePipeline:
    """
    Chains multiple middleware together with a final handler.

        pipeline = MiddlewarePipeline()
        pipeline.add(LoggingMiddleware())          # first added = outermost
        pipeline.add(RedirectErrorsMiddleware(config))

        handler = pipeline.wrap(upstream)
        handler(request, writer)

    Request flows inward (Logging → RedirectErrors → upstream); writes
    flow outward through whatever writers the middleware installed.
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        """Add middleware; returns self for chaining."""
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        for mw in middleware:
            self.add(mw)
        return self

    def wrap(self, handler: Handler) -> Handler:
        """
        Wrap a handler with all middleware in the pipeline.

        Wrapping runs in REVERSE so the first-added middleware ends up
        outermost: [A, B, C] + h  ─►  A(B(C(h))).
        """
        current = handler
        for middleware in reversed(self._middleware):
            current = self._create_wrapped_handler(middleware, current)
        return current

    def _create_wrapped_handler(self, middleware: Middleware,
                                next_handler: Handler) -> Handler:
        def wrapped(request: HTTPRequest, writer: ResponseWriter) -> None:
            middleware(request, writer, next_handler)

        return wrapped

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self):
        return iter(self._middleware)


class FunctionMiddleware(Middleware):
    """
    Wraps a plain function as middleware.

        def add_header(request, writer, next):
            writer.headers["X-Custom"] = "value"
            next(request, writer)

        pipeline.add(FunctionMiddleware(add_header))
    """

    def __init__(
        self,
        func: Callable[[HTTPRequest, ResponseWriter, NextHandler], None],
        name: Optional[str] = None
    ):
        self._func = func
        self._name = name or func.__name__

    def __call__(self, request: HTTPRequest, writer: ResponseWriter,
                 next: NextHandler) -> None:
        self._func(request, writer, next)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(
    func: Callable[[HTTPRequest, ResponseWriter, NextHandler], None]
) -> FunctionMiddleware:
    """Decorator form of FunctionMiddleware."""
    return FunctionMiddleware(func)


def response_handler(func: Callable[[HTTPRequest], HTTPResponse]) -> Handler:
    """
    Adapt a function that RETURNS an HTTPResponse into a streaming Handler.

        @response_handler
        def auth_check(request):
            if request.get_cookie("session"):
                return ok()
            return unauthorized(challenge="Bearer")
    """
    def handler(request: HTTPRequest, writer: ResponseWriter) -> None:
        write_response(writer, func(request))

    handler.__name__ = getattr(func, "__name__", "handler")
    handler.__doc__ = func.__doc__
    return handler
