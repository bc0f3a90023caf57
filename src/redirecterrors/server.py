"""
=============================================================================
STANDALONE HTTP SERVER
=============================================================================

A small threaded HTTP/1.1 server so the redirect middleware can run on
its own in front of an authentication upstream.

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. ACCEPT         main thread, 1s accept timeout to notice shutdown
    2. DISPATCH       connection handed to a worker thread
    3. READ + PARSE   Connection.read_request → RequestParser
    4. CHAIN          middleware.wrap(handler)(request, StreamResponseWriter)
    5. FINISH         empty 200 if nothing was written; close the socket

=============================================================================
FAILURES
=============================================================================

    ┌─────────────────────────────┬─────────────────────────────────────┐
    │  What failed                │  What the client gets               │
    ├─────────────────────────────┼─────────────────────────────────────┤
    │  Request parsing            │  4xx/5xx from HTTPParseError        │
    │  Request too large          │  413                                │
    │  Handler raised, nothing    │  500                                │
    │  sent yet                   │                                     │
    │  Handler raised after the   │  connection closed (the status line │
    │  status went out            │  is already on the wire)            │
    │  Writing to the socket      │  nothing; logged, connection closed │
    └─────────────────────────────┴─────────────────────────────────────┘

Every failure affects only its own connection.
=============================================================================
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple
import logging
import signal
import socket
import threading

from .config import ServerConfig
from .core.connection import Connection, RequestTooLarge
from .errors import ResponseWriteError
from .http.request import HTTPParseError, HTTPRequest, RequestParser
from .http.response import (
    ResponseWriter,
    StreamResponseWriter,
    internal_error,
    text_response,
    write_response,
)
from .middleware.base import Handler, Middleware, MiddlewarePipeline


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger the way the CLI wants it."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class HTTPServer:
    """
    Threaded HTTP server around a single handler.

        server = HTTPServer(UpstreamHandler("http://auth:9000"), config)
        server.use(LoggingMiddleware())
        server.use(RedirectErrorsMiddleware(redirect_config))
        server.run()    # blocks until shutdown()
    """

    def __init__(self, handler: Handler, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        self._handler = handler
        self._middleware = MiddlewarePipeline()
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        self._chain: Optional[Handler] = None
        self._socket: Optional[socket.socket] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False
        self._ready = threading.Event()

    def use(self, middleware: Middleware) -> "HTTPServer":
        """Add middleware (first added = outermost)."""
        self._middleware.add(middleware)
        return self

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the real port when configured with 0."""
        if self._socket is not None:
            return self._socket.getsockname()[:2]
        return (self.config.host, self.config.port)

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the server is listening."""
        return self._ready.wait(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self) -> None:
        """Bind, listen and serve until shutdown() (blocking)."""
        self._chain = self._middleware.wrap(self._handler)
        self._socket = self._create_socket()
        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            raise
        self._socket.listen(self.config.backlog)

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.workers,
            thread_name_prefix="redirecterrors-worker",
        )
        self._running = True
        self._install_signal_handlers()

        host, port = self.address
        logger.info(f"Listening on {host}:{port} with {self.config.workers} workers")
        self._ready.set()

        try:
            self._accept_loop()
        finally:
            self._cleanup()

    def shutdown(self) -> None:
        """Stop accepting; in-flight requests finish."""
        if self._running:
            logger.info("Shutting down server...")
        self._running = False

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # accept() wakes up every second to check _running
        sock.settimeout(1.0)
        return sock

    def _install_signal_handlers(self) -> None:
        # signal.signal only works in the main thread
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)

    def _accept_loop(self) -> None:
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                max_request_size=self.config.max_request_size,
            )
            self._executor.submit(self.handle_connection, conn)

    def _cleanup(self) -> None:
        self._running = False
        self._ready.clear()
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        logger.info("Server stopped")

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def handle_connection(self, conn: Connection) -> None:
        """Serve exactly one request on a connection (worker thread)."""
        with conn:
            try:
                data = conn.read_request()
            except RequestTooLarge as e:
                logger.warning(f"[{conn.id}] {e}")
                self._send_error(conn, text_response(413, "Payload Too Large"))
                return
            except TimeoutError:
                logger.debug(f"[{conn.id}] Timed out waiting for request")
                return

            if data is None:
                return

            try:
                request = self._parser.parse(data, conn.address)
            except HTTPParseError as e:
                logger.warning(f"[{conn.id}] Bad request: {e}")
                self._send_error(conn, text_response(e.status_code, str(e)))
                return

            writer = StreamResponseWriter(
                conn,
                server_name=self.config.server_name,
                send_body=request.method != "HEAD",
            )
            self.serve(request, writer)

    def serve(self, request: HTTPRequest, writer: ResponseWriter) -> None:
        """
        Run the handler chain for one request.

        Write errors and handler exceptions end this request only.
        """
        chain = self._chain or self._middleware.wrap(self._handler)
        try:
            chain(request, writer)
            if not writer.committed:
                writer.write_header(200)
        except ResponseWriteError as e:
            logger.warning(f"Client write failed for {request.method} {request.path}: {e}")
        except Exception:
            logger.exception(f"Handler error for {request.method} {request.path}")
            if not writer.committed:
                try:
                    write_response(writer, internal_error())
                except ResponseWriteError as e:
                    logger.debug(f"Could not send 500 response: {e}")

    def _send_error(self, conn: Connection, response) -> None:
        response.set_header("Connection", "close")
        try:
            conn.write(response.to_bytes(self.config.server_name))
        except OSError as e:
            logger.debug(f"[{conn.id}] Could not send error response: {e}")
