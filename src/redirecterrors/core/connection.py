"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps an accepted client socket with the few operations the server
needs: read one complete request, write response bytes, close cleanly.

    OPEN ──► READING ──► PROCESSING ──► WRITING ──► CLOSED

The server answers one request per connection and always sends
"Connection: close", so there is no keep-alive loop or pipelining
buffer to manage.

=============================================================================
READING ONE REQUEST
=============================================================================

TCP is a byte stream, not a message stream. One recv() may return half
a header block, or headers plus part of the body:

    recv() #1:  b"GET /api HTTP/1.1\r\nHost: x\r\nCont"
    recv() #2:  b"ent-Length: 5\r\n\r\nhel"
    recv() #3:  b"lo"

    phase 1: recv until the buffer holds "\r\n\r\n"
    phase 2: recv until Content-Length body bytes follow it

Both phases count against max_request_size.
=============================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
import logging
import re
import socket
import time
import uuid


logger = logging.getLogger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"

# Lingering close: how long and how much to read after SHUT_WR
DRAIN_TIMEOUT = 0.5
DRAIN_LIMIT = 64 * 1024

_CONTENT_LENGTH = re.compile(rb"^content-length:[ \t]*(\d+)[ \t]*\r?$", re.IGNORECASE | re.MULTILINE)


class ConnectionState(Enum):
    OPEN = "open"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    CLOSED = "closed"


class RequestTooLarge(ValueError):
    """The client sent more than max_request_size bytes."""


@dataclass
class Connection:
    """
    One accepted client socket.

        with Connection(sock, address, timeout=5.0) as conn:
            data = conn.read_request()
            conn.write(response_bytes)
        # closed here
    """

    socket: socket.socket
    address: Tuple[str, int]
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    max_request_size: int = 10 * 1024 * 1024

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.OPEN
    opened_at: float = field(default_factory=time.monotonic)
    _pending: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request.

        Returns:
            The request bytes, or None if the client closed the
            connection before sending a full header block.

        Raises:
            RequestTooLarge: If the request exceeds max_request_size.
            TimeoutError: If the client stops sending.
        """
        self.state = ConnectionState.READING
        try:
            if not self._fill_until(lambda: HEADER_TERMINATOR in self._pending):
                return None

            body_start = self._pending.index(HEADER_TERMINATOR) + len(HEADER_TERMINATOR)
            wanted = body_start + _declared_length(bytes(self._pending[:body_start]))
            # A short body is left for the parser to report
            self._fill_until(lambda: len(self._pending) >= wanted)
        except socket.timeout:
            raise TimeoutError(f"[{self.id}] client sent nothing for {self.timeout}s")

        data = bytes(self._pending[:wanted])
        del self._pending[:wanted]
        self.state = ConnectionState.PROCESSING
        return data

    def _fill_until(self, done) -> bool:
        """recv() until done() holds; False if the peer closed first."""
        while not done():
            try:
                chunk = self.socket.recv(self.buffer_size)
            except (ConnectionResetError, BrokenPipeError):
                chunk = b""
            if not chunk:
                return False
            self._pending += chunk
            if len(self._pending) > self.max_request_size:
                raise RequestTooLarge(
                    f"request exceeds {self.max_request_size} bytes"
                )
        return True

    def write(self, data: bytes) -> int:
        """
        Send all of `data`.

        Raises:
            OSError: If the client went away. Nothing is retried.
        """
        self.state = ConnectionState.WRITING
        self.socket.sendall(data)
        return len(data)

    def close(self) -> None:
        """Half-close, drain what the client still sends, then release."""
        if self.state is ConnectionState.CLOSED:
            return

        try:
            self.socket.shutdown(socket.SHUT_WR)
            self._drain()
        except OSError:
            pass  # peer already gone; includes socket.timeout
        finally:
            self.socket.close()
            self.state = ConnectionState.CLOSED

        logger.debug(f"[{self.id}] closed after {time.monotonic() - self.opened_at:.3f}s")

    def _drain(self) -> None:
        """Discard late client bytes, bounded by DRAIN_TIMEOUT and DRAIN_LIMIT."""
        deadline = time.monotonic() + DRAIN_TIMEOUT
        drained = 0
        while drained < DRAIN_LIMIT:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self.socket.settimeout(remaining)
            chunk = self.socket.recv(4096)
            if not chunk:
                return
            drained += len(chunk)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _declared_length(head: bytes) -> int:
    """Content-Length from a raw header block; 0 when absent or invalid."""
    match = _CONTENT_LENGTH.search(head)
    return int(match.group(1)) if match else 0
