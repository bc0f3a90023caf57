"""
=============================================================================
RESPONSE CAPTURE
=============================================================================

A ResponseWriter that stands between a downstream handler and the real
sink, and defers the "pass through" vs "swallow" decision until the
status code is known.

=============================================================================
STATE MACHINE
=============================================================================

    ┌─────────┐   write_header(code)          ┌─────────┐
    │  UNSET  │ ─────────────────────────────►│  FIXED  │
    │         │   write(data)  (implicit 200) │         │
    │         │ ─────────────────────────────►│         │
    │         │   finish()     (implicit 200) │         │
    └─────────┘ ─────────────────────────────►└─────────┘

On entering FIXED the code is tested against the CodeRangeSet, once:

    filtered     → nothing reaches the sink; body writes are discarded
    not filtered → headers + status go to the sink now, body bytes are
                   forwarded as they arrive, in order

Once FIXED the code never changes. Further write_header() calls are
ignored, just as a real server ignores a second status.
=============================================================================
"""

from dataclasses import dataclass
from enum import Enum
import logging

from ..http.headers import Headers
from ..http.response import ResponseWriter
from ..http.status import CodeRangeSet


logger = logging.getLogger(__name__)


class CodeState(Enum):
    """Whether the captured status code has been decided yet."""
    UNSET = "unset"
    FIXED = "fixed"


@dataclass(frozen=True)
class CapturedResponse:
    """What the downstream handler produced, as seen by the capture."""

    code: int
    headers: Headers
    filtered: bool


class ResponseCapture(ResponseWriter):
    """
    Capturing writer for one request.

        capture = ResponseCapture(writer, code_ranges)
        next(request, capture)
        result = capture.finish()
        if result.filtered:
            ...  # write a redirect to `writer`

    Not shared between requests; create one per request.
    """

    def __init__(self, sink: ResponseWriter, code_ranges: CodeRangeSet):
        super().__init__()
        self._sink = sink
        self._code_ranges = code_ranges
        self._state = CodeState.UNSET
        self._filtered = False
        self._discarded = 0

    @property
    def state(self) -> CodeState:
        return self._state

    @property
    def code(self) -> int:
        """The fixed status code (200 while still UNSET)."""
        return self._status if self._status is not None else 200

    @property
    def is_filtered(self) -> bool:
        return self._filtered

    @property
    def discarded_bytes(self) -> int:
        """Body bytes swallowed because the code was filtered."""
        return self._discarded

    def _commit(self, status: int, headers: Headers) -> None:
        # Runs exactly once: ResponseWriter.write_header ignores repeats,
        # and write() commits 200 first when nothing was set.
        self._state = CodeState.FIXED
        self._filtered = self._code_ranges.contains(status)

        if not self._filtered:
            self._sink.headers.update_from(headers)
            self._sink.write_header(status)

    def _write_body(self, data: bytes) -> None:
        if self._filtered:
            self._discarded += len(data)
        else:
            self._sink.write(data)

    def finish(self) -> CapturedResponse:
        """
        Close the capture after the downstream handler returned.

        A handler that wrote nothing at all produced an implicit 200, so
        that is fixed (and forwarded, if unfiltered) here.
        """
        if self._state is CodeState.UNSET:
            self.write_header(200)
        return CapturedResponse(
            code=self.code,
            headers=self._headers.copy(),
            filtered=self._filtered,
        )
