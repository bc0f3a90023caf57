"""
Unit tests for ResponseCapture.
"""

from redirecterrors.http.response import ResponseRecorder
from redirecterrors.http.status import CodeRangeSet
from redirecterrors.middleware.capture import CodeState, ResponseCapture


def make_capture(*specs: str):
    sink = ResponseRecorder()
    return ResponseCapture(sink, CodeRangeSet(specs)), sink


class TestResponseCapture:
    """Tests for the UNSET → FIXED state machine."""

    def test_starts_unset(self):
        capture, sink = make_capture("401")

        assert capture.state is CodeState.UNSET
        assert capture.code == 200
        assert not sink.committed

    def test_filtered_code_reaches_nothing(self):
        """A filtered status, its headers and its body never hit the sink."""
        capture, sink = make_capture("401")
        capture.headers["Www-Authenticate"] = "Bearer"
        capture.write_header(401)
        capture.write(b"upstream body")

        assert capture.state is CodeState.FIXED
        assert capture.is_filtered
        assert capture.discarded_bytes == len(b"upstream body")
        assert not sink.committed
        assert sink.body == b""
        assert "Www-Authenticate" not in sink.headers

    def test_unfiltered_code_passes_through(self):
        capture, sink = make_capture("401")
        capture.headers["Content-Type"] = "text/plain"
        capture.write_header(404)
        capture.write(b"not ")
        capture.write(b"found")

        assert not capture.is_filtered
        assert sink.status == 404
        assert sink.sent_headers["Content-Type"] == "text/plain"
        assert sink.body == b"not found"

    def test_first_code_wins(self):
        capture, sink = make_capture("401")
        capture.write_header(401)
        capture.write_header(200)

        assert capture.code == 401
        assert capture.is_filtered
        assert not sink.committed

    def test_write_before_header_fixes_200(self):
        capture, sink = make_capture("200-299")
        capture.write(b"ok")

        assert capture.code == 200
        assert capture.is_filtered
        assert not sink.committed

    def test_finish_without_writes_fixes_200(self):
        """A handler that writes nothing produced an implicit 200."""
        capture, sink = make_capture("401")
        result = capture.finish()

        assert result.code == 200
        assert not result.filtered
        assert sink.status == 200

    def test_finish_reports_filtered_headers(self):
        capture, sink = make_capture("401")
        capture.headers["X-Upstream"] = "1"
        capture.write_header(401)
        result = capture.finish()

        assert result.code == 401
        assert result.filtered
        assert result.headers["X-Upstream"] == "1"

    def test_empty_ranges_never_filter(self):
        capture, sink = make_capture()
        capture.write_header(500)

        assert not capture.is_filtered
        assert sink.status == 500
