"""
=============================================================================
STATUS CODE RANGES
=============================================================================

Operators describe which upstream status codes trigger a redirect with a
list of short textual specs:

    ["401"]              one code
    ["401-403"]          an inclusive range
    ["401", "500-599"]   several, OR-ed together

    ┌──────────────┬──────────────────────┐
    │  Spec        │  Parsed CodeRange    │
    ├──────────────┼──────────────────────┤
    │  "404"       │  CodeRange(404, 404) │
    │  "401-403"   │  CodeRange(401, 403) │
    │  "403-401"   │  StatusRangeError    │
    │  "4xx"       │  StatusRangeError    │
    │  "401-"      │  StatusRangeError    │
    └──────────────┴──────────────────────┘

An empty list is valid and matches nothing, which effectively disables
the redirect.

Codes are not checked against 100-599; "999" is accepted and simply
never matches a real response.
=============================================================================
"""

from dataclasses import dataclass
from http import HTTPStatus
from typing import Iterable, Iterator, Tuple
import re

from ..errors import StatusRangeError


_SPEC_PATTERN = re.compile(r"^([0-9]+)(?:-([0-9]+))?$")


@dataclass(frozen=True)
class CodeRange:
    """A closed interval of status codes, both ends inclusive."""

    low: int
    high: int

    def __post_init__(self):
        if self.low > self.high:
            raise ValueError(f"low ({self.low}) must be <= high ({self.high})")

    def __contains__(self, code: int) -> bool:
        return self.low <= code <= self.high

    def __str__(self) -> str:
        if self.low == self.high:
            return str(self.low)
        return f"{self.low}-{self.high}"

    @classmethod
    def parse(cls, spec: str) -> "CodeRange":
        """
        Parse "N" or "N-M" into a CodeRange.

        Raises:
            StatusRangeError: If the spec is malformed or N > M.
        """
        match = _SPEC_PATTERN.match(spec.strip())
        if not match:
            raise StatusRangeError(spec, 'expected "N" or "N-M" with integer codes')

        low = int(match.group(1))
        high = int(match.group(2)) if match.group(2) is not None else low
        if low > high:
            raise StatusRangeError(spec, f"range start {low} is greater than end {high}")
        return cls(low, high)


class CodeRangeSet:
    """
    Immutable set of CodeRanges answering "is this status filtered?".

    Usage:
        ranges = CodeRangeSet(["401", "500-599"])
        ranges.contains(401)   # True
        503 in ranges          # True
        404 in ranges          # False

    Membership is a linear scan; configurations hold a handful of ranges.
    """

    __slots__ = ("_ranges",)

    def __init__(self, specs: Iterable[str] = ()):
        ranges = []
        for spec in specs:
            if not isinstance(spec, str):
                raise StatusRangeError(repr(spec), "status entries must be strings")
            ranges.append(CodeRange.parse(spec))
        self._ranges: Tuple[CodeRange, ...] = tuple(ranges)

    @property
    def ranges(self) -> Tuple[CodeRange, ...]:
        return self._ranges

    def contains(self, code: int) -> bool:
        """Return True if code lies in at least one range."""
        return any(code in code_range for code_range in self._ranges)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, int) and self.contains(code)

    def __iter__(self) -> Iterator[CodeRange]:
        return iter(self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    def __repr__(self) -> str:
        return f"CodeRangeSet({[str(r) for r in self._ranges]!r})"


def reason_phrase(code: int) -> str:
    """
    Get the reason phrase for a status code.

    Unregistered codes (e.g. 299) get "Unknown", which is still a valid
    status line.
    """
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return "Unknown"
