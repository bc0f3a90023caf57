"""
=============================================================================
HTTP HEADER MULTIMAP
=============================================================================

Response headers are NOT a plain dict:

    Set-Cookie: session=abc; Path=/
    Set-Cookie: theme=dark; Path=/

The same name may appear several times, and names are case-insensitive
("set-cookie" is the same header as "Set-Cookie"). Headers stores every
value under a CANONICAL name:

    "x-forwarded-host"  ──►  "X-Forwarded-Host"
    "WWW-AUTHENTICATE"  ──►  "Www-Authenticate"
    "content-type"      ──►  "Content-Type"

Canonical form upper-cases the first letter and every letter after a
hyphen and lower-cases the rest. Names containing characters that are not
valid in an HTTP token are left untouched, since there is no safe way to
normalize them.

Removal patterns are matched against these canonical names, so a pattern
like "^Authentik-" matches whatever casing the upstream used.
=============================================================================
"""

from typing import Dict, Iterator, List, Optional, Tuple
import re


# RFC 7230 token characters
_TOKEN_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def canonical_header_name(name: str) -> str:
    """
    Return the canonical form of a header name.

    Examples:
        canonical_header_name("content-type")      # "Content-Type"
        canonical_header_name("X-FORWARDED-PROTO") # "X-Forwarded-Proto"
        canonical_header_name("bad header")        # "bad header"
    """
    if not _TOKEN_PATTERN.match(name):
        return name
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


class Headers:
    """
    Ordered, case-insensitive header multimap.

    Usage:
        headers = Headers()
        headers.add("set-cookie", "a=1")
        headers.add("Set-Cookie", "b=2")
        headers.set("Location", "/login")

        headers.get_all("SET-COOKIE")   # ["a=1", "b=2"]
        headers["location"]             # "/login"
        list(headers.items())
        # [("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("Location", "/login")]
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, List[str]] = {}
        if initial:
            for name, value in initial.items():
                self.add(name, value)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first value of a header, or default."""
        values = self._values.get(canonical_header_name(name))
        return values[0] if values else default

    def get_all(self, name: str) -> List[str]:
        """Get every value of a header (empty list if absent)."""
        return list(self._values.get(canonical_header_name(name), []))

    def set(self, name: str, value: str) -> None:
        """Replace all values of a header with a single value."""
        self._values[canonical_header_name(name)] = [str(value)]

    def add(self, name: str, value: str) -> None:
        """Append a value, keeping any existing ones."""
        self._values.setdefault(canonical_header_name(name), []).append(str(value))

    def delete(self, name: str) -> None:
        """Remove every value of a header. Absent headers are ignored."""
        self._values.pop(canonical_header_name(name), None)

    def clear(self) -> None:
        self._values.clear()

    def names(self) -> List[str]:
        """Canonical names, in first-insertion order."""
        return list(self._values)

    def items(self) -> Iterator[Tuple[str, str]]:
        """Yield one (name, value) pair per value."""
        for name, values in self._values.items():
            for value in values:
                yield name, value

    def update_from(self, other: "Headers") -> None:
        """Add every value of another multimap to this one."""
        for name, value in other.items():
            self.add(name, value)

    def copy(self) -> "Headers":
        clone = Headers()
        clone.update_from(self)
        return clone

    def to_dict(self) -> Dict[str, List[str]]:
        return {name: list(values) for name, values in self._values.items()}

    # ─────────────────────────────────────────────────────────────────────
    # dict-like access, so handlers can write headers["X-Foo"] = "bar"
    # ─────────────────────────────────────────────────────────────────────

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __setitem__(self, name: str, value: str) -> None:
        self.set(name, value)

    def __delitem__(self, name: str) -> None:
        self.delete(name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and canonical_header_name(name) in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        return f"Headers({self.to_dict()!r})"
