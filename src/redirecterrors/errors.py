"""
=============================================================================
EXCEPTION HIERARCHY
=============================================================================

All errors raised by this package derive from RedirectErrorsError, so an
installer can catch one type and report it.

    RedirectErrorsError
    ├── ConfigError            (also a ValueError)
    │   └── StatusRangeError   bad "401" / "401-403" entry
    └── ResponseWriteError     (also an OSError)

Configuration errors happen at construction time and prevent the
middleware from being installed. Write errors happen per request and are
surfaced to the host server, which answers 500 or drops the connection.
=============================================================================
"""


class RedirectErrorsError(Exception):
    """Base class for every error raised by redirecterrors."""


class ConfigError(RedirectErrorsError, ValueError):
    """
    Raised when a configuration cannot be compiled.

    Examples: empty target URL, an invalid removal regex, a malformed
    status entry, or a config document with wrongly typed fields.
    """


class StatusRangeError(ConfigError):
    """Raised when a status spec is neither "N" nor "N-M"."""

    def __init__(self, spec: str, reason: str):
        super().__init__(f"invalid status code range {spec!r}: {reason}")
        self.spec = spec
        self.reason = reason


class ResponseWriteError(RedirectErrorsError, OSError):
    """
    Raised when writing to the real response sink fails.

    Carries the original OSError as __cause__. The transport is usually
    already broken at this point, so nothing retries.
    """
