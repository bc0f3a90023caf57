"""
=============================================================================
CONFIGURATION
=============================================================================

Two configuration objects live here:

    RedirectErrorsConfig   what the redirect middleware does
    ServerConfig           how the standalone server listens

=============================================================================
REDIRECT CONFIG DOCUMENT
=============================================================================

The middleware is configured with a small JSON document, the same shape
a reverse proxy would hand to a plugin:

    {
      "status": ["401", "403"],
      "target": "https://auth.example.com/login?rd={url}&code={status}",
      "outputStatus": 302,
      "outputAddHeaders": {"Cache-Control": "no-store"},
      "outputRemoveHeaders": ["^Authentik-Proxy-", "^X-Upstream-"],
      "outputAddCookies": ["login_hint=1; Path=/; Max-Age=60"],
      "outputRemoveCookies": ["^authentik_proxy_.+$"]
    }

    ┌──────────────────────┬──────────────────────┬─────────┐
    │  Document key        │  Attribute           │ Default │
    ├──────────────────────┼──────────────────────┼─────────┤
    │  status              │  status              │  []     │
    │  target              │  target              │  ""  *  │
    │  outputStatus        │  output_status       │  302    │
    │  outputAddHeaders    │  output_add_headers  │  {}     │
    │  outputRemoveHeaders │  output_remove_headers│ []     │
    │  outputAddCookies    │  output_add_cookies  │  []     │
    │  outputRemoveCookies │  output_remove_cookies│ []     │
    └──────────────────────┴──────────────────────┴─────────┘
                                      * required, checked at compile time

Loading only checks SHAPES (is status a list, is outputStatus an int).
Semantic checks (empty target, bad range, bad regex) happen when the
middleware compiles the config, so a config built in code gets exactly
the same validation as one loaded from a file.
=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import json
import logging
import os

from .errors import ConfigError


logger = logging.getLogger(__name__)


DEFAULT_OUTPUT_STATUS = 302


@dataclass
class RedirectErrorsConfig:
    """Configuration for RedirectErrorsMiddleware."""

    status: List[str] = field(default_factory=list)
    """Status codes/ranges that trigger the redirect ("401", "500-599")."""

    target: str = ""
    """Redirect URL template; supports {status} and {url}."""

    output_status: int = DEFAULT_OUTPUT_STATUS
    """Status sent with the redirect. 0 means 302."""

    output_add_headers: Dict[str, str] = field(default_factory=dict)
    """Headers force-set on the redirect, overriding upstream values."""

    output_remove_headers: List[str] = field(default_factory=list)
    """Regexes matched against canonical header names; matches are dropped."""

    output_add_cookies: List[str] = field(default_factory=list)
    """Literal Set-Cookie values appended to the redirect."""

    output_remove_cookies: List[str] = field(default_factory=list)
    """Regexes matched against REQUEST cookie names; matches get expired."""

    # Document key → attribute name
    FIELD_NAMES = {
        "status": "status",
        "target": "target",
        "outputStatus": "output_status",
        "outputAddHeaders": "output_add_headers",
        "outputRemoveHeaders": "output_remove_headers",
        "outputAddCookies": "output_add_cookies",
        "outputRemoveCookies": "output_remove_cookies",
    }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RedirectErrorsConfig":
        """
        Build a config from a decoded document (camelCase keys).

        Status entries may be written as numbers (401) or strings ("401").
        Unknown keys are logged and ignored.

        Raises:
            ConfigError: If a field has the wrong type.
        """
        if not isinstance(data, Mapping):
            raise ConfigError(f"config must be an object, got {type(data).__name__}")

        config = create_config()
        for key, value in data.items():
            attr = cls.FIELD_NAMES.get(key)
            if attr is None:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            if value is None:
                continue
            setattr(config, attr, _coerce(key, value))
        return config

    @classmethod
    def from_json(cls, text: str) -> "RedirectErrorsConfig":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid JSON config: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_json_file(cls, path: str) -> "RedirectErrorsConfig":
        """
        Load a config from a JSON file.

        Raises:
            ConfigError: If the file cannot be read or parsed.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise ConfigError(f"cannot read config file {path}: {e}") from e
        return cls.from_json(text)

    def to_dict(self) -> Dict[str, Any]:
        """Inverse of from_dict (camelCase keys)."""
        return {key: getattr(self, attr) for key, attr in self.FIELD_NAMES.items()}


def create_config() -> RedirectErrorsConfig:
    """Default configuration: no status filter, no target, 302."""
    return RedirectErrorsConfig(status=[], target="", output_status=DEFAULT_OUTPUT_STATUS)


def _coerce(key: str, value: Any) -> Any:
    """Check and normalize the type of one document field."""
    if key == "target":
        if not isinstance(value, str):
            raise ConfigError(f"{key} must be a string")
        return value

    if key == "outputStatus":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} must be an integer")
        return value

    if key == "outputAddHeaders":
        if not isinstance(value, Mapping):
            raise ConfigError(f"{key} must be an object of header name to value")
        headers = {}
        for name, header_value in value.items():
            if not isinstance(header_value, (str, int)) or isinstance(header_value, bool):
                raise ConfigError(f"{key}[{name!r}] must be a string")
            headers[str(name)] = str(header_value)
        return headers

    # Everything else is a list of strings
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"{key} must be a list")
    items = []
    for item in value:
        if key == "status" and isinstance(item, int) and not isinstance(item, bool):
            item = str(item)
        if not isinstance(item, str):
            raise ConfigError(f"{key} entries must be strings, got {item!r}")
        items.append(item)
    return items


# =============================================================================
# SERVER CONFIGURATION
# =============================================================================

@dataclass
class ServerConfig:
    """
    Configuration for the standalone HTTP server.

    Development:
        ServerConfig(host="127.0.0.1", port=8080, log_level="DEBUG")

    Containers:
        ServerConfig(host="0.0.0.0", port=8080, workers=32)
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    port: int = 8080
    backlog: int = 128
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    """Socket timeout in seconds for reading a request."""

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST HANDLING
    # ─────────────────────────────────────────────────────────────────────

    workers: int = 16
    """Worker threads; each handles one connection at a time."""

    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"
    """Access log format: 'text' or 'json'."""

    server_name: str = "redirecterrors/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

            HTTP_HOST       Server host (default: 127.0.0.1)
            HTTP_PORT       Server port (default: 8080)
            HTTP_WORKERS    Worker threads (default: 16)
            HTTP_TIMEOUT    Request timeout in seconds (default: 30)
            HTTP_LOG_LEVEL  Logging level (default: INFO)
        """
        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            workers=int(os.getenv("HTTP_WORKERS", "16")),
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Fail fast on values the server cannot run with."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.workers < 1:
            raise ValueError("workers must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")
