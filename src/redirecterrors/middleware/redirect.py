"""
=============================================================================
REDIRECT-ON-ERROR MIDDLEWARE
=============================================================================

Turns selected upstream error responses into browser redirects.

The typical deployment puts an authentication check upstream. When it
answers 401, a browser would just show an error page; what the user
needs is to be sent to the login page and brought back afterwards:

    Browser ──► proxy ──► RedirectErrorsMiddleware ──► auth check
                                                          │
                                    401 + WWW-Authenticate│
                                                          ▼
    Browser ◄── 302 Location: https://login/?rd=https%3A%2F%2Fapp%2Fpage
                Set-Cookie: authentik_proxy_user=; Max-Age=0 ...

=============================================================================
PER-REQUEST FLOW
=============================================================================

    Running ──► Decided ──┬──► Redirected     (code in configured ranges)
                          └──► PassedThrough  (anything else)

1. Run the next handler against a ResponseCapture.
2. Unfiltered code: the capture already streamed everything to the
   client unchanged. Done.
3. Filtered code: the upstream body was discarded. RedirectComposer
   builds the Location and the header/cookie set, and we write the
   redirect with a fixed "Redirecting" body.

=============================================================================
HEADER/COOKIE PIPELINE (order matters)
=============================================================================

    1. seed      headers outer middleware staged on the writer, then
                 every header the upstream handler set
    2. Location  composed target, always wins
    3. add       outputAddHeaders, overwrite same-named headers
    4. remove    outputRemoveHeaders regexes vs canonical names
    5. cookies   outputAddCookies appended as Set-Cookie, verbatim
    6. expire    request cookies matching outputRemoveCookies get
                 "name=; Path=/; Max-Age=0; HttpOnly; Secure"

Each header name is removed at most once, and each request cookie name
gets at most one deletion directive, however many patterns match it.

The compiled configuration is read-only and shared by every request;
everything mutable is created per request.
=============================================================================
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import List, Mapping, Optional, Pattern, Tuple
from urllib.parse import quote_plus
import logging
import re

from ..config import DEFAULT_OUTPUT_STATUS, RedirectErrorsConfig
from ..errors import ConfigError, ResponseWriteError
from ..http.headers import Headers
from ..http.request import HTTPRequest
from ..http.response import ResponseWriter
from ..http.status import CodeRangeSet
from .base import Handler, Middleware, NextHandler
from .capture import CapturedResponse, ResponseCapture


logger = logging.getLogger(__name__)


REDIRECT_BODY = b"Redirecting"

STATUS_PLACEHOLDER = "{status}"
URL_PLACEHOLDER = "{url}"


@dataclass(frozen=True)
class CompiledConfig:
    """RedirectErrorsConfig after validation, ready to share across requests."""

    code_ranges: CodeRangeSet
    target: str
    output_status: int
    add_headers: Mapping[str, str]
    remove_header_patterns: Tuple[Pattern, ...]
    add_cookies: Tuple[str, ...]
    remove_cookie_patterns: Tuple[Pattern, ...]


def compile_config(config: RedirectErrorsConfig) -> CompiledConfig:
    """
    Validate and compile a configuration.

    Raises:
        ConfigError: Empty target, malformed status spec, or a removal
            pattern that is not a valid regular expression.
    """
    if not config.target:
        raise ConfigError("target url must be set")

    code_ranges = CodeRangeSet(config.status)

    return CompiledConfig(
        code_ranges=code_ranges,
        target=config.target,
        output_status=config.output_status or DEFAULT_OUTPUT_STATUS,
        add_headers=MappingProxyType(dict(config.output_add_headers or {})),
        remove_header_patterns=_compile_patterns(config.output_remove_headers, "header"),
        add_cookies=tuple(config.output_add_cookies or ()),
        remove_cookie_patterns=_compile_patterns(config.output_remove_cookies, "cookie"),
    )


def _compile_patterns(patterns: Optional[List[str]], kind: str) -> Tuple[Pattern, ...]:
    compiled = []
    for pattern in patterns or ():
        try:
            compiled.append(re.compile(pattern))
        except (re.error, TypeError) as e:
            raise ConfigError(f"invalid {kind} regex pattern {pattern!r}: {e}") from e
    return tuple(compiled)


def deletion_cookie(name: str) -> str:
    """Set-Cookie value that makes the client drop `name` immediately."""
    return f"{name}=; Path=/; Max-Age=0; HttpOnly; Secure"


def extract_cookie_name(cookie: str) -> str:
    """Name part of a Set-Cookie value ("a=1; Path=/" → "a")."""
    return cookie.split("=", 1)[0].strip()


@dataclass
class Redirect:
    """The response RedirectComposer decided on."""

    status: int
    location: str
    headers: Headers


class RedirectComposer:
    """
    Builds the redirect target and the outgoing header set.

        composer = RedirectComposer(compiled)
        redirect = composer.compose(captured, request)
        redirect.location   # "http://target/?status=401&url=http%3A%2F%2Flocalhost"
    """

    def __init__(self, config: CompiledConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def original_url(self, request: HTTPRequest) -> str:
        """
        Rebuild the URL the client asked for.

        With both X-Forwarded-Proto and X-Forwarded-Host present this is
        "proto://host" + path-and-query. Without them we fall back to the
        target as this server saw it, which behind a reverse proxy is
        usually just a path. That degraded result is used as-is.
        """
        proto = request.forwarded_proto
        host = request.forwarded_host
        if proto and host:
            return f"{proto}://{host}{request.request_uri}"

        self.logger.warning(
            f"Missing proxy headers, falling back to request URL {request.url}"
        )
        return request.url

    def location(self, code: int, request: HTTPRequest) -> str:
        """
        Fill in the target template.

        {status} → decimal code, {url} → query-escaped original URL.
        Any other brace text is left alone.
        """
        original = self.original_url(request)
        location = self.config.target.replace(STATUS_PLACEHOLDER, str(code))
        return location.replace(URL_PLACEHOLDER, quote_plus(original))

    def compose(
        self,
        captured: CapturedResponse,
        request: HTTPRequest,
        staged: Optional[Headers] = None,
    ) -> Redirect:
        """
        Run the header/cookie pipeline for a filtered response.

        `staged` holds headers already set on the outgoing writer by outer
        middleware. They join the captured headers before anything is
        added or removed, and a captured value replaces a staged one.
        """
        location = self.location(captured.code, request)
        self.logger.debug(f"New location: {location}")

        headers = staged.copy() if staged is not None else Headers()
        for name in captured.headers.names():
            headers.delete(name)
        headers.update_from(captured.headers)
        headers.set("Location", location)

        for name, value in self.config.add_headers.items():
            headers.set(name, value)

        self._remove_headers(headers)
        self._add_cookies(headers)
        self._expire_request_cookies(headers, request)

        return Redirect(
            status=self.config.output_status,
            location=location,
            headers=headers,
        )

    def _remove_headers(self, headers: Headers) -> None:
        for name in headers.names():
            for pattern in self.config.remove_header_patterns:
                if pattern.search(name):
                    headers.delete(name)
                    self.logger.debug(f"Removing header: {name}")
                    break

    def _add_cookies(self, headers: Headers) -> None:
        # No dedup by name: the client applies them in order.
        for cookie in self.config.add_cookies:
            headers.add("Set-Cookie", cookie)
            self.logger.debug(f"Adding cookie: {extract_cookie_name(cookie)}")

    def _expire_request_cookies(self, headers: Headers, request: HTTPRequest) -> None:
        if not self.config.remove_cookie_patterns:
            return

        removed = set()
        for name, _ in request.cookies:
            if name in removed:
                continue
            for pattern in self.config.remove_cookie_patterns:
                if pattern.search(name):
                    headers.add("Set-Cookie", deletion_cookie(name))
                    removed.add(name)
                    self.logger.debug(f"Removing cookie: {name}")
                    break


class RedirectErrorsMiddleware(Middleware):
    """
    Redirects responses whose status falls in the configured ranges.

        config = RedirectErrorsConfig(
            status=["401"],
            target="https://auth.example.com/login?rd={url}",
            output_remove_cookies=["^authentik_proxy_.+$"],
        )
        pipeline.add(RedirectErrorsMiddleware(config))

    Raises ConfigError from the constructor if the config is invalid, so
    a broken config never gets installed.
    """

    def __init__(
        self,
        config: RedirectErrorsConfig,
        logger: Optional[logging.Logger] = None,
        name: str = "redirect-errors",
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.compiled = compile_config(config)
        self.composer = RedirectComposer(self.compiled, logger=self.logger)
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def __call__(self, request: HTTPRequest, writer: ResponseWriter,
                 next: NextHandler) -> None:
        capture = ResponseCapture(writer, self.compiled.code_ranges)
        next(request, capture)

        captured = capture.finish()
        if not captured.filtered:
            return

        self.logger.info(f"Caught HTTP status code {captured.code}, redirecting")
        redirect = self.composer.compose(captured, request, staged=writer.headers)
        self._write_redirect(writer, redirect)

    def _write_redirect(self, writer: ResponseWriter, redirect: Redirect) -> None:
        writer.headers.clear()
        writer.headers.update_from(redirect.headers)
        writer.headers.set("Content-Length", str(len(REDIRECT_BODY)))

        try:
            writer.write_header(redirect.status)
            writer.write(REDIRECT_BODY)
        except OSError as e:
            self.logger.error(f"Failed to write redirect to {redirect.location}: {e}")
            if isinstance(e, ResponseWriteError):
                raise
            raise ResponseWriteError(f"failed to write redirect: {e}") from e


def new(
    next: Handler,
    config: RedirectErrorsConfig,
    name: str = "redirect-errors",
    logger: Optional[logging.Logger] = None,
) -> Handler:
    """
    Build a ready-to-serve handler: the middleware bound to `next`.

        handler = new(upstream, config)
        handler(request, writer)

    Raises:
        ConfigError: If the configuration is invalid.
    """
    middleware = RedirectErrorsMiddleware(config, logger=logger, name=name)

    def handler(request: HTTPRequest, writer: ResponseWriter) -> None:
        middleware(request, writer, next)

    handler.middleware = middleware
    return handler
