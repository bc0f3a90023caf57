"""
Unit tests for RedirectErrorsMiddleware and its helpers.
"""

import logging

import pytest

from redirecterrors.config import RedirectErrorsConfig
from redirecterrors.errors import ConfigError, ResponseWriteError, StatusRangeError
from redirecterrors.http.headers import Headers
from redirecterrors.http.request import HTTPRequest
from redirecterrors.http.response import ResponseRecorder, ResponseWriter
from redirecterrors.middleware import MiddlewarePipeline, function_middleware
from redirecterrors.middleware.capture import CapturedResponse
from redirecterrors.middleware.redirect import (
    REDIRECT_BODY,
    RedirectComposer,
    RedirectErrorsMiddleware,
    compile_config,
    deletion_cookie,
    extract_cookie_name,
    new,
)


def serve(handler, request: HTTPRequest = None) -> ResponseRecorder:
    recorder = ResponseRecorder()
    handler(request or HTTPRequest(method="GET", target="http://localhost"), recorder)
    return recorder


class TestCompileConfig:
    """Tests for configuration validation."""

    def test_empty_target_rejected(self):
        with pytest.raises(ConfigError, match="target"):
            compile_config(RedirectErrorsConfig(status=["401"], target=""))

    def test_bad_status_rejected(self):
        with pytest.raises(StatusRangeError):
            compile_config(RedirectErrorsConfig(status=["403-401"], target="http://t/"))

    def test_invalid_header_regex(self):
        config = RedirectErrorsConfig(
            status=["401"], target="http://t/", output_remove_headers=["[invalid"]
        )
        with pytest.raises(ConfigError, match="header"):
            compile_config(config)

    def test_invalid_cookie_regex(self):
        config = RedirectErrorsConfig(
            status=["401"], target="http://t/", output_remove_cookies=["(unclosed"]
        )
        with pytest.raises(ConfigError, match="cookie"):
            compile_config(config)

    def test_output_status_zero_means_302(self):
        compiled = compile_config(
            RedirectErrorsConfig(status=["401"], target="http://t/", output_status=0)
        )
        assert compiled.output_status == 302

    def test_compiled_config_is_read_only(self):
        source = {"X-A": "1"}
        compiled = compile_config(
            RedirectErrorsConfig(status=["401"], target="http://t/", output_add_headers=source)
        )
        source["X-B"] = "2"

        assert "X-B" not in compiled.add_headers
        with pytest.raises(TypeError):
            compiled.add_headers["X-C"] = "3"

    def test_constructor_fails_fast(self, status_handler):
        with pytest.raises(ConfigError):
            new(status_handler(401), RedirectErrorsConfig(status=["401"]))


class TestRedirectComposer:
    """Tests for location templating and the header pipeline."""

    def composer(self, logger=None, **overrides) -> RedirectComposer:
        fields = {"status": ["401"], "target": "http://target/?status={status}&url={url}"}
        fields.update(overrides)
        return RedirectComposer(compile_config(RedirectErrorsConfig(**fields)), logger=logger)

    def test_location_from_forwarded_headers(self, proxied_request):
        location = self.composer().location(401, proxied_request)

        assert location == (
            "http://target/?status=401&url=https%3A%2F%2Fapp.example.com%2Fdashboard%3Ftab%3D1"
        )

    def test_location_falls_back_to_request_url(self, plain_request, caplog):
        with caplog.at_level(logging.WARNING):
            location = self.composer().location(401, plain_request)

        assert location == "http://target/?status=401&url=http%3A%2F%2Flocalhost"
        assert "Missing proxy headers" in caplog.text

    def test_fallback_needs_both_forwarded_headers(self):
        request = HTTPRequest(
            method="GET", target="/page", headers={"X-Forwarded-Proto": "https"}
        )

        assert self.composer().original_url(request) == "/page"

    def test_query_escaping_uses_plus_for_spaces(self):
        request = HTTPRequest(
            method="GET",
            target="/a%20b?q=x y",
            headers={"X-Forwarded-Proto": "http", "X-Forwarded-Host": "h"},
        )
        location = self.composer(target="{url}").location(401, request)

        assert location == "http%3A%2F%2Fh%2Fa%2520b%3Fq%3Dx+y"

    def test_placeholders_replaced_everywhere(self, plain_request):
        composer = self.composer(target="/{status}/{status}?u={url}&v={url}&keep={other}")
        location = composer.location(403, plain_request)

        assert location == (
            "/403/403?u=http%3A%2F%2Flocalhost&v=http%3A%2F%2Flocalhost&keep={other}"
        )

    def test_target_without_placeholders_is_literal(self, plain_request):
        assert self.composer(target="https://login/").location(401, plain_request) == "https://login/"

    def test_location_overrides_upstream(self, plain_request):
        captured = CapturedResponse(401, Headers({"Location": "/upstream"}), True)
        redirect = self.composer().compose(captured, plain_request)

        assert redirect.headers.get_all("Location") == [redirect.location]

    def test_add_headers_override_upstream_values(self, plain_request):
        captured = CapturedResponse(401, Headers({"Cache-Control": "public"}), True)
        redirect = self.composer(
            output_add_headers={"cache-control": "no-store"}
        ).compose(captured, plain_request)

        assert redirect.headers.get_all("Cache-Control") == ["no-store"]

    def test_remove_headers_match_canonical_names(self, plain_request):
        upstream = Headers()
        upstream.set("authentik-proxy-user", "u")
        upstream.set("X-Should-Remain", "yes")
        captured = CapturedResponse(401, upstream, True)
        redirect = self.composer(
            output_remove_headers=["^Authentik-Proxy-"]
        ).compose(captured, plain_request)

        assert "Authentik-Proxy-User" not in redirect.headers
        assert redirect.headers["X-Should-Remain"] == "yes"

    def test_staged_headers_join_the_pipeline(self, plain_request):
        """Headers set on the writer by outer middleware are seeded too."""
        staged = Headers({"X-Request-Id": "abc", "X-Frame-Options": "DENY", "Cache-Control": "public"})
        captured = CapturedResponse(401, Headers({"Cache-Control": "no-store"}), True)
        redirect = self.composer(
            output_remove_headers=["^X-Request-Id$"]
        ).compose(captured, plain_request, staged=staged)

        assert "X-Request-Id" not in redirect.headers
        assert redirect.headers["X-Frame-Options"] == "DENY"
        assert redirect.headers.get_all("Cache-Control") == ["no-store"]
        assert staged["X-Request-Id"] == "abc"

    def test_remove_runs_after_add(self, plain_request):
        """Removal patterns also strip headers the config itself added."""
        captured = CapturedResponse(401, Headers(), True)
        redirect = self.composer(
            output_add_headers={"X-Debug": "1"},
            output_remove_headers=["^X-Debug$"],
        ).compose(captured, plain_request)

        assert "X-Debug" not in redirect.headers

    def test_remove_can_strip_location(self, plain_request):
        captured = CapturedResponse(401, Headers(), True)
        redirect = self.composer(output_remove_headers=["^Location$"]).compose(
            captured, plain_request
        )

        assert "Location" not in redirect.headers

    def test_removed_once_when_several_patterns_match(self, plain_request, caplog):
        captured = CapturedResponse(401, Headers({"X-Secret": "s"}), True)
        composer = self.composer(output_remove_headers=["^X-", "Secret", "t$"])

        with caplog.at_level(logging.DEBUG):
            redirect = composer.compose(captured, plain_request)

        assert "X-Secret" not in redirect.headers
        assert caplog.text.count("Removing header: X-Secret") == 1

    def test_add_cookies_verbatim_and_not_deduplicated(self, plain_request):
        captured = CapturedResponse(401, Headers({"Set-Cookie": "upstream=1"}), True)
        redirect = self.composer(
            output_add_cookies=["a=1; Path=/", "a=2; Path=/"]
        ).compose(captured, plain_request)

        assert redirect.headers.get_all("Set-Cookie") == ["upstream=1", "a=1; Path=/", "a=2; Path=/"]

    def test_expire_request_cookies_once_per_name(self):
        request = HTTPRequest(
            method="GET",
            target="/",
            headers={"Cookie": "authentik_proxy_user=u; keep_this=k; authentik_proxy_user=v"},
        )
        captured = CapturedResponse(401, Headers(), True)
        redirect = self.composer(
            output_remove_cookies=["^authentik_proxy_.+$", "_user$"]
        ).compose(captured, request)

        assert redirect.headers.get_all("Set-Cookie") == [
            "authentik_proxy_user=; Path=/; Max-Age=0; HttpOnly; Secure",
        ]

    def test_expiry_follows_added_cookies(self):
        request = HTTPRequest(method="GET", target="/", headers={"Cookie": "old=1"})
        captured = CapturedResponse(401, Headers(), True)
        redirect = self.composer(
            output_add_cookies=["new=1"], output_remove_cookies=["^old$"]
        ).compose(captured, request)

        assert redirect.headers.get_all("Set-Cookie") == [
            "new=1",
            "old=; Path=/; Max-Age=0; HttpOnly; Secure",
        ]

    def test_uses_injected_logger(self, plain_request, caplog):
        logger = logging.getLogger("test.injected")
        captured = CapturedResponse(401, Headers(), True)

        with caplog.at_level(logging.DEBUG, logger="test.injected"):
            self.composer(logger=logger).compose(captured, plain_request)

        assert any(r.name == "test.injected" for r in caplog.records)
        assert "New location: http://target/" in caplog.text


class TestCookieHelpers:
    def test_deletion_cookie(self):
        assert deletion_cookie("sid") == "sid=; Path=/; Max-Age=0; HttpOnly; Secure"

    def test_extract_cookie_name(self):
        assert extract_cookie_name("sid=abc; Path=/") == "sid"
        assert extract_cookie_name("flag") == "flag"


class TestRedirectErrorsMiddleware:
    """End-to-end behaviour through new(), recorded in memory."""

    def test_redirects_filtered_status(self, redirect_config, status_handler):
        recorder = serve(new(status_handler(401), redirect_config))

        assert recorder.status == 302
        assert recorder.sent_headers["Location"] == (
            "http://target/?status=401&url=http%3A%2F%2Flocalhost"
        )
        assert recorder.body == REDIRECT_BODY
        assert recorder.sent_headers["Content-Length"] == str(len(REDIRECT_BODY))

    def test_passes_through_other_status(self, redirect_config, status_handler):
        handler = new(status_handler(200, b"welcome", {"X-App": "1"}), redirect_config)
        recorder = serve(handler)

        assert recorder.status == 200
        assert recorder.body == b"welcome"
        assert recorder.sent_headers["X-App"] == "1"
        assert "Location" not in recorder.sent_headers

    def test_upstream_body_not_forwarded(self, redirect_config, status_handler):
        recorder = serve(new(status_handler(401, b"secret upstream body"), redirect_config))

        assert b"secret" not in recorder.body
        assert recorder.body == b"Redirecting"

    def test_custom_output_status(self, status_handler):
        config = RedirectErrorsConfig(status=["401"], target="/login", output_status=307)
        recorder = serve(new(status_handler(401), config))

        assert recorder.status == 307

    def test_implicit_200_can_be_filtered(self):
        """A handler that only writes a body still triggers a 2xx filter."""
        def handler(request, writer):
            writer.write(b"hello")

        config = RedirectErrorsConfig(status=["200-299"], target="/elsewhere")
        recorder = serve(new(handler, config))

        assert recorder.status == 302
        assert recorder.sent_headers["Location"] == "/elsewhere"

    def test_silent_handler_can_be_filtered(self):
        def handler(request, writer):
            pass

        config = RedirectErrorsConfig(status=["200-299"], target="/elsewhere")
        recorder = serve(new(handler, config))

        assert recorder.status == 302

    def test_full_header_and_cookie_pipeline(self, status_handler):
        config = RedirectErrorsConfig(
            status=["401"],
            target="http://target/",
            output_add_headers={"Set-Cookie": "test=value", "X-Custom-Header": "custom"},
            output_remove_headers=["^Authentik-Proxy-.+$", "^App-Tk-Session$"],
            output_add_cookies=["session=new; Path=/"],
            output_remove_cookies=["^authentik_proxy_.+$", "^app_tk_session$"],
        )
        upstream = status_handler(401, headers={
            "Authentik-Proxy-User": "u",
            "Authentik-Proxy-Groups": "g",
            "App-Tk-Session": "s",
            "X-Should-Remain": "yes",
        })
        request = HTTPRequest(
            method="GET",
            target="http://localhost",
            headers={"Cookie": (
                "authentik_proxy_user=u; authentik_proxy_groups=g; "
                "app_tk_session=s; keep_this=k"
            )},
        )

        recorder = serve(new(upstream, config), request)
        sent = recorder.sent_headers

        assert "Authentik-Proxy-User" not in sent
        assert "Authentik-Proxy-Groups" not in sent
        assert "App-Tk-Session" not in sent
        assert sent["X-Should-Remain"] == "yes"
        assert sent["X-Custom-Header"] == "custom"
        assert sent.get_all("Set-Cookie") == [
            "test=value",
            "session=new; Path=/",
            "authentik_proxy_user=; Path=/; Max-Age=0; HttpOnly; Secure",
            "authentik_proxy_groups=; Path=/; Max-Age=0; HttpOnly; Secure",
            "app_tk_session=; Path=/; Max-Age=0; HttpOnly; Secure",
        ]

    def test_removes_headers_staged_by_outer_middleware(self, status_handler):
        @function_middleware
        def stage(request, writer, next):
            writer.headers.set("X-Request-ID", "9cefc9cf")
            writer.headers.set("X-Kept", "1")
            next(request, writer)

        config = RedirectErrorsConfig(
            status=["401"], target="http://t/", output_remove_headers=["^X-Request-Id$"]
        )
        pipeline = MiddlewarePipeline().use(stage, RedirectErrorsMiddleware(config))

        recorder = serve(pipeline.wrap(status_handler(401)))

        assert recorder.status == 302
        assert "X-Request-ID" not in recorder.sent_headers
        assert recorder.sent_headers["X-Kept"] == "1"
        assert recorder.sent_headers["Location"] == "http://t/"

    def test_logs_caught_status(self, redirect_config, status_handler, caplog):
        with caplog.at_level(logging.INFO):
            serve(new(status_handler(401), redirect_config))

        assert "Caught HTTP status code 401, redirecting" in caplog.text

    def test_pass_through_is_not_logged(self, redirect_config, status_handler, caplog):
        with caplog.at_level(logging.INFO, logger="redirecterrors.middleware.redirect"):
            serve(new(status_handler(200), redirect_config))

        assert "Caught HTTP status code" not in caplog.text

    def test_write_failure_surfaces(self, redirect_config, status_handler, caplog):
        class FailingWriter(ResponseWriter):
            def _commit(self, status, headers):
                raise BrokenPipeError("gone")

            def _write_body(self, data):
                pass

        handler = new(status_handler(401), redirect_config)

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ResponseWriteError):
                handler(HTTPRequest(method="GET", target="http://localhost"), FailingWriter())

        assert "Failed to write redirect" in caplog.text

    def test_shared_between_requests(self, redirect_config):
        """One middleware instance serves many requests independently."""
        codes = iter([401, 200, 401])

        def handler(request, writer):
            writer.write_header(next(codes))

        wrapped = new(handler, redirect_config)

        assert [serve(wrapped).status for _ in range(3)] == [302, 200, 302]

    def test_new_exposes_middleware(self, redirect_config, status_handler):
        handler = new(status_handler(200), redirect_config, name="login-redirect")

        assert isinstance(handler.middleware, RedirectErrorsMiddleware)
        assert handler.middleware.name == "login-redirect"
