"""
=============================================================================
CLI ENTRY POINT
=============================================================================

USAGE

    # Validate a configuration file
    python -m redirecterrors check config.json

    # Run in front of an authentication service
    python -m redirecterrors serve config.json --upstream http://auth:9000

    # Listen on all interfaces, JSON access logs
    python -m redirecterrors serve config.json --upstream http://auth:9000 \
        --host 0.0.0.0 --log-format json

The config path may also come from REDIRECT_ERRORS_CONFIG.

Exit codes: 0 success, 1 invalid configuration, 2 usage error.
=============================================================================
"""

import argparse
import logging
import os
import sys

from . import __version__
from .config import RedirectErrorsConfig, ServerConfig
from .errors import ConfigError
from .handlers import UpstreamHandler
from .middleware import LoggingMiddleware, RedirectErrorsMiddleware, compile_config
from .server import HTTPServer, setup_logging


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="redirecterrors",
        description="Redirect selected HTTP error responses to a login page",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m redirecterrors check config.json
  python -m redirecterrors serve config.json --upstream http://auth:9000
  python -m redirecterrors serve config.json --upstream http://auth:9000 --port 3000
        """
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"redirecterrors {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # ─────────────────────────────────────────────────────────────────────
    # check
    # ─────────────────────────────────────────────────────────────────────
    check = subparsers.add_parser("check", help="Validate a configuration file")
    check.add_argument(
        "config",
        nargs="?",
        default=os.getenv("REDIRECT_ERRORS_CONFIG"),
        help="Path to the JSON config (default: $REDIRECT_ERRORS_CONFIG)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # serve
    # ─────────────────────────────────────────────────────────────────────
    serve = subparsers.add_parser("serve", help="Run the redirecting proxy server")
    serve.add_argument(
        "config",
        nargs="?",
        default=os.getenv("REDIRECT_ERRORS_CONFIG"),
        help="Path to the JSON config (default: $REDIRECT_ERRORS_CONFIG)"
    )
    serve.add_argument(
        "--upstream", "-u",
        required=True,
        help="Base URL of the upstream service, e.g. http://auth:9000"
    )
    serve.add_argument(
        "--upstream-timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the upstream (default: 30)"
    )
    serve.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for containers)"
    )
    serve.add_argument(
        "--port", "-p",
        type=int,
        default=8080,
        help="Port to listen on (default: 8080)"
    )
    serve.add_argument(
        "--workers", "-w",
        type=int,
        default=16,
        help="Number of worker threads (default: 16)"
    )
    serve.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )
    serve.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Access log format (default: text)"
    )

    return parser


def load_config(path: str) -> RedirectErrorsConfig:
    if not path:
        raise ConfigError("no config file given (argument or REDIRECT_ERRORS_CONFIG)")
    return RedirectErrorsConfig.from_json_file(path)


def cmd_check(args: argparse.Namespace) -> int:
    try:
        compiled = compile_config(load_config(args.config))
    except ConfigError as e:
        print(f"invalid configuration: {e}", file=sys.stderr)
        return 1

    ranges = ", ".join(str(r) for r in compiled.code_ranges) or "(none, never redirects)"
    print(f"status:         {ranges}")
    print(f"target:         {compiled.target}")
    print(f"output status:  {compiled.output_status}")
    print(f"add headers:    {len(compiled.add_headers)}")
    print(f"remove headers: {len(compiled.remove_header_patterns)} pattern(s)")
    print(f"add cookies:    {len(compiled.add_cookies)}")
    print(f"remove cookies: {len(compiled.remove_cookie_patterns)} pattern(s)")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    setup_logging(args.log_level)

    try:
        redirect = RedirectErrorsMiddleware(load_config(args.config))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    server_config = ServerConfig(
        host=args.host,
        port=args.port,
        workers=args.workers,
        log_level=args.log_level,
        log_format=args.log_format,
    )

    server = HTTPServer(UpstreamHandler(args.upstream, timeout=args.upstream_timeout),
                        server_config)
    server.use(LoggingMiddleware(log_format=args.log_format))
    server.use(redirect)
    server.run()
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "check":
        return cmd_check(args)
    return cmd_serve(args)


if __name__ == "__main__":
    sys.exit(main())
