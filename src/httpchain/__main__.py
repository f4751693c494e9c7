"""
=============================================================================
HTTPCHAIN CLI ENTRY POINT
=============================================================================

    # Defaults: 127.0.0.1:8080, request logging, nothing else (every URL 404s)
    python -m httpchain

    # Serve ./public under /public
    python -m httpchain --static /public=./public

    # Several mounts, tried in order
    python -m httpchain --static /public=./public --static /assets=/srv/assets

    # Listen on all interfaces with JSON access lines
    python -m httpchain --host 0.0.0.0 --log-format json

Environment variables (HTTP_PORT, HTTP_STATIC, ...) provide the defaults;
see ServerConfig.from_env(). Flags override them.

The pipeline built here is always:

    LoggingMiddleware → StaticFile(mount 1) → StaticFile(mount 2) → ... → 404

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig, LOG_LEVELS, LOG_FORMATS, parse_static_mount
from .server import create_app


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httpchain",
        description="HTTP/1.1 server with a forward-only middleware pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpchain                                  # Run with defaults
  python -m httpchain --port 3000                      # Custom port
  python -m httpchain --static /public=./public        # Serve a directory
  python -m httpchain --log-level DEBUG                # See every stage
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})",
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})",
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=defaults.max_workers,
        help=f"Maximum worker threads (default: {defaults.max_workers})",
    )

    # ─────────────────────────────────────────────────────────────────────
    # STAGES
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--static", "-s",
        metavar="URL=DIR",
        type=parse_static_mount,
        action="append",
        default=None,
        help="Serve DIR under URL, e.g. /public=./public (repeatable)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        default=defaults.log_level,
        help=f"Logging level (default: {defaults.log_level})",
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=defaults.log_format,
        help=f"Access log format (default: {defaults.log_format})",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"httpchain {__version__}",
    )

    return parser


def config_from_args(argv=None) -> ServerConfig:
    """
    Environment first, then command-line flags on top.

    Raises:
        SystemExit: On invalid arguments (argparse).
        ValueError: On an invalid HTTP_* environment variable.
    """
    defaults = ServerConfig.from_env()
    args = build_parser(defaults).parse_args(argv)

    return ServerConfig(
        host=args.host,
        port=args.port,
        min_workers=min(defaults.min_workers, args.workers),
        max_workers=args.workers,
        timeout=defaults.timeout,
        static_mounts=args.static if args.static is not None else defaults.static_mounts,
        log_level=args.log_level,
        log_format=args.log_format,
    )


def main(argv=None):
    try:
        server = create_app(config_from_args(argv))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        server.run()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
