"""
=============================================================================
TOKEN SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:8080, backlog 10, 16-byte reads)
    python -m tokenserver

    # Custom port, verbose logging
    python -m tokenserver --port 9000 --log-level DEBUG

    # Drop sessions after 5 failed reads in a row
    python -m tokenserver --max-receive-errors 5

Every flag falls back to its TOKEN_* environment variable, then to the
default in ServerConfig.

=============================================================================
"""

import argparse
import dataclasses
import logging
import sys

from . import __version__
from .config import ServerConfig, LOG_LEVELS
from .server import TokenServer
from .core import ServerError


logger = logging.getLogger("tokenserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokenserver",
        description="Concurrent TCP server for the hello/negotiate/bye token protocol",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tokenserver                       # Run with defaults
  python -m tokenserver --port 9000           # Custom port
  python -m tokenserver --host 0.0.0.0        # Listen on all interfaces
  python -m tokenserver --buffer-size 64      # Allow longer tokens
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 8080)"
    )

    parser.add_argument(
        "--backlog", "-b",
        type=int,
        default=None,
        help="Pending-connection backlog (default: 10)"
    )

    parser.add_argument(
        "--buffer-size",
        type=int,
        default=None,
        help="Bytes read per message; longer tokens are cut off (default: 16)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # SESSION ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--max-receive-errors",
        type=int,
        default=None,
        help="Close a session after this many consecutive failed reads (default: never)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # META ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"tokenserver {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Overlay CLI flags on the environment/default configuration."""
    overrides = {
        "host": args.host,
        "port": args.port,
        "backlog": args.backlog,
        "buffer_size": args.buffer_size,
        "max_receive_errors": args.max_receive_errors,
        "log_level": args.log_level,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    return dataclasses.replace(ServerConfig.from_env(), **overrides)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        server = TokenServer(config)
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        server.run()
    except ServerError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    logger.info("Exiting ...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
