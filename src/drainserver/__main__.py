"""
=============================================================================
CLI ENTRY POINT
=============================================================================

    python -m drainserver                         # defaults / environment
    python -m drainserver --port 3000             # custom port
    python -m drainserver --host 0.0.0.0          # all interfaces (containers)
    python -m drainserver --grace-period 10       # shorter drain deadline
    python -m drainserver --log-format text       # human readable logs

Precedence: command-line flags > environment variables > defaults.

Exit status:

    0   drained cleanly after SIGTERM / SIGINT
    1   drain deadline exceeded, uncaught fault, bind failure or bad config

=============================================================================
"""

import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import LOG_FORMATS, ServerConfig
from .core import EXIT_FAILURE, StartupError
from .logging_config import configure_logging
from .middleware import LoggingMiddleware
from .server import create_app


logger = logging.getLogger("drainserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drainserver",
        description="HTTP service with graceful, bounded shutdown",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m drainserver --port 3000
  python -m drainserver --host 0.0.0.0 --grace-period 20
  APP_ENV=production LOG_FORMAT=json python -m drainserver
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        help="Host to bind to (env HTTP_HOST, default 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Port to listen on (env HTTP_PORT or PORT, default 3000)",
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        help="Maximum worker threads (env HTTP_WORKERS, default 16)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--grace-period", "-g",
        type=float,
        help="Seconds to drain before a forced exit (env SHUTDOWN_GRACE_PERIOD, default 30)",
    )
    parser.add_argument(
        "--env", "-e",
        dest="environment",
        help="Environment label (env APP_ENV, default development)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (env LOG_LEVEL, default INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        help="Log output format (env LOG_FORMAT, default json)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"drainserver {__version__}",
    )

    return parser


def config_from_args(args: argparse.Namespace, base: Optional[ServerConfig] = None) -> ServerConfig:
    """Overlay the flags that were given on top of ``base`` (the environment)."""
    config = base or ServerConfig.from_env()

    overrides = {
        "host": args.host,
        "port": args.port,
        "grace_period": args.grace_period,
        "environment": args.environment,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    if args.workers is not None:
        overrides["max_workers"] = args.workers
        overrides["min_workers"] = min(config.min_workers, args.workers)

    return dataclasses.replace(
        config, **{k: v for k, v in overrides.items() if v is not None}
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        config.validate()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_FAILURE

    configure_logging(config.log_level, config.log_format, service=config.service_name)

    server = create_app(config)
    server.use(LoggingMiddleware())

    try:
        return server.run()
    except StartupError as e:
        logger.critical(f"Could not start: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
