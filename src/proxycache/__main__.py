"""
=============================================================================
COMMAND-LINE ENTRY POINT
=============================================================================

    # Defaults (0.0.0.0:8080, ./cache, access log on stderr)
    python -m proxycache

    # Port as a bare argument, or as a flag
    python -m proxycache 3128
    python -m proxycache --port 3128

    # Persistent cache and access log
    python -m proxycache --cache-dir /var/cache/proxycache \\
                         --log-file /var/log/proxycache/access.log

    # Point a client at it
    curl -x http://127.0.0.1:3128 http://example.com/notes.txt

Flags override PROXY_* environment variables, which override the
ProxyConfig defaults.

Exit status: 0 after a graceful shutdown, 1 when the proxy cannot start
(invalid configuration, unusable cache directory, port already bound).

=============================================================================
"""

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from . import __version__
from .config import LOG_FORMATS, LOG_LEVELS, ProxyConfig
from .errors import StorageError
from .server import ProxyServer


logger = logging.getLogger("proxycache")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxycache",
        description="Forwarding HTTP proxy that caches plain-text (.txt) resources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m proxycache 3128                          # Listen on port 3128
  python -m proxycache --cache-dir ./cache           # Custom cache directory
  python -m proxycache --log-file access.log         # Access log to a file
  python -m proxycache --log-format json             # JSON access log lines
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "listen_port",
        nargs="?",
        type=int,
        metavar="PORT",
        help="Port to listen on (same as --port)"
    )
    parser.add_argument(
        "--host", "-H",
        help="Address to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Port to listen on (default: 8080)"
    )
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        help="Per-operation socket timeout in seconds (default: 10)"
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        help="Maximum worker threads (default: 32)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # CACHE AND LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--cache-dir", "-c",
        help="Directory for cached .txt bodies (default: ./cache)"
    )
    parser.add_argument(
        "--log-file", "-f",
        help="Append access log lines to this file (default: stderr)"
    )
    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Application logging level (default: INFO)"
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        help="Access log line format (default: text)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"proxycache {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace, base: Optional[ProxyConfig] = None) -> ProxyConfig:
    """Overlay the flags that were given on top of `base` (env/defaults)."""
    config = base or ProxyConfig.from_env()
    overrides = {}

    port = args.port if args.port is not None else args.listen_port
    if port is not None:
        overrides["port"] = port

    for name in ("host", "timeout", "cache_dir", "log_file", "log_level", "log_format"):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value

    if args.workers is not None:
        overrides["max_workers"] = args.workers
        overrides["min_workers"] = min(config.min_workers, args.workers)

    return replace(config, **overrides)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        server = ProxyServer(config)
    except ValueError as e:
        print(f"proxycache: invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        server.run()
    except StorageError as e:
        logger.error(f"Cannot open cache: {e}")
        return 1
    except OSError as e:
        logger.error(f"Cannot start listener: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
