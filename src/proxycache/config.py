"""
=============================================================================
PROXY CONFIGURATION
=============================================================================

Every tunable of the proxy in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line flags     python -m proxycache --port 3128        │
    │   2. Environment variables  PROXY_PORT=3128 python -m proxycache    │
    │   3. Defaults below                                                 │
    └─────────────────────────────────────────────────────────────────────┘

validate() runs once at startup and raises ValueError on the first bad
value, before any socket is opened.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


@dataclass
class ProxyConfig:
    """
    Configuration for the caching proxy.

    Groups:
        NETWORK     host, port, backlog, buffer_size, timeout
        MESSAGES    max_message_size
        THREADING   min_workers, max_workers, queue_size
        CACHE       cache_dir
        LOGGING     log_file, log_level, log_format
        IDENTITY    server_name

    Example:
        ProxyConfig(port=3128, cache_dir="/var/cache/proxycache",
                    log_file="/var/log/proxycache/access.log")
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address to listen on. "0.0.0.0" accepts clients on every interface."""

    port: int = 8080
    """Port to listen on. 0 lets the OS pick a free one."""

    backlog: int = 128
    """Pending-connection queue length passed to listen()."""

    buffer_size: int = 4096
    """Bytes requested per recv(), on both client and origin sockets."""

    timeout: float = 10.0
    """
    Per-call socket timeout in seconds. Applies separately to each client
    read, origin connect, origin write, origin read and client write.
    """

    # ─────────────────────────────────────────────────────────────────────
    # MESSAGES
    # ─────────────────────────────────────────────────────────────────────

    max_message_size: int = 10 * 1024 * 1024  # 10 MB
    """Largest request or origin response held in memory."""

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 32
    """Upper bound on concurrently handled connections."""

    queue_size: int = 128
    """Accepted connections waiting for a worker. Beyond this: 503."""

    # ─────────────────────────────────────────────────────────────────────
    # CACHE
    # ─────────────────────────────────────────────────────────────────────

    cache_dir: str = "cache"
    """Directory holding one <sha256>.blob file per cached target."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_file: Optional[str] = None
    """Access log path (appended to). None sends access lines to stderr."""

    log_level: str = "INFO"
    log_format: str = "text"
    """Access log line format: "text" or "json"."""

    # ─────────────────────────────────────────────────────────────────────
    # IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "proxycache/1.0"
    """Server header on responses the proxy generates itself."""

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        """
        Build a configuration from PROXY_* environment variables.

            PROXY_HOST        listen address      (default: 0.0.0.0)
            PROXY_PORT        listen port         (default: 8080)
            PROXY_TIMEOUT     socket timeout, s   (default: 10)
            PROXY_WORKERS     max worker threads  (default: 32)
            PROXY_CACHE_DIR   cache directory     (default: cache)
            PROXY_LOG_FILE    access log path     (default: stderr)
            PROXY_LOG_LEVEL   logging level       (default: INFO)
            PROXY_LOG_FORMAT  text | json         (default: text)

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        defaults = cls()
        return cls(
            host=os.getenv("PROXY_HOST", defaults.host),
            port=int(os.getenv("PROXY_PORT", str(defaults.port))),
            timeout=float(os.getenv("PROXY_TIMEOUT", str(defaults.timeout))),
            max_workers=int(os.getenv("PROXY_WORKERS", str(defaults.max_workers))),
            cache_dir=os.getenv("PROXY_CACHE_DIR", defaults.cache_dir),
            log_file=os.getenv("PROXY_LOG_FILE") or None,
            log_level=os.getenv("PROXY_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("PROXY_LOG_FORMAT", defaults.log_format),
        )

    def validate(self) -> None:
        """Fail fast on values the proxy cannot run with."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.max_message_size < self.buffer_size:
            raise ValueError("max_message_size must be >= buffer_size")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        if not self.cache_dir:
            raise ValueError("cache_dir must not be empty")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
