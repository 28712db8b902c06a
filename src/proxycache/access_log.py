"""
=============================================================================
ACCESS LOG
=============================================================================

One line per handled connection, whatever path it took through the proxy.

=============================================================================
OUTCOMES
=============================================================================

    ┌────────────────┬────────────────────────────────────────────────────┐
    │  HIT           │  Served from the cache, origin never contacted     │
    │  FORWARDED     │  Relayed from the origin (and maybe stored)        │
    │  PARSE_ERROR   │  Client request unreadable, connection closed      │
    │  UPSTREAM_ERROR│  Origin failed or timed out, 502/504 sent          │
    └────────────────┴────────────────────────────────────────────────────┘

=============================================================================
LINE FORMATS
=============================================================================

    TEXT (default):
    127.0.0.1 - - [18/Oct/2026:10:55:36 +0000] "GET /a.txt HTTP/1.1" HIT 200 5 0.41ms

    JSON:
    {"timestamp": "...", "client_ip": "127.0.0.1", "method": "GET",
     "target": "/a.txt", "version": "HTTP/1.1", "outcome": "HIT",
     "status": 200, "size": 5, "duration_ms": 0.41}

Records go to the "proxycache.access" logger. The server attaches a
FileHandler to it when a log file is configured, otherwise lines propagate
to the root handler (stderr). A logging.Handler takes its own lock around
every emit, so concurrent workers never interleave partial lines.

=============================================================================
"""

import json
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


access_logger = logging.getLogger("proxycache.access")
logger = logging.getLogger(__name__)


class Outcome(Enum):
    HIT = "HIT"
    FORWARDED = "FORWARDED"
    PARSE_ERROR = "PARSE_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"


@dataclass
class LogRecord:
    """
    Structured access log entry.

    Fields the request never supplied (a PARSE_ERROR has no method) are
    logged as "-". `status` is None when no response was written.
    """

    outcome: Outcome
    method: str = "-"
    target: str = "-"
    version: str = "-"
    client_ip: str = "-"
    status: Optional[int] = None
    size: int = 0
    duration_ms: float = 0.0
    detail: str = ""
    timestamp: str = field(default_factory=lambda: time.strftime("%d/%b/%Y:%H:%M:%S %z"))

    def to_dict(self) -> dict:
        data = {
            "timestamp": self.timestamp,
            "client_ip": self.client_ip,
            "method": self.method,
            "target": self.target,
            "version": self.version,
            "outcome": self.outcome.value,
            "status": self.status,
            "size": self.size,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.detail:
            data["detail"] = self.detail
        return data

    def to_text(self) -> str:
        """Apache-style line with the outcome tag after the request."""
        status = self.status if self.status is not None else "-"
        line = (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.target} {self.version}" {self.outcome.value} '
            f'{status} {self.size} {self.duration_ms:.2f}ms'
        )
        if self.detail:
            line += f' "{self.detail}"'
        return line


class RequestLogger:
    """
    Writes LogRecords to the access log.

    record() never raises: a broken log sink must not take a connection
    down with it. Failures are reported on the application logger.
    """

    FORMATS = ("text", "json")

    def __init__(self, log_format: str = "text", sink: Optional[logging.Logger] = None):
        if log_format not in self.FORMATS:
            raise ValueError(f"log_format must be one of {self.FORMATS}, got {log_format!r}")
        self.log_format = log_format
        self.sink = sink or access_logger

    def record(self, entry: LogRecord) -> None:
        try:
            if self.log_format == "json":
                line = json.dumps(entry.to_dict())
            else:
                line = entry.to_text()
            self.sink.info(line)
        except Exception:
            logger.exception("Failed to write access log record")


def attach_log_file(path: str) -> logging.Handler:
    """
    Send access log lines to `path` (appending), one bare line per record.

    Returns the handler so the caller can detach and close it on shutdown.
    """
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    access_logger.addHandler(handler)
    access_logger.propagate = False
    return handler


def detach_log_file(handler: logging.Handler) -> None:
    access_logger.removeHandler(handler)
    access_logger.propagate = True
    handler.close()
