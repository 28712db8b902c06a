"""
=============================================================================
PROXY ERROR TAXONOMY
=============================================================================

Every failure the proxy can hit while handling one connection maps to one
of four exception types. All of them are contained inside the single
ConnectionHandler invocation that raised them.

    ┌────────────────────┬──────────────────────────────┬─────────────────────┐
    │  Exception         │  Raised when                 │  Handler reaction   │
    ├────────────────────┼──────────────────────────────┼─────────────────────┤
    │  HTTPParseError    │  Client or origin message is │  Close (client) or  │
    │                    │  malformed / incomplete      │  502 (origin)       │
    │  ForwardError      │  Connect, write or read to   │  502 / 504, close   │
    │                    │  the origin failed           │                     │
    │  DecodeError       │  gzip body is corrupt        │  Relay raw bytes,   │
    │                    │                              │  skip caching       │
    │  StorageError      │  Cache read/write failed     │  Read: cache miss   │
    │                    │                              │  Write: log, serve  │
    └────────────────────┴──────────────────────────────┴─────────────────────┘

None of them is ever retried.

=============================================================================
"""


class ProxyError(Exception):
    """Base class for all proxy errors."""


class HTTPParseError(ProxyError):
    """
    Raised when an HTTP message cannot be parsed.

    Carries the HTTP status code that best describes the problem:

        400 Bad Request           - Malformed start line or header
        408 Request Timeout       - Message not complete before timeout
        413 Payload Too Large     - Message exceeds the size limit
        505 HTTP Version Not Supported - Unknown protocol token

    The proxy never fabricates a response for a malformed CLIENT request,
    the code is used for logging. For a malformed ORIGIN response the
    handler answers 502 Bad Gateway instead.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class ForwardError(ProxyError):
    """
    Raised when talking to the origin server fails.

    Covers DNS/connect failure, write failure, read timeout and malformed
    upstream responses. `timed_out` distinguishes 504 from 502.
    """

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class DecodeError(ProxyError):
    """Raised when a gzip body is truncated or corrupt."""


class StorageError(ProxyError):
    """Raised when the cache store cannot read or write a blob."""
