"""
=============================================================================
HTTP STATUS CODES USED BY THE PROXY
=============================================================================

The proxy relays whatever status the origin sends, as a plain int. It only
ORIGINATES a handful of statuses itself:

    ┌────────┬─────────────────────────┬────────────────────────────────────┐
    │  Code  │  Phrase                 │  When the proxy produces it        │
    ├────────┼─────────────────────────┼────────────────────────────────────┤
    │  200   │  OK                     │  Cache hit                         │
    │  502   │  Bad Gateway            │  Origin unreachable, write failed, │
    │        │                         │  or malformed origin response      │
    │  503   │  Service Unavailable    │  Worker queue full                 │
    │  504   │  Gateway Timeout        │  Origin did not answer in time     │
    └────────┴─────────────────────────┴────────────────────────────────────┘

The remaining members are the non-default codes the parsers report on
failure (HTTPParseError.status_code, 400 otherwise) and the bodiless
statuses the framing rules need to recognise. Relayed origin statuses are
plain ints and keep the reason phrase the origin sent.

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes with their reason phrases.

    IntEnum members compare equal to plain ints, so a relayed origin
    status (int) and HTTPStatus.OK can be compared directly.

    Usage:
        HTTPStatus.BAD_GATEWAY.phrase       # "Bad Gateway"
        reason_phrase(504)                  # "Gateway Timeout"
        reason_phrase(404)                  # "Unknown" (relayed, never built)
    """

    # 2xx Success
    OK = 200
    NO_CONTENT = 204

    # 3xx Redirection
    NOT_MODIFIED = 304

    # 4xx Client Errors
    REQUEST_TIMEOUT = 408               # Client too slow to send its request
    PAYLOAD_TOO_LARGE = 413             # Message above max_message_size

    # 5xx Server Errors
    BAD_GATEWAY = 502                   # Origin failed or answered garbage
    SERVICE_UNAVAILABLE = 503           # Worker queue full
    GATEWAY_TIMEOUT = 504               # Origin too slow
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line ("HTTP/1.1 502 Bad Gateway")."""
        return _STATUS_PHRASES.get(self, "Unknown")


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.BAD_GATEWAY: "Bad Gateway",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.GATEWAY_TIMEOUT: "Gateway Timeout",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}


def reason_phrase(status: int) -> str:
    """Reason phrase for any int status, "Unknown" when not listed."""
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown"
