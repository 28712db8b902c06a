"""
=============================================================================
HTTP MESSAGE CODEC
=============================================================================

Translates between raw HTTP/1.x bytes and structured messages, on both
sides of the proxy.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ FRAMING (framing.py)                                                │
    │ ─────────────────────────────────────────────────────────────────── │
    │ Reads ONE complete message off a socket, whatever recv() returns   │
    │ ReadState: AWAITING_HEADERS → AWAITING_BODY → COMPLETE / TIMED_OUT │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │ REQUEST (request.py)            │ RESPONSE (response.py)            │
    │ ─────────────────────────────── │ ───────────────────────────────── │
    │ parse_request(bytes)            │ parse_response(bytes, method)     │
    │ HTTPRequest.to_bytes()          │ HTTPResponse.to_bytes()           │
    │   → origin-form, for the origin │   → Content-Length, for client    │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │ HEADERS (headers.py)            │ ENCODING (encoding.py)            │
    │ ─────────────────────────────── │ ───────────────────────────────── │
    │ Ordered pairs, case-insensitive │ gzip → plaintext before caching   │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from ..errors import HTTPParseError
from .headers import Headers
from .framing import MessageReader, ReadState
from .request import HTTPRequest, RequestParser, parse_request
from .response import HTTPResponse, parse_response, cache_hit_response, error_response
from .status_codes import HTTPStatus

__all__ = [
    "HTTPParseError",
    "Headers",
    "MessageReader",
    "ReadState",
    "HTTPRequest",
    "RequestParser",
    "parse_request",
    "HTTPResponse",
    "parse_response",
    "cache_hit_response",
    "error_response",
    "HTTPStatus",
]
