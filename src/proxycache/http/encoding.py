"""
=============================================================================
CONTENT DECODING
=============================================================================

The cache only ever holds plaintext. Origins that answer with
Content-Encoding: gzip are decoded before the body is stored or relayed,
so a cache hit can be served without knowing how the origin encoded it.

    Origin response                       After prepare_for_client()
    ┌─────────────────────────────┐       ┌─────────────────────────────┐
    │ Content-Encoding: gzip      │       │                             │
    │ Content-Length: 25          │  ──►  │ Content-Length: 5           │
    │                             │       │                             │
    │ 1f 8b 08 00 ... (25 bytes)  │       │ hello                       │
    └─────────────────────────────┘       └─────────────────────────────┘

A corrupt or truncated gzip stream, or one that inflates past the
message size limit, raises DecodeError and leaves the response
untouched, so it can still be relayed as the origin sent it.

=============================================================================
"""

import zlib
import logging
from typing import List, Optional

from ..errors import DecodeError
from .headers import Headers


logger = logging.getLogger(__name__)

GZIP_TOKENS = ("gzip", "x-gzip")

# zlib window bits that accept a gzip header and trailer
GZIP_WBITS = 16 + zlib.MAX_WBITS


def content_codings(headers: Headers) -> List[str]:
    """
    Content codings applied to the body, in the order they were applied.

    "identity" is a no-op and is left out.
    """
    return [
        token.strip().lower()
        for value in headers.get_all("Content-Encoding")
        for token in value.split(",")
        if token.strip() and token.strip().lower() != "identity"
    ]


def is_gzip(message) -> bool:
    """True if the message body is gzip-encoded (case-insensitive)."""
    return any(coding in GZIP_TOKENS for coding in content_codings(message.headers))


def decode(data: bytes, max_size: Optional[int] = None) -> bytes:
    """
    Decompress a gzip stream (multi-member streams included).

    Output is produced in bounded steps, so a small body that inflates
    past `max_size` is rejected before it is fully expanded.

    Raises:
        DecodeError: If the stream is truncated or corrupt, or decodes to
                     more than `max_size` bytes.
    """
    decoded = bytearray()
    pending = data

    try:
        while pending:
            member = zlib.decompressobj(GZIP_WBITS)
            while not member.eof:
                # One byte over the allowance is enough to detect overflow
                budget = 0 if max_size is None else max_size - len(decoded) + 1
                decoded += member.decompress(pending, budget)
                if max_size is not None and len(decoded) > max_size:
                    raise DecodeError(f"Decoded body exceeds {max_size} bytes")
                if not member.eof and not member.unconsumed_tail:
                    raise DecodeError("Invalid gzip body: truncated stream")
                pending = member.unconsumed_tail
            # Zero padding after the last member is allowed, as gzip does
            pending = member.unused_data.lstrip(b"\x00")
    except zlib.error as e:
        raise DecodeError(f"Invalid gzip body: {e}") from e

    return bytes(decoded)


def prepare_for_client(response, max_size: Optional[int] = None) -> bool:
    """
    Decode a gzip body in place and fix up the encoding headers.

    Only the outermost coding is undone, and only when it is gzip.
    Content-Length is recomputed at serialization time.

    Returns:
        True if the body is now plaintext (no content coding left).

    Raises:
        DecodeError: If the gzip stream is corrupt or decodes past
                     `max_size`. The response is not modified then.
    """
    if response.bodiless:
        return False

    codings = content_codings(response.headers)
    if not codings:
        return True
    if codings[-1] not in GZIP_TOKENS:
        return False

    decoded = decode(response.body, max_size)
    logger.debug(f"Decoded gzip body: {len(response.body)} -> {len(decoded)} bytes")
    response.body = decoded

    remaining = codings[:-1]
    if remaining:
        response.headers.set("Content-Encoding", ", ".join(remaining))
    else:
        response.headers.remove("Content-Encoding")

    return not remaining
