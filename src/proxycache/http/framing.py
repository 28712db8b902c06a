"""
=============================================================================
INCREMENTAL MESSAGE READER
=============================================================================

TCP is a byte stream. A single recv() may return half a start line, or a
full request plus the start of the next one. Both sides of the proxy
(client → proxy and origin → proxy) therefore read the same way: keep
appending recv() chunks to a buffer until the HTTP framing rules say the
message is complete.

=============================================================================
READ STATE MACHINE
=============================================================================

    ┌──────────────────┐   found \r\n\r\n    ┌──────────────────┐
    │ AWAITING_HEADERS │ ──────────────────► │  AWAITING_BODY   │
    └────────┬─────────┘                     │  (remaining = N) │
             │                               └────────┬─────────┘
             │ socket timeout                         │ body satisfied
             ▼                                        ▼
    ┌──────────────────┐ ◄── socket timeout  ┌──────────────────┐
    │    TIMED_OUT     │                     │     COMPLETE     │
    └──────────────────┘                     └──────────────────┘

Every recv() is bounded by the socket timeout, so no state can hang
longer than one timeout period without progress.

=============================================================================
HOW LONG IS THE BODY? (RFC 7230 §3.3.3, simplified)
=============================================================================

    1. Response to HEAD, or status 1xx / 204 / 304   → no body
    2. Transfer-Encoding: chunked                     → read chunks until
                                                       the 0-size chunk
    3. Content-Length: N                              → exactly N bytes
    4. Request without either                         → no body
    5. Response without either                        → HTTPParseError
                                                       (read-until-close is
                                                       not supported)

=============================================================================
"""

import socket
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..errors import HTTPParseError
from .headers import Headers
from .status_codes import HTTPStatus


logger = logging.getLogger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"
CRLF = b"\r\n"

BODILESS_STATUSES = (HTTPStatus.NO_CONTENT, HTTPStatus.NOT_MODIFIED)


class ReadState(Enum):
    """Where the reader is in assembling one HTTP message."""
    AWAITING_HEADERS = "awaiting_headers"
    AWAITING_BODY = "awaiting_body"
    COMPLETE = "complete"
    TIMED_OUT = "timed_out"


class FramingKind(Enum):
    NONE = "none"
    LENGTH = "length"
    CHUNKED = "chunked"


@dataclass
class BodyFraming:
    """How the body of a message is delimited."""
    kind: FramingKind
    length: int = 0


# =============================================================================
# FRAMING RULES (shared by the reader and the parsers)
# =============================================================================

def is_chunked(headers: Headers) -> bool:
    """True if the LAST transfer coding is "chunked"."""
    values = headers.get_all("Transfer-Encoding")
    if not values:
        return False
    codings = [c.strip().lower() for v in values for c in v.split(",") if c.strip()]
    return bool(codings) and codings[-1] == "chunked"


def parse_content_length(headers: Headers) -> Optional[int]:
    """
    Read the Content-Length header.

    Returns None when absent. Repeated headers must agree, otherwise the
    message could be framed two different ways (request smuggling).
    """
    values = headers.get_all("Content-Length")
    if not values:
        return None

    lengths = set()
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if not part.isdigit():
                raise HTTPParseError(f"Invalid Content-Length: {value!r}")
            lengths.add(int(part))

    if len(lengths) != 1:
        raise HTTPParseError(f"Conflicting Content-Length values: {values}")
    return lengths.pop()


def body_framing(
    headers: Headers,
    is_response: bool = False,
    status: Optional[int] = None,
    request_method: Optional[str] = None,
) -> BodyFraming:
    """Decide how the body of a message is delimited."""
    if is_response:
        if request_method and request_method.upper() == "HEAD":
            return BodyFraming(FramingKind.NONE)
        if status is not None and (100 <= status < 200 or status in BODILESS_STATUSES):
            return BodyFraming(FramingKind.NONE)

    if is_chunked(headers):
        return BodyFraming(FramingKind.CHUNKED)

    length = parse_content_length(headers)
    if length is not None:
        return BodyFraming(FramingKind.LENGTH, length)

    if is_response:
        raise HTTPParseError("Response has neither Content-Length nor chunked encoding")

    return BodyFraming(FramingKind.NONE)


def decode_chunked(data: bytes) -> Optional[Tuple[bytes, int]]:
    """
    De-chunk a chunked body.

    Chunk format:

        5\\r\\n          ← chunk size in hex (extensions after ';' ignored)
        hello\\r\\n      ← chunk data
        0\\r\\n          ← last chunk
        \\r\\n           ← end of (empty) trailer section

    Args:
        data: Bytes starting at the first chunk-size line.

    Returns:
        (body, consumed) once the terminating chunk and trailers are all
        present, or None if more bytes are needed.

    Raises:
        HTTPParseError: On a malformed chunk size or missing chunk CRLF.
    """
    parts = []
    pos = 0

    while True:
        line_end = data.find(CRLF, pos)
        if line_end == -1:
            return None

        size_field = data[pos:line_end].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            raise HTTPParseError(f"Invalid chunk size: {size_field!r}")
        pos = line_end + 2

        if size == 0:
            # Trailer section: header lines until an empty line
            while True:
                line_end = data.find(CRLF, pos)
                if line_end == -1:
                    return None
                line = data[pos:line_end]
                pos = line_end + 2
                if not line:
                    return b"".join(parts), pos

        if len(data) < pos + size + 2:
            return None

        parts.append(data[pos:pos + size])
        if data[pos + size:pos + size + 2] != CRLF:
            raise HTTPParseError("Chunk data not terminated by CRLF")
        pos += size + 2


def scan_headers(header_section: bytes) -> Tuple[str, Headers]:
    """
    Lenient header scan used only to decide framing while reading.

    Strict validation (colon required, token counts) is the parser's job.
    Returns the start line and the headers found.
    """
    text = header_section.decode("latin-1")
    lines = text.split("\r\n")
    headers = Headers()
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if sep:
            headers.add(name.strip(), value.strip())
    return lines[0], headers


def _status_from_start_line(start_line: str) -> Optional[int]:
    parts = start_line.split(" ", 2)
    if len(parts) >= 2 and parts[1].isdigit():
        return int(parts[1])
    return None


# =============================================================================
# THE READER
# =============================================================================

class MessageReader:
    """
    Reads exactly one complete HTTP message from a socket.

    Used identically for client requests and origin responses:

        reader = MessageReader(sock, buffer_size=4096)
        raw = reader.read_message()           # request

        reader = MessageReader(sock, is_response=True, request_method="GET")
        raw = reader.read_message()           # response

    The socket's own timeout bounds each recv(). On timeout the reader
    moves to TIMED_OUT and raises HTTPParseError(408).
    """

    def __init__(
        self,
        sock: socket.socket,
        buffer_size: int = 4096,
        max_size: int = 10 * 1024 * 1024,
        is_response: bool = False,
        request_method: Optional[str] = None,
    ):
        self.sock = sock
        self.buffer_size = buffer_size
        self.max_size = max_size
        self.is_response = is_response
        self.request_method = request_method

        self.state = ReadState.AWAITING_HEADERS
        self.framing: Optional[BodyFraming] = None
        self._buffer = b""
        self._body_start = 0
        self._message_end = 0

    @property
    def remaining(self) -> Optional[int]:
        """Body bytes still missing (only known for Content-Length bodies)."""
        if self.state is not ReadState.AWAITING_BODY or self.framing is None:
            return None
        if self.framing.kind is not FramingKind.LENGTH:
            return None
        received = len(self._buffer) - self._body_start
        return max(self.framing.length - received, 0)

    @property
    def leftover(self) -> bytes:
        """Bytes received after the end of the message (pipelined data)."""
        if self.state is not ReadState.COMPLETE:
            return b""
        return self._buffer[self._message_end:]

    def read_message(self) -> Optional[bytes]:
        """
        Run the state machine until the message is complete.

        Returns:
            The complete message bytes, or None if the peer closed the
            connection before sending a single byte.

        Raises:
            HTTPParseError: On timeout (408), oversize (413), malformed
                            framing, or the peer closing mid-message.
        """
        while True:
            if self.state is ReadState.AWAITING_HEADERS:
                header_end = self._buffer.find(HEADER_TERMINATOR)
                if header_end != -1:
                    self._enter_body_state(header_end)
                    continue

            elif self.state is ReadState.AWAITING_BODY:
                if self._body_complete():
                    self.state = ReadState.COMPLETE
                    return self._buffer[:self._message_end]

            elif self.state is ReadState.COMPLETE:
                return self._buffer[:self._message_end]

            chunk = self._recv()
            if not chunk:
                if self.state is ReadState.AWAITING_HEADERS and not self._buffer:
                    return None
                raise HTTPParseError("Connection closed before message was complete")

            self._buffer += chunk
            if len(self._buffer) > self.max_size:
                raise HTTPParseError(
                    f"Message too large: {len(self._buffer)} bytes",
                    status_code=HTTPStatus.PAYLOAD_TOO_LARGE,
                )

    def _enter_body_state(self, header_end: int):
        start_line, headers = scan_headers(self._buffer[:header_end])
        status = _status_from_start_line(start_line) if self.is_response else None

        self.framing = body_framing(
            headers,
            is_response=self.is_response,
            status=status,
            request_method=self.request_method,
        )
        self._body_start = header_end + len(HEADER_TERMINATOR)
        self.state = ReadState.AWAITING_BODY

    def _body_complete(self) -> bool:
        framing = self.framing
        body = self._buffer[self._body_start:]

        if framing.kind is FramingKind.NONE:
            self._message_end = self._body_start
            return True

        if framing.kind is FramingKind.LENGTH:
            if len(body) >= framing.length:
                self._message_end = self._body_start + framing.length
                return True
            return False

        decoded = decode_chunked(body)
        if decoded is None:
            return False
        self._message_end = self._body_start + decoded[1]
        return True

    def _recv(self) -> bytes:
        try:
            return self.sock.recv(self.buffer_size)
        except socket.timeout:
            self.state = ReadState.TIMED_OUT
            raise HTTPParseError(
                "Timed out waiting for message",
                status_code=HTTPStatus.REQUEST_TIMEOUT,
            )
        except (ConnectionResetError, BrokenPipeError):
            # Peer vanished, same as an orderly close for our purposes
            return b""
