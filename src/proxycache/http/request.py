"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.x request bytes into structured HTTPRequest objects and
serializes them again for the trip to the origin server.

=============================================================================
WHAT A PROXY SEES
=============================================================================

A client configured to use a proxy sends the FULL URL in the request
line (absolute-form). A client talking to the proxy as if it were the
origin sends only the path (origin-form) and names the host in the Host
header. Both must work:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  ABSOLUTE-FORM (browser with proxy settings, curl -x)               │
    │                                                                      │
    │    GET http://example.com:8080/notes/a.txt HTTP/1.1\r\n             │
    │    Host: example.com:8080\r\n                                       │
    │    \r\n                                                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │  ORIGIN-FORM (plain client pointed at the proxy)                     │
    │                                                                      │
    │    GET /notes/a.txt HTTP/1.1\r\n                                    │
    │    Host: example.com:8080\r\n                                       │
    │    \r\n                                                              │
    └─────────────────────────────────────────────────────────────────────┘

The origin always receives origin-form:

    GET /notes/a.txt HTTP/1.1\r\n
    Host: example.com:8080\r\n
    Connection: close\r\n
    \r\n

=============================================================================
PARSING RULES
=============================================================================

1. The request line is split on SINGLE spaces into EXACTLY three tokens:
   METHOD SP TARGET SP VERSION. Anything else is a 400, and so is a
   target urlsplit rejects (unclosed IPv6 bracket, non-numeric port).
2. Each header line must contain a colon. Lines starting with whitespace
   continue the previous header (obsolete line folding).
3. The body is exactly Content-Length bytes, or the de-chunked body when
   Transfer-Encoding: chunked. A body shorter than declared is a 400.

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import List, Tuple
from urllib.parse import urlsplit, SplitResult

from ..errors import HTTPParseError
from .headers import Headers
from .framing import FramingKind, body_framing, decode_chunked
from .status_codes import HTTPStatus


# Headers that only make sense for a single hop (RFC 7230 §6.1)
HOP_BY_HOP_HEADERS = (
    "Connection",
    "Proxy-Connection",
    "Keep-Alive",
    "Transfer-Encoding",
    "TE",
    "Trailer",
    "Upgrade",
)

TOKEN_PATTERN = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")
VERSION_PATTERN = re.compile(r"^HTTP/\d\.\d$")


def split_message(data: bytes) -> Tuple[List[str], bytes]:
    """
    Split raw message bytes into header lines and body bytes.

    Header bytes are decoded as ISO-8859-1 so every byte survives a
    decode/encode round trip unchanged.
    """
    header_end = data.find(b"\r\n\r\n")
    if header_end == -1:
        raise HTTPParseError("Incomplete message: no header terminator")

    header_section = data[:header_end].decode("iso-8859-1")
    return header_section.split("\r\n"), data[header_end + 4:]


def parse_header_lines(lines: List[str]) -> Headers:
    """
    Parse "Name: value" lines into ordered Headers.

    Raises:
        HTTPParseError: If a line has no colon or an invalid field name.
    """
    pairs: List[Tuple[str, str]] = []

    for line in lines:
        # Obsolete line folding: continuation of the previous header
        if line[:1] in (" ", "\t"):
            if not pairs:
                raise HTTPParseError(f"Continuation line without header: {line!r}")
            name, value = pairs[-1]
            pairs[-1] = (name, f"{value} {line.strip()}")
            continue

        name, sep, value = line.partition(":")
        if not sep:
            raise HTTPParseError(f"Malformed header line (no colon): {line!r}")
        if not TOKEN_PATTERN.match(name):
            raise HTTPParseError(f"Invalid header name: {name!r}")

        pairs.append((name, value.strip()))

    return Headers(pairs)


def extract_body(data: bytes, headers: Headers, **framing_kwargs) -> bytes:
    """Cut the body out of the bytes that follow the header section."""
    framing = body_framing(headers, **framing_kwargs)

    if framing.kind is FramingKind.NONE:
        return b""

    if framing.kind is FramingKind.LENGTH:
        if len(data) < framing.length:
            raise HTTPParseError(
                f"Incomplete body: expected {framing.length} bytes, got {len(data)}"
            )
        return data[:framing.length]

    decoded = decode_chunked(data)
    if decoded is None:
        raise HTTPParseError("Incomplete chunked body")
    return decoded[0]


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request as received from a client.

    Attributes:
        method:         Request method token (GET, POST, ...).
        target:         Request target exactly as sent (absolute-form URL or
                        origin-form path). The cache key is derived from it.
        version:        Protocol token ("HTTP/1.1").
        headers:        Ordered header pairs, case-insensitive lookup.
        body:           Body bytes (already de-chunked).
        client_address: (ip, port) of the client, for logging.
        raw:            Original bytes, for debugging.
    """

    method: str
    target: str
    version: str = "HTTP/1.1"
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    client_address: Tuple[str, int] = ("", 0)
    raw: bytes = field(default=b"", repr=False)

    # =========================================================================
    # TARGET HELPERS
    # =========================================================================

    @property
    def url(self) -> SplitResult:
        """The target split into scheme, netloc, path, query, fragment."""
        return urlsplit(self.target)

    @property
    def is_absolute(self) -> bool:
        """True for absolute-form targets ("http://host/path")."""
        return "://" in self.target and not self.target.startswith("/")

    @property
    def path(self) -> str:
        """Target path without query string ("/notes/a.txt")."""
        return self.url.path or "/"

    @property
    def origin_form(self) -> str:
        """Path plus query, the form sent to the origin server."""
        parts = self.url
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path

    @property
    def authority(self) -> str:
        """
        The "host[:port]" this request is addressed to.

        Absolute-form targets win over the Host header (RFC 7230 §5.4).
        """
        if self.is_absolute:
            return self.url.netloc
        return self.headers.get("Host", "") or ""

    @property
    def host(self) -> str:
        """Host name from the authority, without port or IPv6 brackets."""
        return urlsplit(f"//{self.authority}").hostname or ""

    @property
    def port(self) -> int:
        """
        Port from the authority, 80 when none is given.

        Raises:
            ValueError: If the authority carries a non-numeric or
                        out-of-range port.
        """
        return urlsplit(f"//{self.authority}").port or 80

    # =========================================================================
    # SERIALIZATION (proxy → origin)
    # =========================================================================

    def to_bytes(self) -> bytes:
        """
        Serialize the request for the origin server.

        - Request line uses origin-form
        - Host header guaranteed (replaced by the URL authority when the
          target is absolute-form)
        - Hop-by-hop headers dropped, including any named in Connection
        - Content-Length set from the (de-chunked) body
        - Connection: close, one exchange per upstream connection
        """
        headers = self.headers.copy()

        named_in_connection = [
            token.strip()
            for value in headers.get_all("Connection")
            for token in value.split(",")
            if token.strip()
        ]
        for name in list(HOP_BY_HOP_HEADERS) + named_in_connection:
            headers.remove(name)

        if "Host" not in headers:
            headers = Headers([("Host", self.authority)] + list(headers))
        elif self.is_absolute:
            headers.set("Host", self.authority)

        if self.body or "Content-Length" in headers:
            headers.set("Content-Length", str(len(self.body)))

        headers.add("Connection", "close")

        lines = [f"{self.method} {self.origin_form} {self.version}"]
        lines.extend(headers.to_lines())
        lines.append("")

        return "\r\n".join(lines).encode("iso-8859-1") + b"\r\n" + self.body


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

        Raw Request Bytes
              │
              ▼
        1. Size check              → 413 if too large
        2. Split at \\r\\n\\r\\n      → 400 if missing
        3. Request line            → exactly 3 tokens, else 400
                                     version HTTP/x.y, else 505
                                     target splittable, else 400
        4. Header lines            → colon required, else 400
        5. Body                    → Content-Length / chunked
              │
              ▼
        HTTPRequest
    """

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: Tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=HTTPStatus.PAYLOAD_TOO_LARGE
            )

        lines, rest = split_message(data)
        method, target, version = self._parse_request_line(lines[0])
        headers = parse_header_lines(lines[1:])
        body = extract_body(rest, headers)

        return HTTPRequest(
            method=method,
            target=target,
            version=version,
            headers=headers,
            body=body,
            client_address=client_address,
            raw=data,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        """
        Split "METHOD SP TARGET SP VERSION" into its three tokens.

        Splitting on single spaces means a double space yields an empty
        token, which is rejected like a missing one.
        """
        tokens = line.split(" ")
        if len(tokens) != 3 or not all(tokens):
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = tokens

        if not TOKEN_PATTERN.match(method):
            raise HTTPParseError(f"Invalid method: {method!r}")

        if not VERSION_PATTERN.match(version):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version!r}",
                status_code=HTTPStatus.HTTP_VERSION_NOT_SUPPORTED
            )

        self._check_target(target)

        return method, target, version

    def _check_target(self, target: str) -> None:
        """
        Reject targets urlsplit cannot take apart ("http://[::1/a.txt")
        or whose port is not a number in 0-65535.
        """
        try:
            urlsplit(target).port
        except ValueError as e:
            raise HTTPParseError(f"Invalid request target {target!r}: {e}") from e


# =============================================================================
# CONVENIENCE FUNCTION
# =============================================================================

def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """Parse an HTTP request in one call."""
    parser = RequestParser(max_request_size=max_size)
    return parser.parse(data, client_address)
