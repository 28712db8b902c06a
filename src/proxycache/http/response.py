"""
=============================================================================
HTTP RESPONSE PARSER AND SERIALIZER
=============================================================================

Origin responses are parsed into HTTPResponse objects, possibly rewritten
(gzip decoded, de-chunked), and serialized again for the client. The
proxy also builds a few responses of its own (cache hits, gateway errors).

=============================================================================
STATUS LINE
=============================================================================

    HTTP/1.1 404 Not Found\r\n
    ───┬──── ─┬─ ────┬────
       │      │      │
    Version  Code  Reason phrase (MAY contain spaces, MAY be empty)

The line is split at most twice, so "Not Found" stays one token.

=============================================================================
WHAT CHANGES BETWEEN ORIGIN AND CLIENT
=============================================================================

    Origin sent                          Client receives
    ─────────────────────────────────    ─────────────────────────────────
    Transfer-Encoding: chunked           Content-Length: <decoded size>
    Content-Encoding: gzip               (removed, body is plaintext)
    Connection: keep-alive               Connection: close
    <gzip bytes in chunks>               <plaintext bytes>

Everything else (status, reason, header order and casing) is relayed as
received.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..errors import HTTPParseError
from .headers import Headers
from .framing import FramingKind, body_framing
from .request import (
    HOP_BY_HOP_HEADERS,
    VERSION_PATTERN,
    extract_body,
    parse_header_lines,
    split_message,
)
from .status_codes import HTTPStatus, reason_phrase


@dataclass
class HTTPResponse:
    """
    An HTTP response, either received from an origin or built by the proxy.

    `status` is a plain int so any code an origin sends can be relayed,
    including ones HTTPStatus does not list.

    `bodiless` marks responses whose framing carries no body at all (replies
    to HEAD, 1xx, 204, 304). Their Content-Length header describes the
    resource, not the empty body, so serialization leaves it alone.
    """

    status: int = 200
    reason: str = "OK"
    version: str = "HTTP/1.1"
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    bodiless: bool = False
    raw: bytes = field(default=b"", repr=False)

    @property
    def status_line(self) -> str:
        return f"{self.version} {self.status} {self.reason}".rstrip()

    def close_connection(self) -> "HTTPResponse":
        """
        Drop the origin's hop-by-hop headers and mark the response as the
        last one on this client connection.
        """
        for name in HOP_BY_HOP_HEADERS:
            if name.lower() != "transfer-encoding":
                self.headers.remove(name)
        self.headers.add("Connection", "close")
        return self

    def to_bytes(self) -> bytes:
        """
        Serialize for the client.

            HTTP/1.1 200 OK\\r\\n              ← status line
            Content-Type: text/plain\\r\\n     ← headers, in order
            Content-Length: 5\\r\\n            ← always the real body size
            \\r\\n
            hello                             ← body bytes verbatim

        The body is always held de-chunked, so Transfer-Encoding is
        replaced by a Content-Length equal to the bytes actually written.
        """
        headers = self.headers.copy()

        if not self.bodiless:
            headers.remove("Transfer-Encoding")
            headers.set("Content-Length", str(len(self.body)))

        lines = [self.status_line]
        lines.extend(headers.to_lines())
        lines.append("")

        return "\r\n".join(lines).encode("iso-8859-1") + b"\r\n" + self.body


# =============================================================================
# PARSING
# =============================================================================

def parse_response(
    data: bytes,
    request_method: Optional[str] = None
) -> HTTPResponse:
    """
    Parse raw origin response bytes.

    Args:
        data:           Complete response bytes (as assembled by
                        MessageReader).
        request_method: Method of the request this answers. A reply to
                        HEAD has no body whatever its headers say.

    Raises:
        HTTPParseError: If the status line, a header line, or the body
                        framing is malformed.
    """
    lines, rest = split_message(data)
    version, status, reason = _parse_status_line(lines[0])
    headers = parse_header_lines(lines[1:])

    framing_kwargs = dict(is_response=True, status=status, request_method=request_method)
    bodiless = body_framing(headers, **framing_kwargs).kind is FramingKind.NONE
    body = extract_body(rest, headers, **framing_kwargs)

    return HTTPResponse(
        status=status,
        reason=reason,
        version=version,
        headers=headers,
        body=body,
        bodiless=bodiless,
        raw=data,
    )


def _parse_status_line(line: str):
    parts = line.split(" ", 2)
    if len(parts) < 2:
        raise HTTPParseError(f"Invalid status line: {line!r}")

    version, code = parts[0], parts[1]
    reason = parts[2] if len(parts) == 3 else ""

    if not VERSION_PATTERN.match(version):
        raise HTTPParseError(f"Invalid response version: {version!r}")
    if len(code) != 3 or not code.isdigit():
        raise HTTPParseError(f"Invalid status code: {code!r}")

    return version, int(code), reason


# =============================================================================
# RESPONSES THE PROXY BUILDS ITSELF
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), always GMT.

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def cache_hit_response(body: bytes, version: str = "HTTP/1.1") -> HTTPResponse:
    """
    Synthetic 200 wrapping cached plaintext.

    Uses the client's protocol version so an HTTP/1.0 client gets an
    HTTP/1.0 status line back.
    """
    headers = Headers([
        ("Content-Type", "text/plain"),
        ("Content-Length", str(len(body))),
        ("X-Cache", "HIT"),
        ("Connection", "close"),
    ])
    return HTTPResponse(
        status=int(HTTPStatus.OK),
        reason=HTTPStatus.OK.phrase,
        version=version,
        headers=headers,
        body=body,
    )


def error_response(
    status: int,
    version: str = "HTTP/1.1",
    server_name: str = "proxycache/1.0",
    detail: str = "",
) -> HTTPResponse:
    """
    Plain-text error response originated by the proxy (502, 503, 504).

    Body: "502 Bad Gateway\\n" plus an optional detail line.
    """
    phrase = reason_phrase(status)
    text = f"{int(status)} {phrase}\n"
    if detail:
        text += f"{detail}\n"
    body = text.encode("utf-8")

    headers = Headers([
        ("Content-Type", "text/plain; charset=utf-8"),
        ("Content-Length", str(len(body))),
        ("Date", format_http_date(datetime.now(timezone.utc))),
        ("Server", server_name),
        ("Connection", "close"),
    ])
    return HTTPResponse(
        status=int(status),
        reason=phrase,
        version=version,
        headers=headers,
        body=body,
    )
