"""
=============================================================================
ORIGIN FORWARDER
=============================================================================

Sends one request to the origin server and reads back one response.

    ┌──────────┐  1. resolve host:port    ┌──────────┐
    │  Proxy   │ ───────────────────────► │  Origin  │
    │          │  2. connect (timeout)    │          │
    │          │  3. sendall(origin-form) │          │
    │          │ ◄─────────────────────── │          │
    │          │  4. MessageReader until  │          │
    │          │     framing is satisfied │          │
    └──────────┘  5. close                └──────────┘

Every blocking step uses the same per-call timeout as the client side.
Any failure becomes a ForwardError; `timed_out` tells the handler to
answer 504 instead of 502. There is exactly one attempt: no retries, no
backoff.

=============================================================================
"""

import socket
import logging
import time
from typing import Tuple

from .errors import ForwardError, HTTPParseError
from .http.framing import MessageReader, ReadState
from .http.request import HTTPRequest
from .http.response import HTTPResponse, parse_response


logger = logging.getLogger(__name__)


class OriginForwarder:
    """
    Forwards requests to their origin server over plain TCP.

    Usage:
        forwarder = OriginForwarder(timeout=10.0)
        response = forwarder.forward(request)   # may raise ForwardError
    """

    def __init__(
        self,
        timeout: float = 10.0,
        buffer_size: int = 4096,
        max_message_size: int = 10 * 1024 * 1024,
    ):
        self.timeout = timeout
        self.buffer_size = buffer_size
        self.max_message_size = max_message_size

    def resolve(self, request: HTTPRequest) -> Tuple[str, int]:
        """
        Work out where to connect.

        Absolute-form targets name the origin themselves; origin-form
        targets rely on the Host header. Port defaults to 80.

        Raises:
            ForwardError: Non-http scheme, no host at all, or a bad port.
        """
        if request.is_absolute:
            scheme = request.url.scheme.lower()
            if scheme != "http":
                raise ForwardError(f"Unsupported scheme: {scheme!r}")

        try:
            host = request.host
            port = request.port
        except ValueError as e:
            raise ForwardError(f"Invalid port in {request.authority!r}: {e}") from e

        if not host:
            raise ForwardError(f"No origin host for target {request.target!r}")

        return host, port

    def forward(self, request: HTTPRequest) -> HTTPResponse:
        """
        Forward a request and return the origin's parsed response.

        Raises:
            ForwardError: On connect, write or read failure, timeout, or a
                          malformed origin response.
        """
        host, port = self.resolve(request)
        started = time.perf_counter()

        sock = self._connect(host, port)
        with sock:
            self._send(sock, request, host, port)
            raw = self._receive(sock, request, host, port)

        try:
            response = parse_response(raw, request_method=request.method)
        except HTTPParseError as e:
            raise ForwardError(f"Malformed response from {host}:{port}: {e}") from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"{request.method} {host}:{port}{request.origin_form} -> "
            f"{response.status} ({len(response.body)} bytes, {elapsed_ms:.1f}ms)"
        )
        return response

    def _connect(self, host: str, port: int) -> socket.socket:
        try:
            return socket.create_connection((host, port), timeout=self.timeout)
        except socket.timeout as e:
            raise ForwardError(f"Timed out connecting to {host}:{port}", timed_out=True) from e
        except OSError as e:
            raise ForwardError(f"Cannot connect to {host}:{port}: {e}") from e

    def _send(self, sock: socket.socket, request: HTTPRequest, host: str, port: int):
        try:
            sock.sendall(request.to_bytes())
        except socket.timeout as e:
            raise ForwardError(f"Timed out writing to {host}:{port}", timed_out=True) from e
        except OSError as e:
            raise ForwardError(f"Write to {host}:{port} failed: {e}") from e

    def _receive(self, sock: socket.socket, request: HTTPRequest, host: str, port: int) -> bytes:
        reader = MessageReader(
            sock,
            buffer_size=self.buffer_size,
            max_size=self.max_message_size,
            is_response=True,
            request_method=request.method,
        )

        try:
            raw = reader.read_message()
        except HTTPParseError as e:
            timed_out = reader.state is ReadState.TIMED_OUT
            raise ForwardError(f"Bad response from {host}:{port}: {e}", timed_out=timed_out) from e
        except OSError as e:
            raise ForwardError(f"Read from {host}:{port} failed: {e}") from e

        if raw is None:
            raise ForwardError(f"{host}:{port} closed the connection without responding")
        return raw
