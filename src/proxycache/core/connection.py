"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps an accepted client socket for the length of ONE request/response
exchange. The proxy does not keep connections alive: every response it
writes carries "Connection: close", and the socket is shut down right
after.

    ┌────────┐  read_request()  ┌────────────┐  send_response()  ┌─────────┐
    │  NEW   │ ───────────────► │ PROCESSING │ ────────────────► │ WRITING │
    └────────┘   (READING)      └────────────┘                   └────┬────┘
         │                            │                               │
         │ parse error / timeout      │ close()                       │
         └────────────────────────────┴───────────────► CLOSING ──► CLOSED

Reading is delegated to MessageReader, the same state machine used for
origin responses, so the socket timeout bounds every single recv().

=============================================================================
"""

import socket
import time
import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..http.framing import MessageReader


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A client connection.

    Attributes:
        socket:           The accepted client socket.
        address:          Client's (ip, port) tuple.
        id:               Short unique id used as a log prefix.
        state:            Current lifecycle state.
        created_at:       When the connection was accepted.
        buffer_size:      Bytes requested per recv().
        timeout:          Per-call socket timeout in seconds.
        max_request_size: Largest request accepted before a 413.
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)

    buffer_size: int = 4096
    timeout: float = 10.0
    max_request_size: int = 10 * 1024 * 1024

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def age(self) -> float:
        """Seconds since the connection was accepted."""
        return time.time() - self.created_at

    # =========================================================================
    # I/O
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request.

        Returns:
            The raw request bytes, or None if the client closed the
            connection without sending anything.

        Raises:
            HTTPParseError: On timeout (408), oversize (413), or the client
                            closing in the middle of a request.
        """
        self.state = ConnectionState.READING

        reader = MessageReader(
            self.socket,
            buffer_size=self.buffer_size,
            max_size=self.max_request_size,
        )
        data = reader.read_message()

        self.state = ConnectionState.PROCESSING
        if data is not None:
            logger.debug(f"[{self.id}] Read {len(data)} byte request")
        return data

    def send_response(self, data: bytes) -> bool:
        """
        Write a full response with sendall().

        Returns:
            True if every byte was handed to the kernel, False if the client
            went away or the write timed out.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    def close(self):
        """
        Close gracefully: FIN first, drain what the client still sends,
        then release the descriptor.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.age:.3f}s")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
