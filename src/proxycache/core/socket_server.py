"""
=============================================================================
LISTENER
=============================================================================

Owns the listening TCP socket and the accept() loop. Each accepted socket
is wrapped in a Connection and handed to a callback; the callback (the
proxy server) decides which worker handles it.

    socket() → setsockopt() → bind() → listen() → accept() ─┐
                                                   ▲        │ Connection
                                                   └────────┘ → callback

=============================================================================
SOCKET OPTIONS
=============================================================================

    SO_REUSEADDR   Rebind right after a restart (no TIME_WAIT wait)
    SO_REUSEPORT   Several processes may share the port, where supported
    TCP_NODELAY    Small writes (status lines, short bodies) go out at once

The listening socket has a 1 second accept() timeout so the loop notices
shutdown() promptly even when no client connects.

=============================================================================
FAILURE POLICY
=============================================================================

An accept() failure while running (EMFILE, ECONNABORTED, ...) is logged
and the loop keeps going. Only shutdown() ends it.

SIGINT and SIGTERM trigger shutdown() when the listener runs on the main
thread. Python only lets the main thread install signal handlers, so a
listener started from another thread (tests, embedding) skips them.

=============================================================================
"""

import socket
import signal
import time
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ProxyConfig
from .connection import Connection


logger = logging.getLogger(__name__)

ACCEPT_ERROR_BACKOFF = 0.1


class SocketServer:
    """
    Low-level TCP listener.

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown()
    """

    def __init__(self, config: ProxyConfig):
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._running = False
        self._listening_event = threading.Event()
        self._original_handlers: dict = {}
        self._bound_address: Optional[Tuple[str, int]] = None

    @property
    def address(self) -> Tuple[str, int]:
        """
        The address actually bound. With port 0 this reports the port the
        OS picked, once listening.
        """
        return self._bound_address or (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except (AttributeError, OSError):
            pass  # Not available on this platform

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        return sock

    def _setup_signals(self):
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal handlers")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and run the accept loop. BLOCKS until shutdown().

        Raises:
            OSError: If the address cannot be bound.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)
        self._bound_address = self._socket.getsockname()[:2]

        self._running = True
        self._setup_signals()
        self._listening_event.set()

        host, port = self._bound_address
        logger.info(f"Proxy listening on {host}:{port}")

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running:
                    break
                logger.error(f"Accept error: {e}")
                time.sleep(ACCEPT_ERROR_BACKOFF)
                continue

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                max_request_size=self.config.max_message_size,
            )
            connection_handler(conn)

    def shutdown(self):
        """Stop the accept loop. Safe to call more than once, from any thread."""
        logger.info("Shutting down listener...")
        self._running = False

    def _cleanup(self):
        self._restore_signals()
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        self._listening_event.clear()
        logger.info("Listener stopped")

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is bound and accepting. False on timeout."""
        return self._listening_event.wait(timeout)
