"""
=============================================================================
PROXY SERVER
=============================================================================

Wires the components together and owns their lifecycle.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           ProxyServer                               │
    │                                                                      │
    │   SocketServer ──Connection──► ThreadPool ──► ConnectionHandler     │
    │   (accept loop)               (workers)        │    │     │          │
    │                                                ▼    ▼     ▼          │
    │                                   FileCacheStore  Origin  Request   │
    │                                                   Forwarder Logger  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    run()
      1. configure logging (application log + access log file)
      2. open the cache directory          → StorageError aborts startup
      3. start the worker pool
      4. bind and accept (BLOCKS)          → OSError aborts startup
    stop() / SIGINT / SIGTERM
      5. accept loop exits
      6. queued connections finish (bounded wait)
      7. workers exit, access log file closed

=============================================================================
"""

import logging
import threading
from typing import Optional

from .access_log import RequestLogger, access_logger, attach_log_file, detach_log_file
from .cache.policy import CacheablePredicate, is_cacheable as default_is_cacheable
from .cache.store import CacheStore, FileCacheStore
from .config import ProxyConfig
from .core import Connection, SocketServer, ThreadPool
from .forwarder import OriginForwarder
from .handler import ConnectionHandler
from .http.request import RequestParser
from .http.response import error_response
from .http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 30.0


class ProxyServer:
    """
    The caching forward proxy.

    Usage:
        server = ProxyServer(ProxyConfig(port=3128, cache_dir="./cache"))
        server.run()        # blocks until Ctrl+C or stop()

    `store` and `is_cacheable` may be injected; by default the store is a
    FileCacheStore on config.cache_dir and only ".txt" targets are cached.
    """

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        store: Optional[CacheStore] = None,
        is_cacheable: CacheablePredicate = default_is_cacheable,
    ):
        self.config = config or ProxyConfig()
        self.config.validate()

        self._store = store
        self._is_cacheable = is_cacheable

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            queue_size=self.config.queue_size,
        )
        self._handler: Optional[ConnectionHandler] = None
        self._log_handler: Optional[logging.Handler] = None

    @property
    def address(self):
        """Bound (host, port); the real port once listening on port 0."""
        return self._socket_server.address

    @property
    def handler(self) -> Optional[ConnectionHandler]:
        return self._handler

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_listening(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Start serving (blocking).

        Raises:
            StorageError: If the cache directory cannot be created.
            OSError:      If the listen address cannot be bound.
        """
        self._setup_logging()

        try:
            self._handler = self._build_handler()
            self._thread_pool.start()
            self._print_startup_banner()
            self._socket_server.start(self._dispatch)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def stop(self):
        """Ask the accept loop to exit. Safe from any thread."""
        self._socket_server.shutdown()

    def _build_handler(self) -> ConnectionHandler:
        store = self._store if self._store is not None else FileCacheStore(self.config.cache_dir)
        forwarder = OriginForwarder(
            timeout=self.config.timeout,
            buffer_size=self.config.buffer_size,
            max_message_size=self.config.max_message_size,
        )
        return ConnectionHandler(
            store=store,
            forwarder=forwarder,
            request_logger=RequestLogger(log_format=self.config.log_format),
            is_cacheable=self._is_cacheable,
            parser=RequestParser(max_request_size=self.config.max_message_size),
            server_name=self.config.server_name,
            max_body_size=self.config.max_message_size,
        )

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("proxycache").setLevel(level)
        # Access lines are written whatever the application log level
        access_logger.setLevel(logging.INFO)

        if self.config.log_file and self._log_handler is None:
            self._log_handler = attach_log_file(self.config.log_file)
            logger.info(f"Access log: {self.config.log_file}")

    def _print_startup_banner(self):
        cache = getattr(self._handler.store, "root", type(self._handler.store).__name__)
        print()
        print("=" * 64)
        print(f"  {self.config.server_name} caching proxy")
        print(f"  Listening on {self.config.host}:{self.config.port}")
        print(f"  Cache:   {cache}")
        print(f"  Workers: {self.config.min_workers}-{self.config.max_workers} threads")
        print(f"  Timeout: {self.config.timeout}s per socket operation")
        print("  Press Ctrl+C to stop")
        print("=" * 64)
        print()

    def _shutdown(self):
        logger.info(f"Shutting down proxy... (pool: {self._thread_pool.stats})")
        self._thread_pool.shutdown(wait=True, timeout=SHUTDOWN_GRACE_SECONDS)

        if self._log_handler is not None:
            detach_log_file(self._log_handler)
            self._log_handler = None

        logger.info("Proxy stopped")

    # =========================================================================
    # DISPATCH (runs on the accept thread)
    # =========================================================================

    def _dispatch(self, conn: Connection):
        submitted = self._thread_pool.submit(
            self._handler.handle,
            args=(conn,),
            block=False,
        )

        if not submitted:
            logger.warning(f"[{conn.id}] Worker queue full, rejecting connection")
            response = error_response(
                HTTPStatus.SERVICE_UNAVAILABLE,
                server_name=self.config.server_name,
            )
            conn.send_response(response.to_bytes())
            # Drain and close off the accept thread
            threading.Thread(
                target=conn.close,
                name=f"reject-{conn.id}",
                daemon=True,
            ).start()
