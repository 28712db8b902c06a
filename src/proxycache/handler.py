"""
=============================================================================
CONNECTION HANDLER
=============================================================================

Runs exactly one request/response exchange for one client connection, on
a worker thread. Everything a connection can go through is decided here:

    read request ──► parse ──► cacheable? ──no──────────────┐
         │             │           │                         │
     timeout /     malformed      yes                        │
     closed            │           ▼                         ▼
         │             │     in cache? ──yes──► 200 from   forward to origin
         ▼             ▼           │            cache (HIT)   │        │
     PARSE_ERROR (close, no       no ──────────────────────►─┘     failure
     response written)                                       │        │
                                                     gzip? decode     ▼
                                                     store if .txt  502/504
                                                     relay (FORWARDED) (UPSTREAM_ERROR)

Every path ends with the socket closed and, except for a client that
connected and sent nothing, exactly one access log record.

=============================================================================
FAILURE CONTAINMENT
=============================================================================

    HTTPParseError (client)   → close without a response
    ForwardError              → 502, or 504 when the origin timed out
    DecodeError               → relay the origin bytes as-is, do not cache
                                (corrupt gzip, or decoded past max_body_size)
    StorageError on get()     → treated as a miss
    StorageError on put()     → logged, the response is still relayed

Nothing raised here escapes to the worker except genuine bugs, which the
worker logs.

=============================================================================
"""

import time
import logging
from typing import Optional, Tuple

from .access_log import LogRecord, Outcome, RequestLogger
from .cache.policy import CacheablePredicate, cache_key, is_cacheable as default_is_cacheable
from .cache.store import CacheStore
from .core.connection import Connection
from .errors import DecodeError, ForwardError, HTTPParseError, StorageError
from .forwarder import OriginForwarder
from .http.encoding import prepare_for_client
from .http.request import HTTPRequest, RequestParser
from .http.response import HTTPResponse, cache_hit_response, error_response
from .http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class ConnectionHandler:
    """
    Orchestrates cache lookups, forwarding, decoding and logging.

    All collaborators are injected, so one handler instance is shared by
    every worker thread and tests can swap any of them out:

        handler = ConnectionHandler(
            store=FileCacheStore("./cache"),
            forwarder=OriginForwarder(timeout=10),
            request_logger=RequestLogger(),
        )
        handler.handle(conn)
    """

    def __init__(
        self,
        store: CacheStore,
        forwarder: OriginForwarder,
        request_logger: RequestLogger,
        is_cacheable: CacheablePredicate = default_is_cacheable,
        parser: Optional[RequestParser] = None,
        server_name: str = "proxycache/1.0",
        max_body_size: Optional[int] = None,
    ):
        self.store = store
        self.forwarder = forwarder
        self.request_logger = request_logger
        self.is_cacheable = is_cacheable
        self.parser = parser or RequestParser()
        self.server_name = server_name
        self.max_body_size = max_body_size

    # =========================================================================
    # CONNECTION LEVEL
    # =========================================================================

    def handle(self, conn: Connection) -> None:
        """Serve one connection and close it."""
        started = time.perf_counter()

        with conn:
            request = self._read_request(conn, started)
            if request is None:
                return

            response, outcome, detail = self.exchange(request)

            if not conn.send_response(response.to_bytes()):
                detail = detail or "client went away before the response was written"

            self.request_logger.record(LogRecord(
                outcome=outcome,
                method=request.method,
                target=request.target,
                version=request.version,
                client_ip=conn.client_ip,
                status=response.status,
                size=len(response.body),
                duration_ms=(time.perf_counter() - started) * 1000,
                detail=detail,
            ))

    def _read_request(self, conn: Connection, started: float) -> Optional[HTTPRequest]:
        try:
            raw = conn.read_request()
            if raw is None:
                logger.debug(f"[{conn.id}] Client closed without sending a request")
                return None
            return self.parser.parse(raw, conn.address)

        except HTTPParseError as e:
            logger.info(f"[{conn.id}] Unreadable request ({e.status_code}): {e}")
            self.request_logger.record(LogRecord(
                outcome=Outcome.PARSE_ERROR,
                client_ip=conn.client_ip,
                duration_ms=(time.perf_counter() - started) * 1000,
                detail=str(e),
            ))
            return None

    # =========================================================================
    # EXCHANGE LEVEL
    # =========================================================================

    def exchange(self, request: HTTPRequest) -> Tuple[HTTPResponse, Outcome, str]:
        """
        Produce the response for a parsed request.

        Returns:
            (response to write, outcome tag, error detail or "")
        """
        cacheable = self.is_cacheable(request)
        key = cache_key(request) if cacheable else None

        if cacheable:
            cached = self._lookup(key)
            if cached is not None:
                logger.debug(f"Cache hit for {key!r} ({len(cached)} bytes)")
                return self._hit_response(request, cached), Outcome.HIT, ""

        try:
            response = self.forwarder.forward(request)
        except ForwardError as e:
            status = HTTPStatus.GATEWAY_TIMEOUT if e.timed_out else HTTPStatus.BAD_GATEWAY
            logger.warning(f"{request.method} {request.target} failed upstream: {e}")
            return (
                error_response(status, server_name=self.server_name),
                Outcome.UPSTREAM_ERROR,
                str(e),
            )

        plaintext = self._decode(request, response)

        if cacheable:
            response.headers.set("X-Cache", "MISS")
            if self._should_store(request, response, plaintext):
                self._store(key, response.body)

        response.close_connection()
        return response, Outcome.FORWARDED, ""

    def _hit_response(self, request: HTTPRequest, body: bytes) -> HTTPResponse:
        response = cache_hit_response(body, version=request.version)
        if request.method.upper() == "HEAD":
            # Headers describe the cached body, but none is sent
            response.body = b""
            response.bodiless = True
        return response

    def _decode(self, request: HTTPRequest, response: HTTPResponse) -> bool:
        try:
            return prepare_for_client(response, self.max_body_size)
        except DecodeError as e:
            logger.warning(f"Relaying undecoded body for {request.target}: {e}")
            return False

    def _should_store(self, request: HTTPRequest, response: HTTPResponse, plaintext: bool) -> bool:
        return (
            plaintext
            and response.status == HTTPStatus.OK
            and request.method.upper() != "HEAD"
        )

    # =========================================================================
    # STORE ACCESS (failures never reach the client)
    # =========================================================================

    def _lookup(self, key: str) -> Optional[bytes]:
        try:
            return self.store.get(key)
        except StorageError as e:
            logger.warning(f"Cache read failed, treating as miss: {e}")
            return None

    def _store(self, key: str, content: bytes) -> None:
        try:
            self.store.put(key, content)
            logger.debug(f"Cached {len(content)} bytes for {key!r}")
        except StorageError as e:
            logger.error(f"Cache write failed, response still relayed: {e}")
