"""
pytest configuration and fixtures.
"""

import gzip
import json
import socket
import threading
import time
from typing import Callable, Generator, List, Optional, Union
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from proxycache import ProxyConfig, ProxyServer
from proxycache.access_log import LogRecord, RequestLogger
from proxycache.cache.store import FileCacheStore
from proxycache.core.connection import Connection
from proxycache.errors import HTTPParseError
from proxycache.http.framing import MessageReader


# =============================================================================
# RAW MESSAGE HELPERS
# =============================================================================

def build_response(
    body: bytes = b"",
    status: str = "200 OK",
    headers: Optional[List[tuple]] = None,
    content_length: bool = True,
) -> bytes:
    """Raw origin response bytes."""
    lines = [f"HTTP/1.1 {status}"]
    for name, value in headers or []:
        lines.append(f"{name}: {value}")
    if content_length:
        lines.append(f"Content-Length: {len(body)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


def gzip_response(text: bytes, status: str = "200 OK") -> bytes:
    """Origin response with a gzip-encoded body."""
    return build_response(
        gzip.compress(text),
        status=status,
        headers=[("Content-Type", "text/plain"), ("Content-Encoding", "gzip")],
    )


def recv_all(sock: socket.socket, timeout: float = 10.0) -> bytes:
    """Read until the peer closes."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        try:
            data = sock.recv(4096)
        except ConnectionResetError:
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


# =============================================================================
# ORIGIN SERVER STUB
# =============================================================================

class OriginStub:
    """
    Scripted origin server running in a background thread.

    `reply` is either fixed response bytes or a callable taking the raw
    request and returning response bytes. `delay` stalls before replying.
    """

    def __init__(self, reply: Union[bytes, Callable[[bytes], bytes]] = b"", delay: float = 0.0):
        self.reply = reply
        self.delay = delay
        self.requests: List[bytes] = []
        self._lock = threading.Lock()

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self._sock.settimeout(0.2)
        self.port = self._sock.getsockname()[1]

        self._running = False
        self._thread: Optional[threading.Thread] = None

    @property
    def hits(self) -> int:
        with self._lock:
            return len(self.requests)

    @property
    def authority(self) -> str:
        return f"127.0.0.1:{self.port}"

    def url(self, path: str) -> str:
        return f"http://{self.authority}{path}"

    def start(self):
        self._running = True
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def stop(self):
        self._running = False
        if self._thread:
            self._thread.join(timeout=5.0)
        self._sock.close()

    def _serve(self):
        while self._running:
            try:
                client, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            threading.Thread(target=self._handle, args=(client,), daemon=True).start()

    def _handle(self, client: socket.socket):
        with client:
            client.settimeout(5.0)
            try:
                raw = MessageReader(client).read_message()
            except (HTTPParseError, OSError):
                return
            if raw is None:
                return

            with self._lock:
                self.requests.append(raw)

            if self.delay:
                time.sleep(self.delay)

            reply = self.reply(raw) if callable(self.reply) else self.reply
            try:
                client.sendall(reply)
            except OSError:
                pass


@pytest.fixture
def origin_factory() -> Generator[Callable[..., OriginStub], None, None]:
    """Start origin stubs on demand; all are stopped after the test."""
    started: List[OriginStub] = []

    def factory(reply=b"", delay: float = 0.0) -> OriginStub:
        stub = OriginStub(reply=reply, delay=delay)
        stub.start()
        started.append(stub)
        return stub

    yield factory

    for stub in started:
        stub.stop()


# =============================================================================
# STORE, LOGGER, CONFIG
# =============================================================================

@pytest.fixture
def store(tmp_path: Path) -> FileCacheStore:
    """Empty file-backed cache in a temporary directory."""
    return FileCacheStore(str(tmp_path / "cache"))


class ListLogger(RequestLogger):
    """RequestLogger that keeps records in memory."""

    def __init__(self):
        super().__init__()
        self.records: List[LogRecord] = []

    def record(self, entry: LogRecord) -> None:
        self.records.append(entry)


@pytest.fixture
def request_log() -> ListLogger:
    return ListLogger()


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def config(tmp_path: Path) -> ProxyConfig:
    """Proxy configuration suited to tests: loopback, OS-picked port, short timeout."""
    return ProxyConfig(
        host="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=4,
        timeout=1.0,
        cache_dir=str(tmp_path / "cache"),
        log_file=str(tmp_path / "access.log"),
        log_format="json",
        log_level="WARNING",
    )


# =============================================================================
# CONNECTIONS AND A RUNNING PROXY
# =============================================================================

@pytest.fixture
def socket_pair() -> Generator[Callable[..., tuple], None, None]:
    """
    Make (client_socket, Connection) pairs joined by socket.socketpair().

    The client end is closed after the test.
    """
    clients: List[socket.socket] = []

    def make(timeout: float = 1.0) -> tuple:
        client, server_side = socket.socketpair()
        clients.append(client)
        conn = Connection(socket=server_side, address=("127.0.0.1", 40000), timeout=timeout)
        return client, conn

    yield make

    for client in clients:
        client.close()


class ProxyHarness:
    """Runs a ProxyServer in a background thread."""

    def __init__(self, server: ProxyServer, log_file: str):
        self.server = server
        self.log_file = log_file
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()
        if not self.server.wait_until_listening(timeout=5.0):
            raise RuntimeError("Proxy failed to start")

    def stop(self):
        self.server.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    def connect(self) -> socket.socket:
        return socket.create_connection(("127.0.0.1", self.port), timeout=10.0)

    def send(self, raw: bytes) -> bytes:
        """Send raw request bytes and return everything the proxy answers."""
        with self.connect() as sock:
            sock.sendall(raw)
            return recv_all(sock)

    def access_records(self) -> List[dict]:
        """Parsed JSON access log lines. Call after stop()."""
        path = Path(self.log_file)
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


@pytest.fixture
def proxy(config: ProxyConfig) -> Generator[ProxyHarness, None, None]:
    """A running proxy with a temporary cache and a JSON access log."""
    harness = ProxyHarness(ProxyServer(config), config.log_file)
    harness.start()

    yield harness

    harness.stop()
