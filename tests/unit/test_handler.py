"""
Unit tests for ConnectionHandler.

The handler runs against a real FileCacheStore and a socketpair client,
with the origin replaced by a scripted forwarder.
"""

import socket
from typing import List, Optional

from conftest import build_response, gzip_response, recv_all

from proxycache.access_log import Outcome
from proxycache.cache.store import CacheStore
from proxycache.errors import ForwardError, StorageError
from proxycache.handler import ConnectionHandler
from proxycache.http.request import HTTPRequest, parse_request
from proxycache.http.response import parse_response


class FakeForwarder:
    """Answers every request with the same raw bytes, or raises."""

    def __init__(self, raw: bytes = b"", error: Optional[ForwardError] = None):
        self.raw = raw
        self.error = error
        self.calls: List[HTTPRequest] = []

    def forward(self, request: HTTPRequest):
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return parse_response(self.raw, request_method=request.method)


class BrokenStore(CacheStore):
    """Every operation fails like an unreadable disk."""

    def has(self, key):
        raise StorageError("disk gone")

    def get(self, key):
        raise StorageError("disk gone")

    def put(self, key, content):
        raise StorageError("disk gone")

    def entry(self, key):
        raise StorageError("disk gone")


def run_exchange(handler, socket_pair, raw: bytes, close_client: bool = True) -> bytes:
    client, conn = socket_pair()
    client.sendall(raw)
    if close_client:
        client.shutdown(socket.SHUT_WR)
    handler.handle(conn)
    return recv_all(client, timeout=2.0)


class TestCacheFlow:
    """MISS then HIT for cacheable targets."""

    def test_gzip_miss_is_decoded_and_stored(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(gzip_response(b"hello"))
        handler = ConnectionHandler(store, forwarder, request_log)

        data = run_exchange(handler, socket_pair, b"GET http://origin/a.txt HTTP/1.1\r\nHost: origin\r\n\r\n")
        response = parse_response(data)

        assert response.status == 200
        assert response.body == b"hello"
        assert response.headers.get("Content-Length") == "5"
        assert "Content-Encoding" not in response.headers
        assert response.headers.get("X-Cache") == "MISS"
        assert response.headers.get("Connection") == "close"
        assert store.get("http://origin/a.txt") == b"hello"

        record = request_log.records[0]
        assert record.outcome is Outcome.FORWARDED
        assert record.status == 200
        assert record.target == "http://origin/a.txt"

    def test_second_request_is_hit(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"hello"))
        handler = ConnectionHandler(store, forwarder, request_log)
        raw = b"GET http://origin/a.txt HTTP/1.1\r\nHost: origin\r\n\r\n"

        run_exchange(handler, socket_pair, raw)
        data = run_exchange(handler, socket_pair, raw)
        response = parse_response(data)

        assert len(forwarder.calls) == 1
        assert response.body == b"hello"
        assert response.headers.get("X-Cache") == "HIT"
        assert [r.outcome for r in request_log.records] == [Outcome.FORWARDED, Outcome.HIT]

    def test_hit_never_contacts_origin(self, store, request_log, socket_pair):
        store.put("/a.txt", b"cached")
        forwarder = FakeForwarder(error=ForwardError("must not be called"))
        handler = ConnectionHandler(store, forwarder, request_log)

        data = run_exchange(handler, socket_pair, b"GET /a.txt HTTP/1.1\r\nHost: origin\r\n\r\n")

        assert parse_response(data).body == b"cached"
        assert forwarder.calls == []

    def test_head_hit_sends_headers_only(self, store, request_log, socket_pair):
        store.put("/a.txt", b"cached")
        handler = ConnectionHandler(store, FakeForwarder(), request_log)

        data = run_exchange(handler, socket_pair, b"HEAD /a.txt HTTP/1.1\r\nHost: origin\r\n\r\n")

        assert data.endswith(b"\r\n\r\n")
        assert b"Content-Length: 6\r\n" in data

    def test_non_txt_is_forwarded_and_not_stored(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"<p>hi</p>", headers=[("Content-Type", "text/html")]))
        handler = ConnectionHandler(store, forwarder, request_log)
        raw = b"GET http://origin/b.html HTTP/1.1\r\nHost: origin\r\n\r\n"

        first = parse_response(run_exchange(handler, socket_pair, raw))
        run_exchange(handler, socket_pair, raw)

        assert len(forwarder.calls) == 2
        assert "X-Cache" not in first.headers
        assert store.get("http://origin/b.html") is None

    def test_error_status_not_stored(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"nope", status="404 Not Found"))
        handler = ConnectionHandler(store, forwarder, request_log)

        data = run_exchange(handler, socket_pair, b"GET http://origin/a.txt HTTP/1.1\r\n\r\n")

        assert parse_response(data).status == 404
        assert store.get("http://origin/a.txt") is None

    def test_corrupt_gzip_relayed_not_stored(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"garbage", headers=[("Content-Encoding", "gzip")]))
        handler = ConnectionHandler(store, forwarder, request_log)

        data = run_exchange(handler, socket_pair, b"GET http://origin/a.txt HTTP/1.1\r\n\r\n")
        response = parse_response(data)

        assert response.body == b"garbage"
        assert response.headers.get("Content-Encoding") == "gzip"
        assert store.get("http://origin/a.txt") is None

    def test_custom_predicate(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"# readme"))
        handler = ConnectionHandler(
            store, forwarder, request_log,
            is_cacheable=lambda request: request.path.endswith(".md"),
        )

        run_exchange(handler, socket_pair, b"GET http://origin/README.md HTTP/1.1\r\n\r\n")

        assert store.get("http://origin/README.md") == b"# readme"


class TestFailures:
    """Every failure stays inside one connection."""

    def test_upstream_failure_is_502(self, store, request_log, socket_pair):
        handler = ConnectionHandler(store, FakeForwarder(error=ForwardError("refused")), request_log)

        data = run_exchange(handler, socket_pair, b"GET http://origin/a.txt HTTP/1.1\r\n\r\n")
        response = parse_response(data)

        assert response.status == 502
        assert b"refused" not in response.body
        record = request_log.records[0]
        assert record.outcome is Outcome.UPSTREAM_ERROR
        assert record.status == 502
        assert "refused" in record.detail
        assert store.get("http://origin/a.txt") is None

    def test_upstream_timeout_is_504(self, store, request_log, socket_pair):
        error = ForwardError("too slow", timed_out=True)
        handler = ConnectionHandler(store, FakeForwarder(error=error), request_log)

        data = run_exchange(handler, socket_pair, b"GET http://origin/a.txt HTTP/1.1\r\n\r\n")

        assert parse_response(data).status == 504

    def test_malformed_request_closed_without_response(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"x"))
        handler = ConnectionHandler(store, forwarder, request_log)

        data = run_exchange(handler, socket_pair, b"GET /a.txt\r\nHost: origin\r\n\r\n")

        assert data == b""
        assert forwarder.calls == []
        record = request_log.records[0]
        assert record.outcome is Outcome.PARSE_ERROR
        assert record.status is None
        assert record.method == "-"

    def test_unsplittable_target_is_parse_error(self, store, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"x"))
        handler = ConnectionHandler(store, forwarder, request_log)

        data = run_exchange(handler, socket_pair, b"GET http://[::1/a.txt HTTP/1.1\r\nHost: x\r\n\r\n")

        assert data == b""
        assert forwarder.calls == []
        assert [r.outcome for r in request_log.records] == [Outcome.PARSE_ERROR]
        assert "Invalid request target" in request_log.records[0].detail

    def test_stalled_client_times_out(self, store, request_log, socket_pair):
        handler = ConnectionHandler(store, FakeForwarder(), request_log)
        client, conn = socket_pair(timeout=0.2)
        client.sendall(b"GET /a.txt HTTP/1.1\r\nHost: ori")

        handler.handle(conn)

        assert recv_all(client, timeout=2.0) == b""
        assert request_log.records[0].outcome is Outcome.PARSE_ERROR

    def test_silent_client_not_logged(self, store, request_log, socket_pair):
        handler = ConnectionHandler(store, FakeForwarder(), request_log)

        assert run_exchange(handler, socket_pair, b"") == b""
        assert request_log.records == []

    def test_storage_failure_still_serves(self, request_log, socket_pair):
        forwarder = FakeForwarder(build_response(b"hello"))
        handler = ConnectionHandler(BrokenStore(), forwarder, request_log)

        data = run_exchange(handler, socket_pair, b"GET http://origin/a.txt HTTP/1.1\r\n\r\n")

        assert parse_response(data).body == b"hello"
        assert request_log.records[0].outcome is Outcome.FORWARDED


class TestExchange:
    """exchange() without any sockets."""

    def test_plaintext_chunked_response_stored(self, store, request_log):
        raw = build_response(
            b"5\r\nhello\r\n0\r\n\r\n",
            headers=[("Transfer-Encoding", "chunked")],
            content_length=False,
        )
        handler = ConnectionHandler(store, FakeForwarder(raw), request_log)

        response, outcome, detail = handler.exchange(parse_request(b"GET http://o/c.txt HTTP/1.1\r\n\r\n"))

        assert outcome is Outcome.FORWARDED
        assert detail == ""
        assert b"Transfer-Encoding" not in response.to_bytes()
        assert store.get("http://o/c.txt") == b"hello"

    def test_head_miss_not_stored(self, store, request_log):
        handler = ConnectionHandler(store, FakeForwarder(build_response(b"")), request_log)

        handler.exchange(parse_request(b"HEAD http://o/a.txt HTTP/1.1\r\n\r\n"))

        assert store.get("http://o/a.txt") is None

    def test_stored_body_matches_client_body(self, store, request_log):
        handler = ConnectionHandler(store, FakeForwarder(gzip_response(b"same bytes")), request_log)

        response, _, _ = handler.exchange(parse_request(b"GET /a.txt HTTP/1.1\r\nHost: o\r\n\r\n"))

        assert response.body == store.get("/a.txt") == b"same bytes"

    def test_oversized_gzip_relayed_not_stored(self, store, request_log):
        raw = gzip_response(b"\x00" * (1024 * 1024))
        handler = ConnectionHandler(
            store, FakeForwarder(raw), request_log, max_body_size=64 * 1024,
        )

        response, outcome, _ = handler.exchange(parse_request(b"GET /big.txt HTTP/1.1\r\nHost: o\r\n\r\n"))

        assert outcome is Outcome.FORWARDED
        assert response.headers.get("Content-Encoding") == "gzip"
        assert len(response.body) < 64 * 1024
        assert store.get("/big.txt") is None


class SpyStore(CacheStore):
    """Records every call; holds nothing."""

    def __init__(self):
        self.calls = []

    def has(self, key):
        self.calls.append(("has", key))
        return False

    def get(self, key):
        self.calls.append(("get", key))
        return None

    def put(self, key, content):
        self.calls.append(("put", key))

    def entry(self, key):
        self.calls.append(("entry", key))
        return None


class TestStoreIsolation:

    def test_non_cacheable_never_touches_store(self, request_log):
        store = SpyStore()
        handler = ConnectionHandler(store, FakeForwarder(build_response(b"ok")), request_log)

        handler.exchange(parse_request(b"GET http://o/b.html HTTP/1.1\r\n\r\n"))
        handler.exchange(parse_request(b"POST http://o/api HTTP/1.1\r\nContent-Length: 1\r\n\r\nx"))

        assert store.calls == []

    def test_post_to_txt_is_forwarded_not_cached(self, store, request_log):
        store.put("/a.txt", b"cached")
        forwarder = FakeForwarder(build_response(b"created", status="201 Created"))
        handler = ConnectionHandler(store, forwarder, request_log)

        response, outcome, _ = handler.exchange(
            parse_request(b"POST /a.txt HTTP/1.1\r\nHost: o\r\nContent-Length: 3\r\n\r\nnew")
        )

        assert outcome is Outcome.FORWARDED
        assert response.body == b"created"
        assert forwarder.calls[0].body == b"new"
        assert "X-Cache" not in response.headers
        assert store.get("/a.txt") == b"cached"

    def test_cacheable_miss_reads_then_writes(self, request_log):
        store = SpyStore()
        handler = ConnectionHandler(store, FakeForwarder(build_response(b"ok")), request_log)

        handler.exchange(parse_request(b"GET http://o/a.txt HTTP/1.1\r\n\r\n"))

        assert store.calls == [("get", "http://o/a.txt"), ("put", "http://o/a.txt")]
