"""
Unit tests for the file cache store and the cacheability rule.
"""

import os
import threading
import pytest

from proxycache.cache import FileCacheStore
from proxycache.cache.policy import cache_key, is_cacheable
from proxycache.errors import StorageError
from proxycache.http.request import HTTPRequest


class TestFileCacheStore:
    """Tests for FileCacheStore."""

    def test_get_missing_returns_none(self, store):
        assert store.get("/missing.txt") is None
        assert not store.has("/missing.txt")
        assert "/missing.txt" not in store

    def test_put_then_get(self, store):
        store.put("/a.txt", b"hello")
        assert store.get("/a.txt") == b"hello"
        assert store.has("/a.txt")
        assert "/a.txt" in store

    def test_put_replaces(self, store):
        store.put("/a.txt", b"old")
        store.put("/a.txt", b"new")
        assert store.get("/a.txt") == b"new"

    def test_put_is_idempotent(self, store):
        store.put("/a.txt", b"same")
        store.put("/a.txt", b"same")
        assert store.get("/a.txt") == b"same"
        assert len([n for n in os.listdir(store.root) if n.endswith(".blob")]) == 1

    def test_empty_body_is_stored(self, store):
        store.put("/empty.txt", b"")
        assert store.get("/empty.txt") == b""

    def test_blob_name_is_sha256(self, store):
        path = store.path_for("/a.txt")
        assert os.path.dirname(path) == store.root
        name = os.path.basename(path)
        assert name.endswith(".blob")
        assert len(name) == 64 + len(".blob")

    def test_distinct_keys_distinct_blobs(self, store):
        store.put("/a.txt", b"A")
        store.put("http://h/a.txt", b"B")
        assert store.get("/a.txt") == b"A"
        assert store.get("http://h/a.txt") == b"B"

    def test_no_temp_files_left(self, store):
        store.put("/a.txt", b"hello")
        assert [n for n in os.listdir(store.root) if n.startswith(".tmp-")] == []

    def test_entry(self, store):
        assert store.entry("/a.txt") is None
        store.put("/a.txt", b"hello")
        entry = store.entry("/a.txt")
        assert entry.key == "/a.txt"
        assert entry.content == b"hello"
        assert entry.created_at > 0

    def test_survives_new_instance(self, tmp_path):
        FileCacheStore(str(tmp_path / "c")).put("/a.txt", b"persisted")
        assert FileCacheStore(str(tmp_path / "c")).get("/a.txt") == b"persisted"

    def test_concurrent_writers(self, store):
        body = b"x" * 100_000
        threads = [threading.Thread(target=store.put, args=("/big.txt", body)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get("/big.txt") == body

    def test_unusable_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError):
            FileCacheStore(str(blocker / "cache"))

    def test_unreadable_blob(self, store):
        os.makedirs(store.path_for("/dir.txt"))
        with pytest.raises(StorageError):
            store.get("/dir.txt")


class TestCachePolicy:
    """Which requests are cached and under which key."""

    @pytest.mark.parametrize("target,expected", [
        ("/a.txt", True),
        ("/notes/readme.txt?v=2", True),
        ("http://example.com/a.txt", True),
        ("/a.html", False),
        ("/a.txt.gz", False),
        ("/A.TXT", False),
        ("/", False),
    ])
    def test_is_cacheable(self, target, expected):
        assert is_cacheable(HTTPRequest(method="GET", target=target)) is expected

    @pytest.mark.parametrize("method,expected", [
        ("GET", True),
        ("HEAD", True),
        ("get", True),
        ("POST", False),
        ("PUT", False),
        ("DELETE", False),
    ])
    def test_only_get_and_head(self, method, expected):
        assert is_cacheable(HTTPRequest(method=method, target="/a.txt")) is expected

    def test_key_is_raw_target(self):
        assert cache_key(HTTPRequest(method="GET", target="/a.txt?v=2")) == "/a.txt?v=2"
        assert cache_key(HTTPRequest(method="GET", target="http://h/a.txt")) == "http://h/a.txt"
