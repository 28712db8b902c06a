"""
=============================================================================
CACHE STORE
=============================================================================

Persistent key → plaintext bytes storage shared by every connection
handler.

=============================================================================
ON-DISK LAYOUT
=============================================================================

One blob per key. The file name is the SHA-256 hex digest of the key, so
any target string (slashes, query strings, ports) maps to a safe,
fixed-length, deterministic name:

    cache_dir/
    ├── 2c26b46b68ffc68ff99b453c1d30413413422d706483bfa0f98a5e886266e7ae.blob
    ├── fcde2b2edba56bf408601fb721fe9b5c338d10ee429ea04fae5511b68fbf8fb9.blob
    └── ...

=============================================================================
CONCURRENT WRITERS
=============================================================================

Two handlers may fetch the same .txt at the same time. Each put() writes a
private temp file in the SAME directory and then renames it over the blob:

    Handler A                          Handler B
    ─────────                          ─────────
    write .tmp-a1b2  (full body)       write .tmp-c3d4  (full body)
    os.replace(.tmp-a1b2 → X.blob)
                                       os.replace(.tmp-c3d4 → X.blob)

os.replace is atomic on the same filesystem, so a reader sees either the
old blob, the new blob, or no blob. Never half of one. The last rename
wins, and both bodies are identical anyway.

No expiry and no size bound: entries live until removed by hand.

=============================================================================
"""

import os
import hashlib
import logging
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..errors import StorageError


logger = logging.getLogger(__name__)

BLOB_SUFFIX = ".blob"


@dataclass(frozen=True)
class CacheEntry:
    """A stored blob and when it was written (Unix timestamp)."""
    key: str
    content: bytes
    created_at: float


class CacheStore(ABC):
    """
    Interface every cache backend implements.

    Implementations must be safe to call from many worker threads at once.
    """

    @abstractmethod
    def has(self, key: str) -> bool:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Stored bytes for `key`, or None if nothing is stored."""

    @abstractmethod
    def put(self, key: str, content: bytes) -> None:
        """Store `content` under `key`, replacing any previous blob."""

    @abstractmethod
    def entry(self, key: str) -> Optional[CacheEntry]:
        pass

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)


class FileCacheStore(CacheStore):
    """
    Filesystem-backed store: one `<sha256(key)>.blob` file per key.

    Usage:
        store = FileCacheStore("./cache")
        store.put("/a.txt", b"hello")
        store.get("/a.txt")         # b"hello"
        store.get("/missing.txt")   # None

    Raises:
        StorageError: On any I/O failure other than "not found".
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        try:
            os.makedirs(self.root, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create cache directory {self.root}: {e}") from e

    def path_for(self, key: str) -> str:
        """Absolute blob path for a key."""
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self.root, digest + BLOB_SUFFIX)

    def has(self, key: str) -> bool:
        return os.path.isfile(self.path_for(key))

    def get(self, key: str) -> Optional[bytes]:
        path = self.path_for(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read cache blob for {key!r}: {e}") from e

    def entry(self, key: str) -> Optional[CacheEntry]:
        path = self.path_for(key)
        try:
            with open(path, "rb") as f:
                content = f.read()
                created_at = os.fstat(f.fileno()).st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read cache blob for {key!r}: {e}") from e

        return CacheEntry(key=key, content=content, created_at=created_at)

    def put(self, key: str, content: bytes) -> None:
        path = self.path_for(key)
        tmp_path = None

        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise StorageError(f"Cannot write cache blob for {key!r}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logger.debug(f"Stored {len(content)} bytes for {key!r} at {path}")
