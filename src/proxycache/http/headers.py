"""
=============================================================================
ORDERED HTTP HEADERS
=============================================================================

A proxy must hand headers on in the order it received them. A plain dict
with lowercase keys (fine for a server that only READS headers) loses two
things a proxy needs:

    1. ORIGINAL CASING  - "Content-Type" must not turn into "content-type"
                          on the wire
    2. REPEATED FIELDS  - two "Set-Cookie" lines must stay two lines,
                          they cannot be comma-joined

So headers are kept as an ordered list of (name, value) pairs, and only
LOOKUPS are case-insensitive:

    ┌──────────────────────────────────────────────────────────────────┐
    │  _pairs = [("Host", "example.com"),                              │
    │            ("Content-Encoding", "gzip"),                         │
    │            ("Set-Cookie", "a=1"),                                │
    │            ("Set-Cookie", "b=2")]                                │
    │                                                                   │
    │  headers.get("content-encoding")   → "gzip"                      │
    │  headers.get_all("set-cookie")     → ["a=1", "b=2"]              │
    │  headers.set("Content-Length", "5")  → replaces in place or      │
    │                                        appends at the end        │
    │  headers.remove("content-encoding")  → drops every occurrence    │
    └──────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from typing import Iterable, Iterator, List, Optional, Tuple


class Headers:
    """
    Ordered, case-insensitive collection of HTTP header pairs.

    Usage:
        headers = Headers([("Host", "example.com")])
        headers.add("Accept", "text/plain")
        headers.get("host")              # "example.com"
        "ACCEPT" in headers              # True
        list(headers)                    # [("Host", ...), ("Accept", ...)]
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[str, str]]] = None):
        self._pairs: List[Tuple[str, str]] = list(pairs or [])

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first value for a header (case-insensitive)."""
        lowered = name.lower()
        for key, value in self._pairs:
            if key.lower() == lowered:
                return value
        return default

    def get_all(self, name: str) -> List[str]:
        """Get every value for a header, in order."""
        lowered = name.lower()
        return [value for key, value in self._pairs if key.lower() == lowered]

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        lowered = name.lower()
        return any(key.lower() == lowered for key, _ in self._pairs)

    # =========================================================================
    # MUTATION
    # =========================================================================

    def add(self, name: str, value: str) -> "Headers":
        """Append a header pair, keeping any existing ones."""
        self._pairs.append((name, value))
        return self

    def set(self, name: str, value: str) -> "Headers":
        """
        Set a header to a single value.

        The first existing occurrence is replaced IN PLACE so the header
        keeps its position on the wire. Later duplicates are dropped.
        If the header is absent, it is appended.
        """
        lowered = name.lower()
        result: List[Tuple[str, str]] = []
        replaced = False

        for key, old_value in self._pairs:
            if key.lower() != lowered:
                result.append((key, old_value))
            elif not replaced:
                result.append((key, value))
                replaced = True

        if not replaced:
            result.append((name, value))

        self._pairs = result
        return self

    def remove(self, name: str) -> "Headers":
        """Remove every occurrence of a header (no error if absent)."""
        lowered = name.lower()
        self._pairs = [(k, v) for k, v in self._pairs if k.lower() != lowered]
        return self

    def copy(self) -> "Headers":
        return Headers(self._pairs)

    # =========================================================================
    # ITERATION AND SERIALIZATION
    # =========================================================================

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self._pairs))

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self._pairs == other._pairs
        return NotImplemented

    def __repr__(self) -> str:
        return f"Headers({self._pairs!r})"

    def to_lines(self) -> List[str]:
        """Render as "Name: value" lines in order."""
        return [f"{name}: {value}" for name, value in self._pairs]
