"""
=============================================================================
PROXYCACHE - Caching Forward Proxy for Plain-Text Resources
=============================================================================

A forwarding HTTP/1.x proxy built on raw sockets. Requests for ".txt"
resources are cached on disk after their first fetch; gzip-encoded origin
responses are decoded first, so the cache always holds plaintext that can
be served as-is.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    proxycache/
    ├── __main__.py          # CLI (python -m proxycache)
    ├── server.py            # ProxyServer: wiring and lifecycle
    ├── config.py            # ProxyConfig dataclass
    ├── handler.py           # ConnectionHandler: one exchange per connection
    ├── forwarder.py         # OriginForwarder: talk to the origin server
    ├── access_log.py        # RequestLogger / LogRecord
    ├── errors.py            # Exception taxonomy
    ├── core/                # Listener, worker pool, client connection
    ├── http/                # Message framing, parsing, serialization, gzip
    └── cache/               # FileCacheStore and the cacheability rule

=============================================================================
QUICK START
=============================================================================

    from proxycache import ProxyServer, ProxyConfig

    server = ProxyServer(ProxyConfig(port=3128, cache_dir="./cache"))
    server.run()

    $ curl -x http://127.0.0.1:3128 http://example.com/readme.txt   # MISS
    $ curl -x http://127.0.0.1:3128 http://example.com/readme.txt   # HIT

=============================================================================
"""

__version__ = "1.0.0"

from .config import ProxyConfig
from .server import ProxyServer

__all__ = ["ProxyServer", "ProxyConfig", "__version__"]
