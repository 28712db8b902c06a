"""
Which requests take part in caching, and under which key.

The predicate is injected into the ConnectionHandler, so a deployment can
swap in its own rule without touching the handler:

    handler = ConnectionHandler(store, forwarder, access_log,
                                is_cacheable=lambda req: req.path.endswith(".md"))
"""

from typing import Callable

from ..http.request import HTTPRequest


CacheablePredicate = Callable[[HTTPRequest], bool]

CACHEABLE_SUFFIX = ".txt"

# Methods a cached body can answer
CACHEABLE_METHODS = ("GET", "HEAD")


def is_cacheable(request: HTTPRequest) -> bool:
    """
    Default rule: a GET or HEAD whose target path ends in ".txt".

    The query string is ignored ("/a.txt?v=2" is cacheable, "/a.txt.gz"
    is not). Matching is case-sensitive, like the path itself.
    """
    return (
        request.method.upper() in CACHEABLE_METHODS
        and request.path.endswith(CACHEABLE_SUFFIX)
    )


def cache_key(request: HTTPRequest) -> str:
    """
    Cache key for a request: the full target exactly as the client sent it.

    "/a.txt" and "http://host/a.txt" are therefore different keys.
    """
    return request.target
