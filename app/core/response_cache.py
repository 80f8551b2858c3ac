"""
Short-lived response cache for high fan-out read endpoints.

Entries are keyed by the full resolved parameter tuple and expire on TTL;
nothing invalidates them explicitly.
"""

import threading
from typing import Any, Hashable, Optional

from cachetools import TTLCache

from app.core.config import settings

_response_cache: TTLCache = TTLCache(maxsize=settings.RESPONSE_CACHE_SIZE, ttl=settings.RESPONSE_CACHE_TTL)
_response_cache_lock = threading.Lock()


def get_cached(key: Hashable) -> Optional[Any]:
    with _response_cache_lock:
        return _response_cache.get(key)


def set_cached(key: Hashable, value: Any) -> None:
    with _response_cache_lock:
        _response_cache[key] = value


def clear_cache() -> None:
    with _response_cache_lock:
        _response_cache.clear()
