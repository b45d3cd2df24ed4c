from typing import Any, Optional

from cachetools import TTLCache


class GradingCache:
    """
    Capacity-bounded TTL cache for grading lookups.

    Created once by the application (see main.py) and handed to the services
    that need it, so tests can use a fresh instance.
    """

    def __init__(self, maxsize: int = 1024, ttl: float = 300):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)

    @staticmethod
    def generate_key(prefix: str, *args: Any) -> str:
        parts = [str(a) for a in args if a is not None]
        return "_".join([prefix, *parts])

    def get(self, key: str) -> Optional[Any]:
        return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def __len__(self) -> int:
        return len(self._cache)
