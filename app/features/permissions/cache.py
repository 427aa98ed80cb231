"""
Short-lived cache of resolved permission contexts.

Keyed by identity (organization, user, role). Entries expire after a short
TTL and are dropped for a whole organization whenever one of its overrides
is written, so a cached context never outlives an admin change.
"""
import time
from collections import OrderedDict
from typing import Callable, Generic, Optional, Tuple, TypeVar

from app.features.permissions.schemas import IdentityContext


V = TypeVar("V")
CacheKey = Tuple[str, str, int]


def identity_key(identity: IdentityContext) -> CacheKey:
    return (identity.organization_id, identity.user_id, int(identity.role))


class PermissionContextCache(Generic[V]):
    """TTL + LRU cache. Single event loop only; no locking."""

    def __init__(
        self,
        ttl_seconds: float = 10.0,
        maxsize: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl = ttl_seconds
        self.maxsize = maxsize
        self._clock = clock
        self._data: OrderedDict[CacheKey, Tuple[float, V]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def get(self, identity: IdentityContext) -> Optional[V]:
        key = identity_key(identity)
        item = self._data.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at > self.ttl:
            self._data.pop(key, None)
            return None
        # LRU touch
        self._data.move_to_end(key)
        return value

    def put(self, identity: IdentityContext, value: V) -> None:
        key = identity_key(identity)
        self._data[key] = (self._clock(), value)
        self._data.move_to_end(key)
        while len(self._data) > self.maxsize:
            self._data.popitem(last=False)

    def invalidate_organization(self, organization_id: str) -> int:
        """Drop every entry of an organization. Returns the number removed."""
        stale = [key for key in self._data if key[0] == organization_id]
        for key in stale:
            del self._data[key]
        return len(stale)

    def clear(self) -> None:
        self._data.clear()
