"""Permission cache for the resolver.

Cache Strategy:
- Key: (user_id, scope) where scope is PlatformScope() or TenantScope(tenant_id)
- Value: immutable CachedPermissions (permission keys, contributing role ids, expiry)
- TTL: PERMISSION_CACHE_TTL_SECONDS (5 minutes by default)
- Storage: process memory; each process is bounded by the same TTL

Entries remember which roles produced them, so a role-bundle change can drop
every dependent entry without re-querying role assignments.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import threading
from typing import Callable, Dict, FrozenSet, Optional, Set, Tuple, Union
import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class PlatformScope:
    """Resolve without a tenant: only platform role assignments count."""


@dataclass(frozen=True)
class TenantScope:
    """Resolve inside one tenant: only that tenant's role assignments count."""

    tenant_id: str


Scope = Union[PlatformScope, TenantScope]


def scope_for(tenant_id: Optional[str]) -> Scope:
    """Build the scope key for an optional tenant id"""
    return TenantScope(tenant_id) if tenant_id else PlatformScope()


@dataclass(frozen=True)
class CachedPermissions:
    """A fully-built cache entry; never mutated after construction."""

    permissions: FrozenSet[str]
    role_ids: FrozenSet[str]
    expires_at: datetime
    universe: bool = False

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


CacheKey = Tuple[str, Scope]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PermissionCache(ABC):
    """Abstract interface for permission cache backends.

    Implementations must hand out whole entries or nothing, and must drop
    entries synchronously when asked to invalidate.

    Every invalidation bumps a generation counter. A caller reads
    ``generation()`` before computing from the database and passes it to
    ``set``; the write is discarded if an invalidation happened meanwhile,
    so a slow reader cannot re-insert pre-mutation permissions.
    """

    def __init__(self, ttl_seconds: int):
        self.ttl = timedelta(seconds=ttl_seconds)

    def now(self) -> datetime:
        return _now()

    def build_entry(
        self,
        permissions: FrozenSet[str],
        role_ids: FrozenSet[str],
        universe: bool = False,
    ) -> CachedPermissions:
        return CachedPermissions(
            permissions=frozenset(permissions),
            role_ids=frozenset(role_ids),
            expires_at=self.now() + self.ttl,
            universe=universe,
        )

    @abstractmethod
    def generation(self) -> int:
        """Current invalidation generation."""

    @abstractmethod
    def get(self, user_id: str, scope: Scope) -> Optional[CachedPermissions]:
        """Return a fresh entry, or None on miss or expiry."""

    @abstractmethod
    def set(
        self,
        user_id: str,
        scope: Scope,
        entry: CachedPermissions,
        generation: Optional[int] = None,
    ) -> bool:
        """Store an entry. Returns False if the write was discarded as stale."""

    @abstractmethod
    def invalidate(self, user_id: str) -> int:
        """Drop every scope cached for a user. Returns entries dropped."""

    @abstractmethod
    def invalidate_by_role(self, role_id: str) -> int:
        """Drop every entry computed from a role. Returns entries dropped."""

    @abstractmethod
    def invalidate_universe(self) -> int:
        """Drop every super-admin entry (the permission universe changed)."""

    @abstractmethod
    def clear(self) -> None:
        """Drop everything."""


class InMemoryPermissionCache(PermissionCache):
    """Single-process permission cache.

    Reads and writes go through one lock; entries are immutable so a reader
    sees either a complete entry or nothing.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], datetime] = _now):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: Dict[CacheKey, CachedPermissions] = {}
        # user_id -> every scope that user has been cached under
        self._scopes_by_user: Dict[str, Set[Scope]] = {}
        self._generation = 0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, user_id: str, scope: Scope) -> Optional[CachedPermissions]:
        with self._lock:
            entry = self._entries.get((user_id, scope))
            if entry is None:
                return None
            if not entry.is_fresh(self._clock()):
                self._drop((user_id, scope))
                return None
            return entry

    def set(self, user_id, scope, entry, generation=None) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[(user_id, scope)] = entry
            self._scopes_by_user.setdefault(user_id, set()).add(scope)
            return True

    def invalidate(self, user_id: str) -> int:
        with self._lock:
            self._generation += 1
            scopes = self._scopes_by_user.pop(user_id, set())
            dropped = 0
            for scope in scopes:
                if self._entries.pop((user_id, scope), None) is not None:
                    dropped += 1
        logger.debug("Permission cache invalidated", user_id=user_id, entries=dropped)
        return dropped

    def invalidate_by_role(self, role_id: str) -> int:
        with self._lock:
            self._generation += 1
            keys = [key for key, entry in self._entries.items() if role_id in entry.role_ids]
            for key in keys:
                self._drop(key)
        logger.debug("Permission cache fan-out invalidation", role_id=role_id, entries=len(keys))
        return len(keys)

    def invalidate_universe(self) -> int:
        with self._lock:
            self._generation += 1
            keys = [key for key, entry in self._entries.items() if entry.universe]
            for key in keys:
                self._drop(key)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()
            self._scopes_by_user.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _drop(self, key: CacheKey) -> None:
        # Caller holds the lock
        self._entries.pop(key, None)
        user_id, scope = key
        scopes = self._scopes_by_user.get(user_id)
        if scopes is not None:
            scopes.discard(scope)
            if not scopes:
                del self._scopes_by_user[user_id]
