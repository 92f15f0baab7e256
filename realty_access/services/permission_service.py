"""Permission resolver.

Computes the effective permission keys for a (user, optional tenant) pair
from the role graph, with a cache-first lookup. Membership queries
(has_permission / has_any_permission / has_all_permissions) are pure
functions over ``resolve``.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from realty_access.database.models import (
    GlobalRole,
    Permission,
    Role,
    RoleScope,
    User,
    UserRole,
    role_permissions,
)
from realty_access.monitoring.metrics import PERMISSION_CACHE_LOOKUPS
from realty_access.services.permission_cache import (
    PermissionCache,
    PlatformScope,
    Scope,
    TenantScope,
    scope_for,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class Assignment:
    """One role assignment row, flattened for scope matching."""

    role_id: str
    role_scope: str
    tenant_id: Optional[str]


def assignment_applies(assignment: Assignment, scope: Scope) -> bool:
    """
    Scope-matching rule.

    Platform context: only PLATFORM roles assigned without a tenant.
    Tenant context: only TENANT roles assigned in exactly that tenant.
    """
    if isinstance(scope, TenantScope):
        return (
            assignment.role_scope == RoleScope.TENANT.value
            and assignment.tenant_id == scope.tenant_id
        )
    if isinstance(scope, PlatformScope):
        return assignment.role_scope == RoleScope.PLATFORM.value and assignment.tenant_id is None
    raise TypeError(f"Unknown scope: {scope!r}")


class PermissionService:
    """Permission resolution service backed by the role graph and a cache"""

    def __init__(self, db: Session, cache: PermissionCache):
        self.db = db
        self.cache = cache

    def resolve(self, user_id: str, tenant_id: Optional[str] = None) -> FrozenSet[str]:
        """
        Effective permission keys for a user, optionally inside a tenant.

        An unknown user resolves to an empty set.
        """
        scope = scope_for(tenant_id)

        try:
            cached = self.cache.get(user_id, scope)
        except Exception as e:
            logger.warning("Permission cache get failed", user_id=user_id, error=str(e))
            PERMISSION_CACHE_LOOKUPS.labels(result="error").inc()
            cached = None
        else:
            PERMISSION_CACHE_LOOKUPS.labels(result="hit" if cached else "miss").inc()

        if cached is not None:
            return cached.permissions

        try:
            generation = self.cache.generation()
        except Exception as e:
            logger.warning("Permission cache generation failed", user_id=user_id, error=str(e))
            generation = None

        permissions, role_ids, universe = self._compute(user_id, scope)

        # An unreadable cache cannot be trusted with a write either
        if generation is not None:
            try:
                entry = self.cache.build_entry(permissions, role_ids, universe=universe)
                self.cache.set(user_id, scope, entry, generation=generation)
            except Exception as e:
                logger.warning("Permission cache set failed", user_id=user_id, error=str(e))

        return permissions

    def has_permission(self, user_id: str, permission_key: str, tenant_id: Optional[str] = None) -> bool:
        return permission_key in self.resolve(user_id, tenant_id)

    def has_any_permission(
        self,
        user_id: str,
        permission_keys: Iterable[str],
        tenant_id: Optional[str] = None,
    ) -> bool:
        permissions = self.resolve(user_id, tenant_id)
        return any(key in permissions for key in permission_keys)

    def has_all_permissions(
        self,
        user_id: str,
        permission_keys: Iterable[str],
        tenant_id: Optional[str] = None,
    ) -> bool:
        permissions = self.resolve(user_id, tenant_id)
        return all(key in permissions for key in permission_keys)

    def missing_permissions(
        self,
        user_id: str,
        permission_keys: Iterable[str],
        tenant_id: Optional[str] = None,
    ) -> List[str]:
        permissions = self.resolve(user_id, tenant_id)
        return [key for key in permission_keys if key not in permissions]

    def _compute(self, user_id: str, scope: Scope) -> Tuple[FrozenSet[str], FrozenSet[str], bool]:
        """Recompute from the source of truth: (permission keys, role ids used, universe flag)"""
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            return frozenset(), frozenset(), False

        # Super-admin bypass happens before any scope filtering
        if user.global_role == GlobalRole.SUPER_ADMIN.value:
            keys = self.db.execute(select(Permission.key)).scalars().all()
            return frozenset(keys), frozenset(), True

        rows = self.db.execute(
            select(UserRole.role_id, Role.scope, UserRole.tenant_id)
            .join(Role, Role.id == UserRole.role_id)
            .where(UserRole.user_id == user_id)
        ).all()
        role_ids = frozenset(
            row.role_id
            for row in rows
            if assignment_applies(Assignment(row.role_id, row.scope, row.tenant_id), scope)
        )
        if not role_ids:
            return frozenset(), frozenset(), False

        keys = self.db.execute(
            select(Permission.key)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .where(role_permissions.c.role_id.in_(role_ids))
        ).scalars().all()
        return frozenset(keys), role_ids, False
