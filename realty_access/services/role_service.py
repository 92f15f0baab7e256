"""
Role Service.

Manages the role and permission catalogue and platform-scope role
assignments. Every mutation of a role's bundle fans out to the permission
cache once the change is committed.
"""

from typing import Iterable, List, Optional, Sequence
import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from realty_access.database.models import (
    Permission,
    Role,
    RoleScope,
    User,
    UserRole,
    role_permissions,
)
from realty_access.errors import Conflict, InvalidState, NotFound
from realty_access.services.audit_service import AuditService
from realty_access.services.permission_cache import PermissionCache

logger = structlog.get_logger()


class RoleService:
    """
    Service for managing roles, permissions and platform role grants.
    """

    def __init__(self, db: Session, cache: PermissionCache):
        self.db = db
        self.cache = cache

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def list_roles(self, scope: Optional[str] = None) -> List[Role]:
        query = self.db.query(Role)
        if scope:
            query = query.filter(Role.scope == scope)
        return query.order_by(Role.key).all()

    def get_role(self, role_id: str) -> Role:
        role = self.db.query(Role).filter(Role.id == role_id).first()
        if not role:
            raise NotFound("Role not found", reason="role_not_found")
        return role

    def get_role_by_key(self, key: str) -> Optional[Role]:
        return self.db.query(Role).filter(Role.key == key).first()

    def create_role(
        self,
        key: str,
        name: str,
        scope: str,
        description: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> Role:
        """Create an empty role; permissions are attached separately."""
        if scope not in (RoleScope.PLATFORM.value, RoleScope.TENANT.value):
            raise InvalidState(f"Unknown role scope: {scope}", reason="invalid_role_scope")
        if self.get_role_by_key(key):
            raise Conflict("Role key already exists", reason="duplicate_key")

        role = Role(key=key, name=name, scope=scope, description=description)
        self.db.add(role)
        self.db.flush()
        AuditService.record(
            self.db,
            "ROLE_CREATED",
            "role",
            role.id,
            actor_user_id=actor_user_id,
            payload={"key": key, "scope": scope},
        )
        self.db.commit()
        self.db.refresh(role)
        logger.info("Role created", role_id=role.id, key=key, scope=scope)
        return role

    def list_permissions(self) -> List[Permission]:
        return self.db.query(Permission).order_by(Permission.key).all()

    def create_permission(
        self,
        key: str,
        description: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> Permission:
        """
        Add a permission key to the universe.

        Super-admins resolve to every key, so their cached entries are dropped.
        """
        if self.db.query(Permission).filter(Permission.key == key).first():
            raise Conflict("Permission key already exists", reason="duplicate_key")

        permission = Permission(key=key, description=description)
        self.db.add(permission)
        self.db.flush()
        AuditService.record(
            self.db,
            "PERMISSION_CREATED",
            "permission",
            permission.id,
            actor_user_id=actor_user_id,
            payload={"key": key},
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("Permission key already exists", reason="duplicate_key")
        self.db.refresh(permission)

        self.cache.invalidate_universe()
        logger.info("Permission created", permission_id=permission.id, key=key)
        return permission

    # ------------------------------------------------------------------
    # Role bundles
    # ------------------------------------------------------------------

    def set_role_permissions(
        self,
        role_id: str,
        permission_ids: Sequence[str],
        actor_user_id: Optional[str] = None,
    ) -> Role:
        """
        Replace a role's permission bundle in one transaction.

        Unknown permission ids reject the whole request.
        """
        role = self.get_role(role_id)
        wanted = set(permission_ids)
        found = set(
            self.db.execute(select(Permission.id).where(Permission.id.in_(wanted))).scalars().all()
        ) if wanted else set()
        missing = wanted - found
        if missing:
            raise NotFound(
                f"Permissions not found: {', '.join(sorted(missing))}",
                reason="permission_not_found",
            )

        try:
            self.db.execute(delete(role_permissions).where(role_permissions.c.role_id == role.id))
            if wanted:
                self.db.execute(
                    role_permissions.insert(),
                    [{"role_id": role.id, "permission_id": pid} for pid in sorted(wanted)],
                )
            AuditService.record(
                self.db,
                "ROLE_PERMISSIONS_UPDATED",
                "role",
                role.id,
                actor_user_id=actor_user_id,
                payload={"permission_ids": sorted(wanted)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.invalidate_role(role.id)
        self.db.refresh(role)
        logger.info("Role permissions replaced", role_id=role.id, permissions=len(wanted))
        return role

    def add_permission_to_role(
        self,
        role_id: str,
        permission_id: str,
        actor_user_id: Optional[str] = None,
    ) -> bool:
        """
        Attach one permission to a role.

        Returns False if the role already carried it (no-op).
        """
        role = self.get_role(role_id)
        permission = self.db.query(Permission).filter(Permission.id == permission_id).first()
        if not permission:
            raise NotFound("Permission not found", reason="permission_not_found")

        exists = self.db.execute(
            select(role_permissions.c.role_id).where(
                role_permissions.c.role_id == role.id,
                role_permissions.c.permission_id == permission.id,
            )
        ).first()
        if exists:
            return False

        self.db.execute(
            role_permissions.insert().values(role_id=role.id, permission_id=permission.id)
        )
        AuditService.record(
            self.db,
            "ROLE_PERMISSION_ADDED",
            "role",
            role.id,
            actor_user_id=actor_user_id,
            payload={"permission_id": permission.id},
        )
        self.db.commit()
        self.invalidate_role(role.id)
        return True

    def invalidate_role(self, role_id: str) -> None:
        """Drop cached permissions for everything computed from a role."""
        self.cache.invalidate_by_role(role_id)
        holders = self.db.execute(
            select(UserRole.user_id).where(UserRole.role_id == role_id).distinct()
        ).scalars().all()
        for user_id in holders:
            self.cache.invalidate(user_id)
        logger.info("Role holders invalidated", role_id=role_id, users=len(holders))

    # ------------------------------------------------------------------
    # Assignment validation
    # ------------------------------------------------------------------

    def require_tenant_roles(self, role_ids: Iterable[str]) -> List[Role]:
        """
        Load roles for a tenant assignment.

        Every id must exist and be TENANT scoped; otherwise nothing is
        returned and the caller must not change anything.
        """
        wanted = list(dict.fromkeys(role_ids))
        if not wanted:
            return []
        roles = self.db.query(Role).filter(Role.id.in_(wanted)).all()
        by_id = {role.id: role for role in roles}
        missing = [role_id for role_id in wanted if role_id not in by_id]
        if missing:
            raise NotFound(f"Roles not found: {', '.join(missing)}", reason="role_not_found")
        platform = [role.key for role in roles if role.scope != RoleScope.TENANT.value]
        if platform:
            raise InvalidState(
                f"Roles are not tenant scoped: {', '.join(platform)}",
                reason="role_scope_mismatch",
            )
        return [by_id[role_id] for role_id in wanted]

    # ------------------------------------------------------------------
    # Platform grants
    # ------------------------------------------------------------------

    def grant_platform_role(
        self,
        user_id: str,
        role_id: str,
        actor_user_id: Optional[str] = None,
    ) -> UserRole:
        """Assign a PLATFORM role; the assignment never carries a tenant."""
        role = self.get_role(role_id)
        if role.scope != RoleScope.PLATFORM.value:
            raise InvalidState("Role is not platform scoped", reason="role_scope_mismatch")
        if not self.db.query(User).filter(User.id == user_id).first():
            raise NotFound("User not found", reason="user_not_found")

        existing = self.db.query(UserRole).filter(
            UserRole.user_id == user_id,
            UserRole.role_id == role.id,
            UserRole.tenant_id.is_(None),
        ).first()
        if existing:
            return existing

        assignment = UserRole(user_id=user_id, role_id=role.id, tenant_id=None)
        self.db.add(assignment)
        AuditService.record(
            self.db,
            "PLATFORM_ROLE_GRANTED",
            "user",
            user_id,
            actor_user_id=actor_user_id,
            payload={"role_id": role.id},
        )
        self.db.commit()
        self.db.refresh(assignment)
        self.cache.invalidate(user_id)
        logger.info("Platform role granted", user_id=user_id, role_id=role.id)
        return assignment

    def revoke_platform_role(
        self,
        user_id: str,
        role_id: str,
        actor_user_id: Optional[str] = None,
    ) -> bool:
        deleted = self.db.query(UserRole).filter(
            UserRole.user_id == user_id,
            UserRole.role_id == role_id,
            UserRole.tenant_id.is_(None),
        ).delete(synchronize_session=False)
        if not deleted:
            return False
        AuditService.record(
            self.db,
            "PLATFORM_ROLE_REVOKED",
            "user",
            user_id,
            actor_user_id=actor_user_id,
            payload={"role_id": role_id},
        )
        self.db.commit()
        self.cache.invalidate(user_id)
        logger.info("Platform role revoked", user_id=user_id, role_id=role_id)
        return True
