"""Membership lifecycle.

States::

    PENDING_INVITE --accept invitation--> ACTIVE --disable--> DISABLED
                                            ^                    |
                                            +------enable--------+

PENDING_INVITE is only ever entered by creating an invitation and only left
by accepting one; both transitions live in InvitationService.

Every mutation commits first and invalidates the permission cache second.
"""

from math import ceil
from typing import Any, Dict, Optional, Sequence, Tuple
import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from realty_access.database.models import (
    Membership,
    MembershipStatus,
    Role,
    RoleScope,
    User,
    UserRole,
)
from realty_access.errors import InvalidState, NotFound
from realty_access.security.password import generate_password, hash_password, validate_password
from realty_access.services.audit_service import AuditService
from realty_access.services.permission_cache import PermissionCache
from realty_access.services.role_service import RoleService
from realty_access.services.session_service import SessionService

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100


class MembershipService:
    """Service for managing a user's standing inside a tenant"""

    def __init__(self, db: Session, cache: PermissionCache):
        self.db = db
        self.cache = cache

    def _get_membership(self, user_id: str, tenant_id: str) -> Membership:
        membership = self.db.query(Membership).filter(
            Membership.user_id == user_id,
            Membership.tenant_id == tenant_id,
        ).first()
        if not membership:
            raise NotFound("Membership not found", reason="membership_not_found")
        return membership

    def disable(self, user_id: str, tenant_id: str, actor_user_id: Optional[str] = None) -> Membership:
        """
        Disable a member.

        The user's sessions are revoked platform-wide, so they must sign in
        again; their other tenants then let them back in as usual.
        """
        membership = self._get_membership(user_id, tenant_id)
        if membership.status == MembershipStatus.DISABLED.value:
            raise InvalidState("Membership is already disabled", reason="membership_already_disabled")

        membership.status = MembershipStatus.DISABLED.value
        revoked = SessionService.revoke_all_for_user(self.db, user_id)
        AuditService.record(
            self.db,
            "MEMBER_DISABLED",
            "membership",
            membership.id,
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            payload={"user_id": user_id, "sessions_revoked": revoked},
        )
        self.db.commit()
        self.cache.invalidate(user_id)

        self.db.refresh(membership)
        logger.info("Member disabled", user_id=user_id, tenant_id=tenant_id, sessions_revoked=revoked)
        return membership

    def enable(self, user_id: str, tenant_id: str, actor_user_id: Optional[str] = None) -> Membership:
        """Re-activate a disabled member."""
        membership = self._get_membership(user_id, tenant_id)
        if membership.status == MembershipStatus.ACTIVE.value:
            raise InvalidState("Membership is already active", reason="membership_already_active")
        if membership.status == MembershipStatus.PENDING_INVITE.value:
            raise InvalidState(
                "Membership is awaiting invitation acceptance", reason="membership_pending_invite"
            )

        membership.status = MembershipStatus.ACTIVE.value
        AuditService.record(
            self.db,
            "MEMBER_ENABLED",
            "membership",
            membership.id,
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            payload={"user_id": user_id},
        )
        self.db.commit()
        self.cache.invalidate(user_id)

        self.db.refresh(membership)
        logger.info("Member enabled", user_id=user_id, tenant_id=tenant_id)
        return membership

    def update_roles(
        self,
        user_id: str,
        tenant_id: str,
        role_ids: Sequence[str],
        actor_user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Replace the member's tenant roles in this tenant.

        All role ids are checked before anything is written; one bad id
        leaves the existing assignments untouched.
        """
        self._get_membership(user_id, tenant_id)
        roles = RoleService(self.db, self.cache).require_tenant_roles(role_ids)

        try:
            self.db.query(UserRole).filter(
                UserRole.user_id == user_id,
                UserRole.tenant_id == tenant_id,
            ).delete(synchronize_session=False)
            for role in roles:
                self.db.add(UserRole(user_id=user_id, role_id=role.id, tenant_id=tenant_id))
            AuditService.record(
                self.db,
                "MEMBER_ROLES_UPDATED",
                "membership",
                user_id,
                actor_user_id=actor_user_id,
                tenant_id=tenant_id,
                payload={"role_ids": [role.id for role in roles]},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.cache.invalidate(user_id)

        logger.info("Member roles updated", user_id=user_id, tenant_id=tenant_id, roles=len(roles))
        return self.get_by_id(user_id, tenant_id)

    def get_by_id(self, user_id: str, tenant_id: str) -> Dict[str, Any]:
        """Membership merged with the user summary and this tenant's roles only."""
        membership = self._get_membership(user_id, tenant_id)
        return self._member_view(membership)

    def _member_view(self, membership: Membership) -> Dict[str, Any]:
        user = membership.user
        roles = self.db.query(Role).join(UserRole, UserRole.role_id == Role.id).filter(
            UserRole.user_id == membership.user_id,
            UserRole.tenant_id == membership.tenant_id,
            Role.scope == RoleScope.TENANT.value,
        ).order_by(Role.key).all()

        data = membership.to_dict()
        data["user"] = {
            "id": user.id,
            "email": user.email,
            "full_name": user.full_name,
            "is_active": user.is_active,
        }
        data["roles"] = [role.to_dict() for role in roles]
        return data

    def list_members(
        self,
        tenant_id: str,
        search: Optional[str] = None,
        status: Optional[str] = None,
        role_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """
        List a tenant's members.

        Args:
            tenant_id: Tenant to list
            search: Case-insensitive match on email or full name
            status: Optional membership status filter
            role_id: Only members holding this role in the tenant
            page: 1-based page number
            limit: Page size (capped at 100)

        Returns:
            Dict with items, total, page, limit and pages
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        query = self.db.query(Membership).join(User, User.id == Membership.user_id).filter(
            Membership.tenant_id == tenant_id
        )
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(User.email.ilike(pattern), User.full_name.ilike(pattern)))
        if status:
            query = query.filter(Membership.status == status)
        if role_id:
            query = query.filter(
                self.db.query(UserRole).filter(
                    UserRole.user_id == Membership.user_id,
                    UserRole.tenant_id == tenant_id,
                    UserRole.role_id == role_id,
                ).exists()
            )

        total = query.count()
        memberships = query.order_by(Membership.created_at.desc(), Membership.id).offset(
            (page - 1) * limit
        ).limit(limit).all()

        return {
            "items": [self._member_view(m) for m in memberships],
            "total": total,
            "page": page,
            "limit": limit,
            "pages": ceil(total / limit) if total else 0,
        }

    def reset_password(
        self,
        user_id: str,
        tenant_id: str,
        new_password: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> Tuple[User, str]:
        """
        Set a member's password and sign them out everywhere.

        Returns:
            Tuple of (user, new plaintext password) so the caller can send the
            notice after commit
        """
        membership = self._get_membership(user_id, tenant_id)
        password = new_password or generate_password()
        validate_password(password)

        user = membership.user
        user.password_hash = hash_password(password)
        revoked = SessionService.revoke_all_for_user(self.db, user_id)
        AuditService.record(
            self.db,
            "MEMBER_PASSWORD_RESET",
            "user",
            user_id,
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            payload={"sessions_revoked": revoked},
        )
        self.db.commit()
        self.db.refresh(user)

        logger.info("Member password reset", user_id=user_id, tenant_id=tenant_id)
        return user, password

    def revoke_sessions(self, user_id: str, tenant_id: str, actor_user_id: Optional[str] = None) -> int:
        """Force a member to sign in again."""
        self._get_membership(user_id, tenant_id)
        revoked = SessionService.revoke_all_for_user(self.db, user_id)
        AuditService.record(
            self.db,
            "MEMBER_SESSIONS_REVOKED",
            "user",
            user_id,
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            payload={"sessions_revoked": revoked},
        )
        self.db.commit()
        return revoked
