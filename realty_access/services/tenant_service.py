"""Tenant administration: registration, suspension and reactivation"""

import re
from typing import Any, Dict, Optional
import structlog
from sqlalchemy.orm import Session

from realty_access.database.models import (
    Membership,
    MembershipStatus,
    Tenant,
    TenantStatus,
    User,
    UserRole,
    utcnow,
)
from realty_access.errors import Conflict, InvalidState, NotFound
from realty_access.security.password import hash_password, validate_password
from realty_access.seed import TENANT_ADMIN
from realty_access.services.audit_service import AuditService
from realty_access.services.role_service import RoleService
from realty_access.services.session_service import SessionService

logger = structlog.get_logger()


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "tenant"


class TenantService:
    """Service for the tenant lifecycle"""

    @staticmethod
    def get_tenant(db: Session, tenant_id: str) -> Tenant:
        tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if not tenant:
            raise NotFound("Tenant not found", reason="tenant_not_found")
        return tenant

    @staticmethod
    def register(
        db: Session,
        role_service: RoleService,
        name: str,
        owner_email: str,
        owner_password: str,
        owner_full_name: Optional[str] = None,
        slug: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a tenant together with its first administrator.

        The owner gets an ACTIVE membership and the TENANT_ADMIN role.
        """
        owner_email = owner_email.lower().strip()
        slug = slug or slugify(name)
        validate_password(owner_password)

        if db.query(Tenant).filter(Tenant.slug == slug).first():
            raise Conflict("Tenant slug already taken", reason="duplicate_key")
        if db.query(User).filter(User.email == owner_email).first():
            raise Conflict("Email already registered", reason="email_taken")

        admin_role = role_service.get_role_by_key(TENANT_ADMIN)
        if not admin_role:
            raise NotFound(f"Role {TENANT_ADMIN} is not seeded", reason="role_not_found")

        tenant = Tenant(name=name, slug=slug, status=TenantStatus.ACTIVE.value)
        user = User(
            email=owner_email,
            full_name=owner_full_name,
            password_hash=hash_password(owner_password),
        )
        db.add_all([tenant, user])
        db.flush()

        now = utcnow()
        membership = Membership(
            user_id=user.id,
            tenant_id=tenant.id,
            status=MembershipStatus.ACTIVE.value,
            accepted_at=now,
        )
        db.add(membership)
        db.add(UserRole(user_id=user.id, role_id=admin_role.id, tenant_id=tenant.id))
        AuditService.record(
            db,
            "TENANT_REGISTERED",
            "tenant",
            tenant.id,
            actor_user_id=user.id,
            tenant_id=tenant.id,
            payload={"slug": slug},
        )
        db.commit()
        db.refresh(tenant)
        db.refresh(user)
        db.refresh(membership)

        logger.info("Tenant registered", tenant_id=tenant.id, slug=slug, owner_id=user.id)
        return {"tenant": tenant, "user": user, "membership": membership}

    @staticmethod
    def suspend(db: Session, tenant_id: str, actor_user_id: Optional[str] = None) -> Tenant:
        """Suspend a tenant and sign out every active member."""
        tenant = TenantService.get_tenant(db, tenant_id)
        if tenant.status == TenantStatus.SUSPENDED.value:
            raise InvalidState("Tenant is already suspended", reason="tenant_already_suspended")

        tenant.status = TenantStatus.SUSPENDED.value
        revoked = SessionService.revoke_all_for_tenant(db, tenant_id)
        AuditService.record(
            db,
            "TENANT_SUSPENDED",
            "tenant",
            tenant.id,
            actor_user_id=actor_user_id,
            tenant_id=tenant.id,
            payload={"sessions_revoked": revoked},
        )
        db.commit()
        db.refresh(tenant)

        logger.info("Tenant suspended", tenant_id=tenant.id, sessions_revoked=revoked)
        return tenant

    @staticmethod
    def activate(db: Session, tenant_id: str, actor_user_id: Optional[str] = None) -> Tenant:
        tenant = TenantService.get_tenant(db, tenant_id)
        if tenant.status == TenantStatus.ACTIVE.value:
            raise InvalidState("Tenant is already active", reason="tenant_already_active")

        tenant.status = TenantStatus.ACTIVE.value
        AuditService.record(
            db,
            "TENANT_ACTIVATED",
            "tenant",
            tenant.id,
            actor_user_id=actor_user_id,
            tenant_id=tenant.id,
        )
        db.commit()
        db.refresh(tenant)

        logger.info("Tenant activated", tenant_id=tenant.id)
        return tenant
