"""SQLAlchemy models"""

from datetime import datetime, timezone
from enum import Enum
import uuid

import sqlalchemy as sa
from sqlalchemy import Column, String, Boolean, Text, ForeignKey, TIMESTAMP, JSON, Table
from sqlalchemy.orm import relationship
from realty_access.database.database import Base


def generate_id():
    """Generate a unique ID"""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GlobalRole(str, Enum):
    USER = "USER"
    SUPER_ADMIN = "SUPER_ADMIN"


class TenantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class RoleScope(str, Enum):
    PLATFORM = "PLATFORM"
    TENANT = "TENANT"


class MembershipStatus(str, Enum):
    PENDING_INVITE = "PENDING_INVITE"
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


# Association table: the only place the role -> permission bundle is materialized.
# The composite primary key makes re-assigning a permission a no-op.
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """User model"""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_id)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String(200), nullable=True)
    password_hash = Column(String, nullable=True)  # Nullable for externally-authenticated users
    is_active = Column(Boolean, default=True, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    global_role = Column(String(20), default=GlobalRole.USER.value, nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    # Relationships
    user_roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")
    memberships = relationship(
        "Membership",
        back_populates="user",
        foreign_keys="Membership.user_id",
        cascade="all, delete-orphan",
    )
    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_super_admin(self) -> bool:
        return self.global_role == GlobalRole.SUPER_ADMIN.value

    def to_dict(self):
        """Convert user to dictionary (excluding credentials)"""
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_active": self.is_active,
            "email_verified": self.email_verified,
            "global_role": self.global_role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Tenant(Base):
    """Tenant model (agency isolation boundary)"""
    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    status = Column(String(20), default=TenantStatus.ACTIVE.value, nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    memberships = relationship("Membership", back_populates="tenant", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Role(Base):
    """
    Named bundle of permissions.

    A PLATFORM role is assigned without a tenant; a TENANT role is always
    assigned inside exactly one tenant.
    """
    __tablename__ = "roles"

    id = Column(String, primary_key=True, default=generate_id)
    key = Column(String(100), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    scope = Column(String(20), nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)

    # Relationships
    permissions = relationship("Permission", secondary=role_permissions, back_populates="roles")
    user_roles = relationship("UserRole", back_populates="role", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "scope": self.scope,
        }

    def to_dict_with_permissions(self):
        data = self.to_dict()
        data["permissions"] = [p.to_dict() for p in sorted(self.permissions, key=lambda p: p.key)]
        return data


class Permission(Base):
    """Atomic capability key, e.g. CRM_DEALS_VIEW"""
    __tablename__ = "permissions"

    id = Column(String, primary_key=True, default=generate_id)
    key = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    created_at = Column(TIMESTAMP, default=utcnow)

    roles = relationship("Role", secondary=role_permissions, back_populates="permissions")

    def to_dict(self):
        return {"id": self.id, "key": self.key, "description": self.description}


class UserRole(Base):
    """Role assignment; tenant_id is NULL for platform roles"""
    __tablename__ = "user_roles"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id = Column(String, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)

    user = relationship("User", back_populates="user_roles")
    role = relationship("Role", back_populates="user_roles")

    __table_args__ = (
        sa.UniqueConstraint("user_id", "role_id", "tenant_id", name="uq_user_role_tenant"),
        sa.Index("ix_user_roles_user_id", "user_id"),
        sa.Index("ix_user_roles_role_id", "role_id"),
    )


class Membership(Base):
    """A user's standing within one tenant"""
    __tablename__ = "memberships"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default=MembershipStatus.PENDING_INVITE.value, nullable=False)
    invited_at = Column(TIMESTAMP, nullable=True)
    invited_by = Column(String, ForeignKey("users.id"), nullable=True)
    accepted_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="memberships", foreign_keys=[user_id])
    tenant = relationship("Tenant", back_populates="memberships")

    __table_args__ = (
        sa.UniqueConstraint("user_id", "tenant_id", name="uq_membership_user_tenant"),
        sa.Index("ix_memberships_tenant_id", "tenant_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "status": self.status,
            "invited_at": self.invited_at.isoformat() if self.invited_at else None,
            "invited_by": self.invited_by,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Invitation(Base):
    """
    One-shot invitation that provisions a membership.

    Flow:
        1. Admin creates invitation (email + tenant roles)
        2. System emails invite link with the plaintext token
        3. Invitee opens the link and sets a password
        4. User (if new) and ACTIVE membership are created, roles assigned

    Only the SHA-256 of the bearer token is stored.
    """
    __tablename__ = "invitations"

    id = Column(String, primary_key=True, default=generate_id)
    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    email = Column(String, nullable=False)
    role_ids = Column(JSON, default=list, nullable=False)
    token_hash = Column(String, unique=True, nullable=False)
    invited_by_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default=InvitationStatus.PENDING.value, nullable=False)
    expires_at = Column(TIMESTAMP, nullable=False)
    accepted_at = Column(TIMESTAMP, nullable=True)
    accepted_by_user_id = Column(String, ForeignKey("users.id"), nullable=True)
    revoked_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)

    # Relationships
    tenant = relationship("Tenant")
    invited_by = relationship("User", foreign_keys=[invited_by_user_id])
    accepted_by = relationship("User", foreign_keys=[accepted_by_user_id])

    __table_args__ = (
        sa.Index("ix_invitations_tenant_id", "tenant_id"),
        sa.Index("ix_invitations_email", "email"),
        sa.Index("ix_invitations_status", "status"),
    )

    def to_dict(self):
        """Convert invitation to dictionary"""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "role_ids": list(self.role_ids or []),
            "status": self.status,
            "invited_by_user_id": self.invited_by_user_id,
            "invited_by_email": self.invited_by.email if self.invited_by else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "accepted_by_user_id": self.accepted_by_user_id,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utcnow()) > self.expires_at


class Session(Base):
    """Refresh-credential session; access tokens carry its id in the sid claim"""
    __tablename__ = "sessions"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String, unique=True, nullable=False)
    expires_at = Column(TIMESTAMP, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)

    # Relationships
    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        sa.Index("ix_sessions_user_id", "user_id"),
    )


class AuditLog(Base):
    """Administrative action trail"""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=generate_id)
    actor_user_id = Column(String, nullable=True)
    tenant_id = Column(String, nullable=True)
    action_key = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String, nullable=False)
    payload = Column(JSON, default=dict)
    created_at = Column(TIMESTAMP, default=utcnow)

    __table_args__ = (
        sa.Index("ix_audit_logs_tenant_id", "tenant_id"),
    )
