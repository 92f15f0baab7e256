"""Invitation service for onboarding members into a tenant.

Lifecycle::

    PENDING --accept--> ACCEPTED
    PENDING --revoke--> REVOKED
    PENDING --past expires_at--> EXPIRED   (written lazily on next touch)

The bearer token is handed out exactly once; only its SHA-256 is stored.
Email delivery is left to the caller so it can run after commit.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from realty_access.config import settings
from realty_access.database.models import (
    Invitation,
    InvitationStatus,
    Membership,
    MembershipStatus,
    Role,
    RoleScope,
    Tenant,
    TenantStatus,
    User,
    UserRole,
    utcnow,
)
from realty_access.errors import Conflict, InvalidState, NotFound
from realty_access.security.password import hash_password, validate_password
from realty_access.security.tokens import generate_token, hash_token
from realty_access.services.audit_service import AuditService
from realty_access.services.permission_cache import PermissionCache
from realty_access.services.role_service import RoleService

logger = structlog.get_logger()

_STATUS_ERRORS = {
    InvitationStatus.ACCEPTED.value: ("Invitation has already been used", "invitation_already_accepted"),
    InvitationStatus.REVOKED.value: ("Invitation has been revoked", "invitation_revoked"),
    InvitationStatus.EXPIRED.value: ("Invitation has expired", "invitation_expired"),
}


class InvitationService:
    """Service for managing tenant invitations"""

    def __init__(self, db: Session, cache: PermissionCache):
        self.db = db
        self.cache = cache

    @staticmethod
    def normalize_email(email: str) -> str:
        return email.lower().strip()

    def _expiry(self):
        return utcnow() + timedelta(days=settings.INVITATION_EXPIRY_DAYS)

    def _ensure_usable(self, invitation: Invitation) -> None:
        """
        Raise the specific error for a non-usable invitation.

        A PENDING invitation past its expiry is flipped to EXPIRED and the
        flip is committed before raising, so it survives the failure.
        """
        if invitation.status in _STATUS_ERRORS:
            message, reason = _STATUS_ERRORS[invitation.status]
            raise InvalidState(message, reason=reason)
        if invitation.is_expired():
            invitation.status = InvitationStatus.EXPIRED.value
            self.db.commit()
            logger.info("Invitation expired", invitation_id=invitation.id)
            raise InvalidState("Invitation has expired", reason="invitation_expired")

    def _get_in_tenant(self, invitation_id: str, tenant_id: Optional[str]) -> Invitation:
        query = self.db.query(Invitation).filter(Invitation.id == invitation_id)
        if tenant_id:
            query = query.filter(Invitation.tenant_id == tenant_id)
        invitation = query.first()
        if not invitation:
            raise NotFound("Invitation not found", reason="invitation_not_found")
        return invitation

    def create(
        self,
        tenant_id: str,
        email: str,
        role_ids: Sequence[str],
        invited_by_user_id: str,
    ) -> Tuple[Invitation, str]:
        """
        Invite an email address into a tenant.

        Args:
            tenant_id: Tenant to invite into
            email: Invitee email
            role_ids: Tenant roles assigned on acceptance
            invited_by_user_id: Acting admin

        Returns:
            Tuple of (Invitation, raw_token). The raw token is not stored anywhere.
        """
        email = self.normalize_email(email)

        tenant = self.db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if not tenant:
            raise NotFound("Tenant not found", reason="tenant_not_found")
        if tenant.status != TenantStatus.ACTIVE.value:
            raise InvalidState("Tenant is not active", reason="tenant_inactive")

        roles = RoleService(self.db, self.cache).require_tenant_roles(role_ids)

        existing_user = self.db.query(User).filter(User.email == email).first()
        membership = None
        if existing_user:
            membership = self.db.query(Membership).filter(
                Membership.user_id == existing_user.id,
                Membership.tenant_id == tenant_id,
            ).first()
            if membership and membership.status == MembershipStatus.ACTIVE.value:
                raise Conflict("User is already a member of this tenant", reason="already_member")
            if membership and membership.status == MembershipStatus.DISABLED.value:
                raise InvalidState(
                    "Member is disabled; enable the membership instead", reason="membership_disabled"
                )

        pending = self.db.query(Invitation).filter(
            Invitation.tenant_id == tenant_id,
            Invitation.email == email,
            Invitation.status == InvitationStatus.PENDING.value,
        ).all()
        for existing in pending:
            if not existing.is_expired():
                raise Conflict(
                    "An invitation has already been sent to this email", reason="invitation_pending"
                )
            existing.status = InvitationStatus.EXPIRED.value

        raw_token = generate_token()
        invitation = Invitation(
            tenant_id=tenant_id,
            email=email,
            role_ids=[role.id for role in roles],
            token_hash=hash_token(raw_token),
            invited_by_user_id=invited_by_user_id,
            status=InvitationStatus.PENDING.value,
            expires_at=self._expiry(),
        )
        self.db.add(invitation)

        if existing_user and membership is None:
            self.db.add(Membership(
                user_id=existing_user.id,
                tenant_id=tenant_id,
                status=MembershipStatus.PENDING_INVITE.value,
                invited_at=utcnow(),
                invited_by=invited_by_user_id,
            ))

        self.db.flush()
        AuditService.record(
            self.db,
            "INVITATION_CREATED",
            "invitation",
            invitation.id,
            actor_user_id=invited_by_user_id,
            tenant_id=tenant_id,
            payload={"email": email, "role_ids": invitation.role_ids},
        )
        self.db.commit()
        self.db.refresh(invitation)

        logger.info("Invitation created", invitation_id=invitation.id, tenant_id=tenant_id)
        return invitation, raw_token

    def get_by_token(self, token: str) -> Optional[Invitation]:
        return self.db.query(Invitation).filter(
            Invitation.token_hash == hash_token(token)
        ).first()

    def validate_token(self, token: str) -> Invitation:
        """Pre-check for the accept page; raises the same errors accept would."""
        invitation = self.get_by_token(token)
        if not invitation:
            raise NotFound("Invitation not found", reason="invitation_not_found")
        self._ensure_usable(invitation)
        return invitation

    def accept(self, token: str, password: str, full_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Accept an invitation.

        Creates the user if the email is new (pre-verified), upserts an ACTIVE
        membership, assigns the invited roles and consumes the invitation in a
        single transaction.

        Returns:
            Dict with user, membership, tenant_id and is_new_user
        """
        invitation = self.db.query(Invitation).filter(
            Invitation.token_hash == hash_token(token)
        ).with_for_update().first()
        if not invitation:
            raise NotFound("Invitation not found", reason="invitation_not_found")
        self._ensure_usable(invitation)

        now = utcnow()
        try:
            user = self.db.query(User).filter(User.email == invitation.email).first()
            is_new_user = user is None
            if is_new_user:
                validate_password(password)
                user = User(
                    email=invitation.email,
                    full_name=full_name,
                    password_hash=hash_password(password),
                    email_verified=True,
                )
                self.db.add(user)
                self.db.flush()

            membership = self.db.query(Membership).filter(
                Membership.user_id == user.id,
                Membership.tenant_id == invitation.tenant_id,
            ).first()

            if membership and membership.status == MembershipStatus.ACTIVE.value:
                # Consume the token anyway so it cannot be replayed
                invitation.status = InvitationStatus.ACCEPTED.value
                invitation.accepted_at = now
                invitation.accepted_by_user_id = user.id
                self.db.commit()
                raise Conflict("User is already a member of this tenant", reason="already_member")

            if membership and membership.status == MembershipStatus.DISABLED.value:
                # Only an admin can lift a disable; the link is spent either way
                invitation.status = InvitationStatus.ACCEPTED.value
                invitation.accepted_at = now
                invitation.accepted_by_user_id = user.id
                self.db.commit()
                raise InvalidState(
                    "Membership is disabled; an administrator must re-enable it",
                    reason="membership_disabled",
                )

            if membership is None:
                membership = Membership(
                    user_id=user.id,
                    tenant_id=invitation.tenant_id,
                    invited_at=invitation.created_at,
                    invited_by=invitation.invited_by_user_id,
                )
                self.db.add(membership)
            membership.status = MembershipStatus.ACTIVE.value
            membership.accepted_at = now

            self._assign_invited_roles(user.id, invitation)

            invitation.status = InvitationStatus.ACCEPTED.value
            invitation.accepted_at = now
            invitation.accepted_by_user_id = user.id

            self.db.flush()
            AuditService.record(
                self.db,
                "INVITATION_ACCEPTED",
                "invitation",
                invitation.id,
                actor_user_id=user.id,
                tenant_id=invitation.tenant_id,
                payload={"is_new_user": is_new_user},
            )
            self.db.commit()
        except (Conflict, InvalidState):
            raise
        except Exception:
            self.db.rollback()
            raise

        self.cache.invalidate(user.id)
        self.db.refresh(user)
        self.db.refresh(membership)

        logger.info(
            "Invitation accepted",
            invitation_id=invitation.id,
            user_id=user.id,
            tenant_id=invitation.tenant_id,
            is_new_user=is_new_user,
        )
        return {
            "user": user.to_dict(),
            "membership": membership.to_dict(),
            "tenant_id": invitation.tenant_id,
            "is_new_user": is_new_user,
        }

    def _assign_invited_roles(self, user_id: str, invitation: Invitation) -> None:
        wanted = list(invitation.role_ids or [])
        if not wanted:
            return
        roles = self.db.query(Role).filter(
            Role.id.in_(wanted),
            Role.scope == RoleScope.TENANT.value,
        ).all()
        if len(roles) != len(set(wanted)):
            logger.warning(
                "Invited roles no longer available",
                invitation_id=invitation.id,
                missing=sorted(set(wanted) - {role.id for role in roles}),
            )
        held = {
            row.role_id
            for row in self.db.query(UserRole.role_id).filter(
                UserRole.user_id == user_id,
                UserRole.tenant_id == invitation.tenant_id,
            )
        }
        for role in roles:
            if role.id not in held:
                self.db.add(UserRole(user_id=user_id, role_id=role.id, tenant_id=invitation.tenant_id))

    def resend(
        self,
        invitation_id: str,
        tenant_id: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> Tuple[Invitation, str]:
        """
        Rotate a pending invitation's token and expiry.

        The old link stops working. Delivery of the new one is the caller's job.
        """
        invitation = self._get_in_tenant(invitation_id, tenant_id)
        self._ensure_usable(invitation)

        raw_token = generate_token()
        invitation.token_hash = hash_token(raw_token)
        invitation.expires_at = self._expiry()
        AuditService.record(
            self.db,
            "INVITATION_RESENT",
            "invitation",
            invitation.id,
            actor_user_id=actor_user_id,
            tenant_id=invitation.tenant_id,
            payload={"email": invitation.email, "expires_at": invitation.expires_at.isoformat()},
        )
        self.db.commit()
        self.db.refresh(invitation)

        logger.info("Invitation resent", invitation_id=invitation.id)
        return invitation, raw_token

    def revoke(
        self,
        invitation_id: str,
        tenant_id: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> Invitation:
        invitation = self._get_in_tenant(invitation_id, tenant_id)
        if invitation.status != InvitationStatus.PENDING.value:
            raise InvalidState(
                f"Cannot revoke invitation with status: {invitation.status}",
                reason="invitation_not_pending",
            )

        invitation.status = InvitationStatus.REVOKED.value
        invitation.revoked_at = utcnow()
        AuditService.record(
            self.db,
            "INVITATION_REVOKED",
            "invitation",
            invitation.id,
            actor_user_id=actor_user_id,
            tenant_id=invitation.tenant_id,
        )
        self.db.commit()
        self.db.refresh(invitation)

        logger.info("Invitation revoked", invitation_id=invitation.id)
        return invitation

    def list_invitations(self, tenant_id: str, status: Optional[str] = None) -> List[Invitation]:
        query = self.db.query(Invitation).filter(Invitation.tenant_id == tenant_id)
        if status:
            query = query.filter(Invitation.status == status)
        return query.order_by(Invitation.created_at.desc()).all()

    def expire_stale(self) -> int:
        """Flip every PENDING invitation past its expiry to EXPIRED."""
        result = self.db.execute(
            update(Invitation)
            .where(
                Invitation.status == InvitationStatus.PENDING.value,
                Invitation.expires_at < utcnow(),
            )
            .values(status=InvitationStatus.EXPIRED.value)
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()
        count = result.rowcount or 0
        logger.info("Stale invitations expired", count=count)
        return count

    def role_label(self, invitation: Invitation) -> str:
        """Human readable role list for the invite email"""
        if not invitation.role_ids:
            return "Member"
        roles = self.db.query(Role).filter(Role.id.in_(invitation.role_ids)).order_by(Role.name).all()
        return ", ".join(role.name for role in roles) or "Member"
