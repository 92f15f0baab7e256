"""Authorization gate.

Answers "may this principal do X in tenant T?" by running fixed stages in
order, stopping at the first deny:

1. session is still active (else unauthenticated)
2. membership in the tenant is ACTIVE (tenant context only; super-admins skip)
3. permission check against the resolver
4. module gate, then subscription gate (when requested)

Stage 2 runs before stage 3 so a disabled member is denied even while a
stale cache entry still lists their permissions.
"""

from dataclasses import dataclass
from typing import Optional, Sequence
import structlog
from sqlalchemy.orm import Session

from realty_access.database.models import GlobalRole, Membership, MembershipStatus, User
from realty_access.errors import Unauthenticated, Unauthorized
from realty_access.monitoring.metrics import AUTHORIZATION_DECISIONS
from realty_access.security.jwt import decode_token
from realty_access.services.permission_cache import PermissionCache
from realty_access.services.permission_service import PermissionService
from realty_access.services.session_service import SessionService
from realty_access.services.tenant_access import (
    AllModulesEnabled,
    ModuleAccess,
    SubscriptionAccess,
    TenantStatusSubscriptionAccess,
)

logger = structlog.get_logger()

MODE_ALL = "all"
MODE_ANY = "any"

# Deny reasons that mean "sign in again" rather than "not allowed"
UNAUTHENTICATED_REASONS = frozenset({"session_revoked", "user_inactive"})

_MEMBERSHIP_DENIALS = {
    MembershipStatus.PENDING_INVITE.value: ("Membership has not been accepted yet", "membership_pending"),
    MembershipStatus.DISABLED.value: ("Membership is disabled", "membership_disabled"),
}


@dataclass(frozen=True)
class Principal:
    """An authenticated caller, bound to one session"""

    user_id: str
    email: str
    global_role: str
    session_id: str

    @property
    def is_super_admin(self) -> bool:
        return self.global_role == GlobalRole.SUPER_ADMIN.value


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None

    @property
    def unauthenticated(self) -> bool:
        return not self.allowed and self.reason in UNAUTHENTICATED_REASONS


ALLOW = AccessDecision(allowed=True)


class AuthorizationGate:
    """Per-request authorization pipeline"""

    def __init__(
        self,
        db: Session,
        cache: PermissionCache,
        module_access: Optional[ModuleAccess] = None,
        subscription_access: Optional[SubscriptionAccess] = None,
    ):
        self.db = db
        self.permissions = PermissionService(db, cache)
        self.module_access = module_access or AllModulesEnabled()
        self.subscription_access = subscription_access or TenantStatusSubscriptionAccess(db)

    def authenticate(self, access_token: str) -> Principal:
        """
        Turn a bearer access token into a Principal.

        Raises:
            Unauthenticated: bad or expired token, unknown or inactive user,
                revoked or expired session
        """
        payload = decode_token(access_token)
        if not payload or payload.get("type") != "access":
            raise Unauthenticated("Invalid or expired token", reason="invalid_token")

        user_id = payload.get("sub")
        raw_sid = payload.get("sid")
        if not user_id or not raw_sid:
            raise Unauthenticated("Invalid or expired token", reason="invalid_token")

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            raise Unauthenticated("User account is not active", reason="user_inactive")

        if not SessionService.get_active_session(self.db, raw_sid, user_id=user.id):
            raise Unauthenticated("Session has been revoked", reason="session_revoked")

        return Principal(
            user_id=user.id,
            email=user.email,
            global_role=user.global_role,
            session_id=raw_sid,
        )

    def authorize(
        self,
        principal: Principal,
        permission_keys: Sequence[str] = (),
        mode: str = MODE_ALL,
        tenant_id: Optional[str] = None,
        module_key: Optional[str] = None,
        check_subscription: bool = False,
        write: bool = False,
    ) -> AccessDecision:
        """Run every stage in order and return the first deny, or ALLOW."""
        if mode not in (MODE_ALL, MODE_ANY):
            raise ValueError(f"Unknown mode: {mode}")

        decision = (
            self._check_session(principal)
            or self._check_membership(principal, tenant_id)
            or self._check_permissions(principal, permission_keys, mode, tenant_id)
            or self._check_module(tenant_id, module_key)
            or self._check_subscription(tenant_id, check_subscription, write)
            or ALLOW
        )

        AUTHORIZATION_DECISIONS.labels(
            outcome="allow" if decision.allowed else "deny",
            reason=decision.reason or "ok",
        ).inc()
        if not decision.allowed:
            logger.info(
                "Authorization denied",
                user_id=principal.user_id,
                tenant_id=tenant_id,
                reason=decision.reason,
            )
        return decision

    def require(self, principal: Principal, permission_keys: Sequence[str] = (), **kwargs) -> None:
        """Raising variant of authorize."""
        decision = self.authorize(principal, permission_keys, **kwargs)
        if decision.allowed:
            return
        if decision.unauthenticated:
            raise Unauthenticated(decision.message, reason=decision.reason)
        raise Unauthorized(decision.message, reason=decision.reason)

    def _check_session(self, principal: Principal) -> Optional[AccessDecision]:
        session = SessionService.get_active_session(self.db, principal.session_id, user_id=principal.user_id)
        if not session:
            return AccessDecision(False, "session_revoked", "Session has been revoked")
        return None

    def _check_membership(self, principal: Principal, tenant_id: Optional[str]) -> Optional[AccessDecision]:
        if not tenant_id or principal.is_super_admin:
            return None
        membership = self.db.query(Membership).filter(
            Membership.user_id == principal.user_id,
            Membership.tenant_id == tenant_id,
        ).first()
        if not membership:
            return AccessDecision(False, "no_membership", "Not a member of this tenant")
        if membership.status in _MEMBERSHIP_DENIALS:
            message, reason = _MEMBERSHIP_DENIALS[membership.status]
            return AccessDecision(False, reason, message)
        return None

    def _check_permissions(
        self,
        principal: Principal,
        permission_keys: Sequence[str],
        mode: str,
        tenant_id: Optional[str],
    ) -> Optional[AccessDecision]:
        if not permission_keys:
            return None
        if mode == MODE_ANY:
            allowed = self.permissions.has_any_permission(principal.user_id, permission_keys, tenant_id)
        else:
            allowed = self.permissions.has_all_permissions(principal.user_id, permission_keys, tenant_id)
        if not allowed:
            return AccessDecision(
                False,
                "missing_permission",
                f"Missing permission: {', '.join(permission_keys)}",
            )
        return None

    def _check_module(self, tenant_id: Optional[str], module_key: Optional[str]) -> Optional[AccessDecision]:
        if not tenant_id or not module_key:
            return None
        if not self.module_access.is_module_enabled(tenant_id, module_key):
            return AccessDecision(False, "module_disabled", f"Module {module_key} is not enabled for this tenant")
        return None

    def _check_subscription(self, tenant_id: Optional[str], check: bool, write: bool) -> Optional[AccessDecision]:
        if not tenant_id or not check:
            return None
        result = self.subscription_access.check_subscription_access(tenant_id)
        if not result.has_access:
            return AccessDecision(False, "subscription_required", result.reason or "Subscription required")
        if result.is_read_only and write:
            return AccessDecision(
                False,
                "subscription_read_only",
                result.reason or "Subscription is read-only",
            )
        return None
