"""Module and subscription gates.

Both are owned by other parts of the CRM; the authorization gate only needs
a yes/no (plus a reason) from each. The defaults here enable every module
and derive subscription standing from the tenant's status.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.orm import Session

from realty_access.database.models import Tenant, TenantStatus


@dataclass(frozen=True)
class SubscriptionAccessResult:
    has_access: bool
    is_read_only: bool = False
    reason: Optional[str] = None


class ModuleAccess(ABC):
    @abstractmethod
    def is_module_enabled(self, tenant_id: str, module_key: str) -> bool:
        ...


class SubscriptionAccess(ABC):
    @abstractmethod
    def check_subscription_access(self, tenant_id: str) -> SubscriptionAccessResult:
        ...


class AllModulesEnabled(ModuleAccess):
    def is_module_enabled(self, tenant_id: str, module_key: str) -> bool:
        return True


class TenantStatusSubscriptionAccess(SubscriptionAccess):
    """
    Subscription standing from tenant status.

    A suspended tenant keeps read access to its data but cannot write.
    """

    def __init__(self, db: Session):
        self.db = db

    def check_subscription_access(self, tenant_id: str) -> SubscriptionAccessResult:
        tenant = self.db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if not tenant:
            return SubscriptionAccessResult(has_access=False, reason="No subscription found")
        if tenant.status == TenantStatus.SUSPENDED.value:
            return SubscriptionAccessResult(
                has_access=True,
                is_read_only=True,
                reason="Tenant is suspended; read-only access",
            )
        return SubscriptionAccessResult(has_access=True)
