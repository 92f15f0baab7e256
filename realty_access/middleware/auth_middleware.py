"""Authentication and authorization dependencies"""

from typing import Callable, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from realty_access.database.database import get_db
from realty_access.errors import Unauthenticated
from realty_access.services.authorization_gate import (
    MODE_ALL,
    MODE_ANY,
    AuthorizationGate,
    Principal,
)
from realty_access.services.permission_cache import PermissionCache

security = HTTPBearer(auto_error=False)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def get_permission_cache(request: Request) -> PermissionCache:
    """The process-wide cache created at startup"""
    return request.app.state.permission_cache


def get_gate(
    request: Request,
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> AuthorizationGate:
    return AuthorizationGate(
        db,
        cache,
        module_access=getattr(request.app.state, "module_access", None),
        subscription_access=getattr(request.app.state, "subscription_access", None),
    )


async def get_bearer_token(request: Request) -> str:
    credentials: Optional[HTTPAuthorizationCredentials] = await security(request)
    if not credentials:
        raise Unauthenticated()
    return credentials.credentials


async def get_principal(
    token: str = Depends(get_bearer_token),
    gate: AuthorizationGate = Depends(get_gate),
) -> Principal:
    """Authenticated principal for the request - use as dependency"""
    return gate.authenticate(token)


def require_permission(
    *permission_keys: str,
    mode: str = MODE_ALL,
    module: Optional[str] = None,
    subscription: bool = False,
    tenant_param: Optional[str] = "tenant_id",
) -> Callable:
    """
    Dependency factory that runs the full authorization gate.

    The tenant context is the ``tenant_param`` path parameter when the route
    has one; otherwise permissions resolve in platform scope. Platform routes
    that merely address a tenant pass ``tenant_param=None``. Write methods
    are blocked for read-only subscriptions.

    Usage:
        @router.post("/tenants/{tenant_id}/members/{user_id}/disable")
        async def disable_member(
            principal: Principal = Depends(require_permission("USERS_DISABLE")),
            db: Session = Depends(get_db),
        ):
    """
    async def check_permission(
        request: Request,
        principal: Principal = Depends(get_principal),
        gate: AuthorizationGate = Depends(get_gate),
    ) -> Principal:
        gate.require(
            principal,
            permission_keys,
            mode=mode,
            tenant_id=request.path_params.get(tenant_param) if tenant_param else None,
            module_key=module,
            check_subscription=subscription,
            write=request.method in WRITE_METHODS,
        )
        return principal

    return check_permission


def require_any_permission(*permission_keys: str, **kwargs) -> Callable:
    """Like require_permission, but one of the keys is enough"""
    return require_permission(*permission_keys, mode=MODE_ANY, **kwargs)
