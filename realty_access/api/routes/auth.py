"""Authentication routes"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session
from typing import List, Literal, Optional

from realty_access.database.database import get_db
from realty_access.database.models import Membership, Tenant
from realty_access.middleware.auth_middleware import get_bearer_token, get_gate, get_principal
from realty_access.middleware.rate_limiting import enforce_rate_limit, rate_limit
from realty_access.services.auth_service import AuthService
from realty_access.services.authorization_gate import AuthorizationGate, Principal

router = APIRouter()

# Budgets come from RATE_LIMIT_* settings
RATE_LIMIT_LOGOUT = rate_limit("logout")
RATE_LIMIT_REFRESH = rate_limit("refresh")
RATE_LIMIT_ME = rate_limit("me")
RATE_LIMIT_CHECK = rate_limit("check")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class CheckRequest(BaseModel):
    permissions: List[str] = Field(default_factory=list)
    mode: Literal["all", "any"] = "all"
    tenant_id: Optional[str] = None
    module: Optional[str] = None


@router.post("/login")
async def login(
    request: LoginRequest,
    raw_request: Request,
    db: Session = Depends(get_db),
):
    """Login and get access token"""
    await enforce_rate_limit(raw_request, "login", identifier=request.email)
    return AuthService.login(db, request.email, request.password)


@router.post("/refresh")
async def refresh_token(
    request: RefreshRequest,
    db: Session = Depends(get_db),
    _rate_limit: None = Depends(RATE_LIMIT_REFRESH),
):
    """Exchange a refresh token for a new access token"""
    return AuthService.refresh(db, request.refresh_token)


@router.post("/logout")
async def logout(
    principal: Principal = Depends(get_principal),
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    _rate_limit: None = Depends(RATE_LIMIT_LOGOUT),
):
    """Logout and revoke the current session"""
    AuthService.logout(db, token)
    return {"message": "Logged out successfully"}


@router.get("/me")
async def get_me(
    principal: Principal = Depends(get_principal),
    gate: AuthorizationGate = Depends(get_gate),
    db: Session = Depends(get_db),
    _rate_limit: None = Depends(RATE_LIMIT_ME),
):
    """Current user with memberships and platform permissions"""
    rows = db.query(Membership, Tenant).join(Tenant, Tenant.id == Membership.tenant_id).filter(
        Membership.user_id == principal.user_id
    ).order_by(Tenant.name).all()

    return {
        "id": principal.user_id,
        "email": principal.email,
        "global_role": principal.global_role,
        "platform_permissions": sorted(gate.permissions.resolve(principal.user_id)),
        "memberships": [
            {
                "tenant_id": tenant.id,
                "tenant_name": tenant.name,
                "tenant_status": tenant.status,
                "status": membership.status,
            }
            for membership, tenant in rows
        ],
    }


@router.post("/check")
async def check_permission(
    request: CheckRequest,
    principal: Principal = Depends(get_principal),
    gate: AuthorizationGate = Depends(get_gate),
    _rate_limit: None = Depends(RATE_LIMIT_CHECK),
):
    """Authorization decision for other services; denies are returned, not raised"""
    decision = gate.authorize(
        principal,
        request.permissions,
        mode=request.mode,
        tenant_id=request.tenant_id,
        module_key=request.module,
    )
    return {
        "allowed": decision.allowed,
        "reason": decision.reason,
        "user_id": principal.user_id,
        "tenant_id": request.tenant_id,
    }
