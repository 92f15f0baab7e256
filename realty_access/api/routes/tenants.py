"""Tenant lifecycle routes"""

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session
from typing import Optional

from realty_access.database.database import get_db
from realty_access.middleware.auth_middleware import get_permission_cache, require_permission
from realty_access.middleware.rate_limiting import enforce_rate_limit
from realty_access.services.auth_service import AuthService
from realty_access.services.authorization_gate import Principal
from realty_access.services.permission_cache import PermissionCache
from realty_access.services.role_service import RoleService
from realty_access.services.tenant_service import TenantService

router = APIRouter()


class RegisterTenantRequest(BaseModel):
    name: str
    slug: Optional[str] = None
    owner_email: EmailStr
    owner_password: str
    owner_full_name: Optional[str] = None


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_tenant(
    request: RegisterTenantRequest,
    raw_request: Request,
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """
    Self-service agency signup.
    Public endpoint; creates the tenant, its first admin and signs them in.
    """
    await enforce_rate_limit(raw_request, "register")
    result = TenantService.register(
        db,
        RoleService(db, cache),
        name=request.name,
        owner_email=request.owner_email,
        owner_password=request.owner_password,
        owner_full_name=request.owner_full_name,
        slug=request.slug,
    )
    tokens = AuthService.issue_tokens(db, result["user"])
    db.commit()

    return {
        "tenant": result["tenant"].to_dict(),
        "user": result["user"].to_dict(),
        **tokens,
    }


@router.get("/{tenant_id}")
async def get_tenant(
    tenant_id: str,
    principal: Principal = Depends(require_permission("TENANT_SETTINGS_VIEW")),
    db: Session = Depends(get_db),
):
    return TenantService.get_tenant(db, tenant_id).to_dict()


@router.post("/{tenant_id}/suspend")
async def suspend_tenant(
    tenant_id: str,
    principal: Principal = Depends(require_permission("PLATFORM_TENANTS_EDIT", tenant_param=None)),
    db: Session = Depends(get_db),
):
    """Suspend a tenant; every active member is signed out."""
    return TenantService.suspend(db, tenant_id, actor_user_id=principal.user_id).to_dict()


@router.post("/{tenant_id}/activate")
async def activate_tenant(
    tenant_id: str,
    principal: Principal = Depends(require_permission("PLATFORM_TENANTS_EDIT", tenant_param=None)),
    db: Session = Depends(get_db),
):
    return TenantService.activate(db, tenant_id, actor_user_id=principal.user_id).to_dict()
