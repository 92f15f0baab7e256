"""Tenant member administration routes"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional

from realty_access.database.database import get_db
from realty_access.middleware.auth_middleware import get_permission_cache, require_permission
from realty_access.services.authorization_gate import Principal
from realty_access.services.membership_service import MembershipService
from realty_access.services.notification_service import notification_service
from realty_access.services.permission_cache import PermissionCache

router = APIRouter()


class UpdateRolesRequest(BaseModel):
    role_ids: List[str] = Field(default_factory=list)


class ResetPasswordRequest(BaseModel):
    new_password: Optional[str] = None
    notify: bool = True


class MembershipResponse(BaseModel):
    id: str
    user_id: str
    tenant_id: str
    status: str
    invited_at: Optional[str] = None
    invited_by: Optional[str] = None
    accepted_at: Optional[str] = None
    created_at: Optional[str] = None


class SessionsRevokedResponse(BaseModel):
    user_id: str
    sessions_revoked: int


class ResetPasswordResponse(BaseModel):
    user_id: str
    notified: bool


@router.get("")
async def list_members(
    tenant_id: str,
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    role_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_permission("USERS_VIEW")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> Dict[str, Any]:
    return MembershipService(db, cache).list_members(
        tenant_id,
        search=search,
        status=status_filter,
        role_id=role_id,
        page=page,
        limit=limit,
    )


@router.get("/{user_id}")
async def get_member(
    tenant_id: str,
    user_id: str,
    principal: Principal = Depends(require_permission("USERS_VIEW")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> Dict[str, Any]:
    return MembershipService(db, cache).get_by_id(user_id, tenant_id)


@router.post("/{user_id}/disable", response_model=MembershipResponse)
async def disable_member(
    tenant_id: str,
    user_id: str,
    principal: Principal = Depends(require_permission("USERS_DISABLE")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """Disable a member and revoke all of their sessions."""
    membership = MembershipService(db, cache).disable(user_id, tenant_id, actor_user_id=principal.user_id)
    return MembershipResponse(**membership.to_dict())


@router.post("/{user_id}/enable", response_model=MembershipResponse)
async def enable_member(
    tenant_id: str,
    user_id: str,
    principal: Principal = Depends(require_permission("USERS_DISABLE")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    membership = MembershipService(db, cache).enable(user_id, tenant_id, actor_user_id=principal.user_id)
    return MembershipResponse(**membership.to_dict())


@router.put("/{user_id}/roles")
async def update_member_roles(
    tenant_id: str,
    user_id: str,
    request: UpdateRolesRequest,
    principal: Principal = Depends(require_permission("USERS_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> Dict[str, Any]:
    """Replace the member's roles in this tenant."""
    return MembershipService(db, cache).update_roles(
        user_id, tenant_id, request.role_ids, actor_user_id=principal.user_id
    )


@router.post("/{user_id}/reset-password", response_model=ResetPasswordResponse)
async def reset_member_password(
    tenant_id: str,
    user_id: str,
    request: ResetPasswordRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_permission("USERS_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """
    Set a new password for a member (random if none given).
    The member is signed out everywhere and, by default, emailed the new password.
    """
    user, password = MembershipService(db, cache).reset_password(
        user_id, tenant_id, new_password=request.new_password, actor_user_id=principal.user_id
    )
    if request.notify:
        background_tasks.add_task(
            notification_service.send_password_reset_notice,
            email=user.email,
            new_password=password,
        )
    return ResetPasswordResponse(user_id=user.id, notified=request.notify)


@router.post("/{user_id}/revoke-sessions", response_model=SessionsRevokedResponse)
async def revoke_member_sessions(
    tenant_id: str,
    user_id: str,
    principal: Principal = Depends(require_permission("USERS_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    count = MembershipService(db, cache).revoke_sessions(user_id, tenant_id, actor_user_id=principal.user_id)
    return SessionsRevokedResponse(user_id=user_id, sessions_revoked=count)
