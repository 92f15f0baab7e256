"""Role and permission catalogue routes (platform scope)"""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import List, Literal, Optional

from realty_access.database.database import get_db
from realty_access.middleware.auth_middleware import get_permission_cache, require_permission
from realty_access.services.authorization_gate import Principal
from realty_access.services.permission_cache import PermissionCache
from realty_access.services.role_service import RoleService

router = APIRouter()
permissions_router = APIRouter()


class CreateRoleRequest(BaseModel):
    key: str = Field(..., min_length=2, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    scope: Literal["PLATFORM", "TENANT"]
    description: Optional[str] = None


class SetRolePermissionsRequest(BaseModel):
    permission_ids: List[str] = Field(default_factory=list)


class CreatePermissionRequest(BaseModel):
    key: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None


@router.get("")
async def list_roles(
    scope: Optional[str] = None,
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_VIEW")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    return [role.to_dict() for role in RoleService(db, cache).list_roles(scope)]


@router.get("/{role_id}")
async def get_role(
    role_id: str,
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_VIEW")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    return RoleService(db, cache).get_role(role_id).to_dict_with_permissions()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_role(
    request: CreateRoleRequest,
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    role = RoleService(db, cache).create_role(
        key=request.key,
        name=request.name,
        scope=request.scope,
        description=request.description,
        actor_user_id=principal.user_id,
    )
    return role.to_dict()


@router.put("/{role_id}/permissions")
async def set_role_permissions(
    role_id: str,
    request: SetRolePermissionsRequest,
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """
    Replace a role's permission bundle.
    Every user holding the role sees the change on their next request.
    """
    role = RoleService(db, cache).set_role_permissions(
        role_id, request.permission_ids, actor_user_id=principal.user_id
    )
    return role.to_dict_with_permissions()


@router.post("/{role_id}/users/{user_id}", status_code=status.HTTP_201_CREATED)
async def grant_platform_role(
    role_id: str,
    user_id: str,
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    assignment = RoleService(db, cache).grant_platform_role(user_id, role_id, actor_user_id=principal.user_id)
    return {"user_id": assignment.user_id, "role_id": assignment.role_id}


@router.delete("/{role_id}/users/{user_id}")
async def revoke_platform_role(
    role_id: str,
    user_id: str,
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    revoked = RoleService(db, cache).revoke_platform_role(user_id, role_id, actor_user_id=principal.user_id)
    return {"revoked": revoked}


@permissions_router.get("")
async def list_permissions(
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_VIEW")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    return [p.to_dict() for p in RoleService(db, cache).list_permissions()]


@permissions_router.post("", status_code=status.HTTP_201_CREATED)
async def create_permission(
    request: CreatePermissionRequest,
    principal: Principal = Depends(require_permission("PLATFORM_ROLES_EDIT")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    permission = RoleService(db, cache).create_permission(
        request.key, request.description, actor_user_id=principal.user_id
    )
    return permission.to_dict()
