"""Invitation routes for member onboarding"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session
from typing import List, Optional

from realty_access.database.database import get_db
from realty_access.database.models import Invitation, User
from realty_access.middleware.auth_middleware import get_permission_cache, require_permission
from realty_access.middleware.rate_limiting import rate_limit
from realty_access.services.auth_service import AuthService
from realty_access.services.authorization_gate import Principal
from realty_access.services.invitation_service import InvitationService
from realty_access.services.notification_service import notification_service
from realty_access.services.permission_cache import PermissionCache

router = APIRouter()
public_router = APIRouter()

# Rate limits
RATE_LIMIT_CREATE = rate_limit("invitation_create")
RATE_LIMIT_ACCEPT = rate_limit("invitation_accept")
RATE_LIMIT_VALIDATE = rate_limit("invitation_validate")


class CreateInvitationRequest(BaseModel):
    email: EmailStr
    role_ids: List[str] = Field(default_factory=list)


class AcceptInvitationRequest(BaseModel):
    token: str
    password: str
    full_name: Optional[str] = None


class ValidateTokenRequest(BaseModel):
    token: str


class InvitationResponse(BaseModel):
    id: str
    tenant_id: str
    email: str
    role_ids: List[str]
    status: str
    invited_by_email: Optional[str] = None
    expires_at: str
    accepted_at: Optional[str] = None
    revoked_at: Optional[str] = None
    created_at: str


class AcceptInvitationResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    user_id: str
    email: str
    tenant_id: str
    is_new_user: bool


class ValidateTokenResponse(BaseModel):
    valid: bool
    email: str
    tenant_id: str
    tenant_name: str
    role: str
    expires_at: str


def _to_response(invitation: Invitation) -> InvitationResponse:
    return InvitationResponse(**invitation.to_dict())


def _queue_invite_email(
    background_tasks: BackgroundTasks,
    service: InvitationService,
    invitation: Invitation,
    raw_token: str,
) -> None:
    background_tasks.add_task(
        notification_service.send_invite,
        email=invitation.email,
        token=raw_token,
        tenant_name=invitation.tenant.name,
        role_label=service.role_label(invitation),
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=InvitationResponse)
async def create_invitation(
    tenant_id: str,
    request: CreateInvitationRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_permission("USERS_CREATE", subscription=True)),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    _rate_limit: None = Depends(RATE_LIMIT_CREATE),
):
    """
    Invite someone into the tenant.
    Requires USERS_CREATE.
    """
    service = InvitationService(db, cache)
    invitation, raw_token = service.create(
        tenant_id=tenant_id,
        email=request.email,
        role_ids=request.role_ids,
        invited_by_user_id=principal.user_id,
    )
    # Sent after the response, so delivery problems never undo the invitation
    _queue_invite_email(background_tasks, service, invitation, raw_token)
    return _to_response(invitation)


@router.get("", response_model=List[InvitationResponse])
async def list_invitations(
    tenant_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    principal: Principal = Depends(require_permission("USERS_VIEW")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    invitations = InvitationService(db, cache).list_invitations(tenant_id, status=status_filter)
    return [_to_response(inv) for inv in invitations]


@router.post("/{invitation_id}/resend", response_model=InvitationResponse)
async def resend_invitation(
    tenant_id: str,
    invitation_id: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_permission("USERS_CREATE", subscription=True)),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    _rate_limit: None = Depends(RATE_LIMIT_CREATE),
):
    """Rotate the token and send a fresh link."""
    service = InvitationService(db, cache)
    invitation, raw_token = service.resend(
        invitation_id, tenant_id=tenant_id, actor_user_id=principal.user_id
    )
    _queue_invite_email(background_tasks, service, invitation, raw_token)
    return _to_response(invitation)


@router.post("/{invitation_id}/revoke", response_model=InvitationResponse)
async def revoke_invitation(
    tenant_id: str,
    invitation_id: str,
    principal: Principal = Depends(require_permission("USERS_CREATE")),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    invitation = InvitationService(db, cache).revoke(
        invitation_id, tenant_id=tenant_id, actor_user_id=principal.user_id
    )
    return _to_response(invitation)


@public_router.post("/validate", response_model=ValidateTokenResponse)
async def validate_invitation(
    request: ValidateTokenRequest,
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    _rate_limit: None = Depends(RATE_LIMIT_VALIDATE),
):
    """
    Check an invitation token before showing the accept form.
    Public endpoint (no auth required).
    """
    service = InvitationService(db, cache)
    invitation = service.validate_token(request.token)
    return ValidateTokenResponse(
        valid=True,
        email=invitation.email,
        tenant_id=invitation.tenant_id,
        tenant_name=invitation.tenant.name,
        role=service.role_label(invitation),
        expires_at=invitation.expires_at.isoformat(),
    )


@public_router.post("/accept", response_model=AcceptInvitationResponse)
async def accept_invitation(
    request: AcceptInvitationRequest,
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    _rate_limit: None = Depends(RATE_LIMIT_ACCEPT),
):
    """
    Accept an invitation and sign in.
    Public endpoint (no auth required).
    """
    result = InvitationService(db, cache).accept(
        token=request.token,
        password=request.password,
        full_name=request.full_name,
    )
    user = db.query(User).filter(User.id == result["user"]["id"]).first()
    tokens = AuthService.issue_tokens(db, user)
    db.commit()

    return AcceptInvitationResponse(
        **tokens,
        user_id=user.id,
        email=user.email,
        tenant_id=result["tenant_id"],
        is_new_user=result["is_new_user"],
    )
