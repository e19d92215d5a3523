from fastapi import APIRouter, Depends, HTTPException, status
from src.auth import AuthContext
from src.auth.dependencies import (
    get_current_auth,
    get_current_session,
    get_directory,
    get_invitation_service,
    require_action,
)
from src.auth.permissions import MANAGE_INVITATIONS, ROLE_SUB_ACCOUNT_OWNER
from src.config import settings
from src.directory import OrganizationDirectory
from src.domain.errors import (
    DirectoryUnavailable,
    InvitationRejected,
    InvitationRejection,
    directory_error_detail,
    invitation_rejection_detail,
    invitation_rejection_http_status,
)
from src.domain.records import Invitation, Organization
from src.models.invitations import (
    InvitationAcceptResponse,
    InvitationCreate,
    InvitationPreview,
    InvitationResponse,
    InvitationTokenRequest,
)
from src.services.invitations import InvitationService
from src.services.organization_context import OrganizationSession

router = APIRouter(prefix="/api/invitations", tags=["invitations"])


def _invitation_response(invitation: Invitation) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        token=invitation.token,
        link=f"{settings.public_app_url}/register/member?token={invitation.token}",
        organization_id=invitation.organization_id,
        role=invitation.role,
        status=invitation.status,
        expires_at=invitation.expires_at,
        used_count=invitation.used_count,
        max_uses=invitation.max_uses,
        created_at=invitation.created_at,
    )


def _rejected(rejection: InvitationRejection) -> HTTPException:
    return HTTPException(
        status_code=invitation_rejection_http_status(rejection),
        detail=invitation_rejection_detail(rejection),
    )


def _unavailable(operation: str, exc: DirectoryUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=directory_error_detail(operation=operation, exc=exc),
    )


def _inviting_organization(session: OrganizationSession) -> Organization:
    if session.active_organization is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No active organization",
        )
    return session.active_organization


def _invitation_terms(
    data: InvitationCreate, auth: AuthContext, session: OrganizationSession
) -> tuple[str, str | None]:
    """Sub-account owners may only invite members, who are then attached to their sub-account."""
    if session.effective_role != ROLE_SUB_ACCOUNT_OWNER:
        return data.role, data.sub_account_name
    if data.role != "member":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Sub-account owners can only invite members",
        )
    return "member", data.sub_account_name or auth.principal.display_name or auth.email


@router.post("/", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    data: InvitationCreate,
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(require_action(MANAGE_INVITATIONS)),
    invitations: InvitationService = Depends(get_invitation_service),
):
    """Create an invitation for the active organization."""
    organization = _inviting_organization(session)
    role, sub_account_name = _invitation_terms(data, auth, session)
    try:
        invitation = invitations.create_invitation(
            organization=organization,
            inviter=auth.principal,
            role=role,
            sub_account_name=sub_account_name,
        )
    except DirectoryUnavailable as exc:
        raise _unavailable("create_invitation", exc) from exc
    return _invitation_response(invitation)


@router.get("/active", response_model=InvitationResponse)
async def get_active_invitation(
    session: OrganizationSession = Depends(require_action(MANAGE_INVITATIONS)),
    invitations: InvitationService = Depends(get_invitation_service),
):
    organization = _inviting_organization(session)
    try:
        invitation = invitations.get_active_invitation(organization.id)
    except DirectoryUnavailable as exc:
        raise _unavailable("get_active_invitation", exc) from exc
    if invitation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active invitation")
    return _invitation_response(invitation)


@router.post("/regenerate", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def regenerate_invitation(
    data: InvitationCreate,
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(require_action(MANAGE_INVITATIONS)),
    invitations: InvitationService = Depends(get_invitation_service),
):
    """Replace the active invitation with a fresh token."""
    organization = _inviting_organization(session)
    role, sub_account_name = _invitation_terms(data, auth, session)
    try:
        invitation = invitations.regenerate_invitation(
            organization=organization,
            inviter=auth.principal,
            role=role,
            sub_account_name=sub_account_name,
        )
    except DirectoryUnavailable as exc:
        raise _unavailable("regenerate_invitation", exc) from exc
    return _invitation_response(invitation)


@router.post("/validate", response_model=InvitationPreview)
async def validate_invitation(
    data: InvitationTokenRequest,
    invitations: InvitationService = Depends(get_invitation_service),
    directory: OrganizationDirectory = Depends(get_directory),
):
    """Public preview of an invitation before registering or joining."""
    try:
        result = invitations.validate_invitation(data.token)
        if isinstance(result, InvitationRejection):
            raise _rejected(result)
        organization = directory.get_organization(result.organization_id)
    except DirectoryUnavailable as exc:
        raise _unavailable("validate_invitation", exc) from exc

    return InvitationPreview(
        organization_id=result.organization_id,
        organization_name=organization.name if organization else None,
        role=result.role,
        sub_account_name=result.sub_account_name,
        expires_at=result.expires_at,
    )


@router.post("/accept", response_model=InvitationAcceptResponse)
async def accept_invitation(
    data: InvitationTokenRequest,
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(get_current_session),
    invitations: InvitationService = Depends(get_invitation_service),
):
    """Redeem an invitation and switch the caller into the joined organization."""
    try:
        redemption = invitations.redeem_invitation(data.token, auth.principal)
    except InvitationRejected as exc:
        raise _rejected(exc.rejection) from exc
    except DirectoryUnavailable as exc:
        raise _unavailable("accept_invitation", exc) from exc

    organization = redemption.organization
    await session.refresh()
    await session.switch_organization(organization.id)

    if redemption.invitation.sub_account_name:
        message = f"Successfully joined {organization.name} under {redemption.invitation.sub_account_name}"
    else:
        message = f"Successfully joined {organization.name}"
    return InvitationAcceptResponse(
        message=message,
        organization_id=organization.id,
        role=redemption.invitation.role,
    )
