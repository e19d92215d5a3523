from fastapi import APIRouter, Depends, HTTPException, status
from src.auth import AuthContext
from src.auth.dependencies import (
    get_current_auth,
    get_current_session,
    get_directory,
    get_session_registry,
    require_action,
)
from src.auth.permissions import DELETE_USER, MANAGE_ROLES, VIEW_USERS, coerce_role
from src.directory import OrganizationDirectory
from src.domain.errors import DirectoryUnavailable, directory_error_detail
from src.domain.records import Organization, Principal
from src.models.organizations import (
    ActiveOrganizationResponse,
    MemberResponse,
    MemberRoleUpdate,
    OrganizationCreate,
    OrganizationResponse,
)
from src.services.organization_context import OrganizationSession, SessionRegistry
from src.services.resolver import organization_role

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


def _organization_response(
    organization: Organization, *, principal_id: str, session: OrganizationSession
) -> OrganizationResponse:
    return OrganizationResponse(
        id=organization.id,
        name=organization.name,
        owner_id=organization.owner_id,
        status=organization.status,
        is_owner=organization.owner_id == principal_id,
        is_active=(
            session.active_organization is not None
            and session.active_organization.id == organization.id
        ),
        created_at=organization.created_at,
    )


def _member_response(principal: Principal, organization: Organization) -> MemberResponse:
    role, _ = organization_role(principal, organization)
    association = principal.sub_account_association(organization.id)
    return MemberResponse(
        id=principal.id,
        email=principal.email,
        display_name=principal.display_name,
        role=coerce_role(role),
        sub_account_owner=association.owner_name if association else None,
    )


def _active_organization(
    session: OrganizationSession, org_id: str, directory: OrganizationDirectory
) -> Organization:
    """Member management only targets the organization currently in context."""
    if session.active_organization is None or session.active_organization.id != org_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    try:
        organization = directory.get_organization(org_id)
    except DirectoryUnavailable as exc:
        raise _unavailable("get_organization", exc) from exc
    if organization is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return organization


def _unavailable(operation: str, exc: DirectoryUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=directory_error_detail(operation=operation, exc=exc),
    )


@router.get("/", response_model=list[OrganizationResponse])
async def list_organizations(
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(get_current_session),
):
    """Organizations the caller owns or belongs to, owned first."""
    return [
        _organization_response(org, principal_id=auth.user_id, session=session)
        for org in session.organizations
    ]


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    data: OrganizationCreate,
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(get_current_session),
    directory: OrganizationDirectory = Depends(get_directory),
):
    """Create an organization owned by the caller and make it the active one."""
    try:
        organization = directory.create_organization(owner=auth.principal, name=data.name, ein=data.ein)
    except DirectoryUnavailable as exc:
        raise _unavailable("create_organization", exc) from exc

    await session.refresh()
    await session.switch_organization(organization.id)
    return _organization_response(organization, principal_id=auth.user_id, session=session)


@router.get("/active", response_model=ActiveOrganizationResponse)
async def get_active_organization(
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(get_current_session),
):
    organization = session.active_organization
    return ActiveOrganizationResponse(
        state=session.state.value,
        organization=(
            _organization_response(organization, principal_id=auth.user_id, session=session)
            if organization
            else None
        ),
        role=session.effective_role,
        permissions=session.permissions.as_dict() if session.permissions else None,
    )


@router.post("/refresh", response_model=ActiveOrganizationResponse)
async def refresh_organizations(
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(get_current_session),
):
    """Reload memberships; falls back to another organization if the active one is gone."""
    await session.refresh()
    return await get_active_organization(auth=auth, session=session)


@router.post("/{org_id}/switch", response_model=ActiveOrganizationResponse)
async def switch_organization(
    org_id: str,
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(get_current_session),
):
    if not await session.switch_organization(org_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return await get_active_organization(auth=auth, session=session)


@router.get("/{org_id}/members", response_model=list[MemberResponse])
async def list_members(
    org_id: str,
    session: OrganizationSession = Depends(require_action(VIEW_USERS)),
    directory: OrganizationDirectory = Depends(get_directory),
):
    organization = _active_organization(session, org_id, directory)
    try:
        members = directory.list_members(organization)
    except DirectoryUnavailable as exc:
        raise _unavailable("list_members", exc) from exc
    return [_member_response(member, organization) for member in members]


@router.put("/{org_id}/members/{user_id}/role", response_model=MemberResponse)
async def update_member_role(
    org_id: str,
    user_id: str,
    data: MemberRoleUpdate,
    session: OrganizationSession = Depends(require_action(MANAGE_ROLES)),
    directory: OrganizationDirectory = Depends(get_directory),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Write the explicit organization role entry for a member."""
    organization = _active_organization(session, org_id, directory)
    if user_id == organization.owner_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The organization owner is always account_owner",
        )
    if user_id not in organization.members:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")

    try:
        member = directory.get_principal(user_id)
        if member is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
        updated = directory.set_organization_role(member, organization.id, data.role)
    except DirectoryUnavailable as exc:
        raise _unavailable("update_member_role", exc) from exc
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")

    await registry.notify_role_entry_changed(organization.id)
    return _member_response(updated, organization)


@router.delete("/{org_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    org_id: str,
    user_id: str,
    session: OrganizationSession = Depends(require_action(DELETE_USER)),
    directory: OrganizationDirectory = Depends(get_directory),
    registry: SessionRegistry = Depends(get_session_registry),
):
    organization = _active_organization(session, org_id, directory)
    if user_id == organization.owner_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The organization owner cannot be removed",
        )

    try:
        if not directory.remove_member(organization, user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
        member = directory.get_principal(user_id)
        if member is not None:
            directory.clear_organization_role(member, organization.id)
    except DirectoryUnavailable as exc:
        raise _unavailable("remove_member", exc) from exc

    await session.refresh()
    await registry.notify_membership_changed(user_id)
    return None
