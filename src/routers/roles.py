from fastapi import APIRouter, Depends, HTTPException, status
from src.auth import AuthContext
from src.auth.dependencies import get_role_policy, require_global_admin, require_page
from src.auth.permissions import PermissionSet, RolePolicy, normalize_role
from src.models.roles import PermissionSetPayload, RolePermissionsResponse
from src.observability import log_event
from src.services.organization_context import OrganizationSession

router = APIRouter(prefix="/api/roles", tags=["roles"])


def _role_response(role: str, permissions: PermissionSet) -> RolePermissionsResponse:
    return RolePermissionsResponse(
        role=role,
        pages=dict(permissions.pages),
        actions=dict(permissions.actions),
    )


def _canonical_role(role: str) -> str:
    try:
        return normalize_role(role)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")


@router.get("/", response_model=list[RolePermissionsResponse])
async def list_roles(
    session: OrganizationSession = Depends(require_page("admin")),
    policy: RolePolicy = Depends(get_role_policy),
):
    """The role table as currently in effect."""
    return [_role_response(role, permissions) for role, permissions in policy.snapshot().items()]


@router.get("/{role}", response_model=RolePermissionsResponse)
async def get_role(
    role: str,
    session: OrganizationSession = Depends(require_page("admin")),
    policy: RolePolicy = Depends(get_role_policy),
):
    canonical = _canonical_role(role)
    return _role_response(canonical, policy.permissions_for_role(canonical))


@router.put("/{role}/permissions", response_model=RolePermissionsResponse)
async def update_role_permissions(
    role: str,
    data: PermissionSetPayload,
    auth: AuthContext = Depends(require_global_admin),
    policy: RolePolicy = Depends(get_role_policy),
):
    """Replace a role's whole permission set. Sessions resolved to the role pick it up at once."""
    canonical = _canonical_role(role)
    try:
        permissions = PermissionSet.from_mappings(data.pages, data.actions)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    policy.update_role_permissions(canonical, permissions)
    log_event("role_permissions_updated", role=canonical, updated_by=auth.user_id)
    return _role_response(canonical, permissions)
