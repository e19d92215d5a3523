from fastapi import APIRouter, Depends, HTTPException, status
from src.auth import AuthContext
from src.auth.dependencies import get_directory, get_session_registry, require_global_admin
from src.directory import OrganizationDirectory
from src.domain.errors import DirectoryUnavailable, directory_error_detail
from src.models.users import UserResponse, UserRoleUpdate
from src.observability import log_event
from src.services.organization_context import SessionRegistry

router = APIRouter(prefix="/api/users", tags=["users"])


def _unavailable(operation: str, exc: DirectoryUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=directory_error_detail(operation=operation, exc=exc),
    )


@router.get("/", response_model=list[UserResponse])
async def list_users(
    auth: AuthContext = Depends(require_global_admin),
    directory: OrganizationDirectory = Depends(get_directory),
):
    """List every registered principal."""
    try:
        principals = directory.list_principals()
    except DirectoryUnavailable as exc:
        raise _unavailable("list_users", exc) from exc
    return [principal.model_dump() for principal in principals]


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    auth: AuthContext = Depends(require_global_admin),
    directory: OrganizationDirectory = Depends(get_directory),
):
    try:
        principal = directory.get_principal(user_id)
    except DirectoryUnavailable as exc:
        raise _unavailable("get_user", exc) from exc
    if principal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return principal.model_dump()


@router.put("/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: str,
    data: UserRoleUpdate,
    auth: AuthContext = Depends(require_global_admin),
    directory: OrganizationDirectory = Depends(get_directory),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Change a principal's global role and re-resolve their live session."""
    try:
        principal = directory.set_global_role(user_id, data.role)
    except DirectoryUnavailable as exc:
        raise _unavailable("update_user_role", exc) from exc
    if principal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    await registry.notify_global_role_changed(user_id)
    log_event("global_role_updated", user_id=user_id, role=data.role, updated_by=auth.user_id)
    return principal.model_dump()


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    auth: AuthContext = Depends(require_global_admin),
    directory: OrganizationDirectory = Depends(get_directory),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Soft delete a user."""
    if user_id == auth.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete yourself")
    try:
        deleted = directory.soft_delete_principal(user_id)
    except DirectoryUnavailable as exc:
        raise _unavailable("delete_user", exc) from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    registry.drop_principal(user_id)
    return None
