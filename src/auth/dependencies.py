from datetime import datetime, timezone

from fastapi import Depends, Header, HTTPException, status
from src.auth.context import AuthContext
from src.auth.guards import can_access_page, can_perform_action, has_any_role, has_role
from src.auth.jwt import decode_access_token
from src.auth.permissions import ROLE_ADMIN, RolePolicy
from src.db import get_supabase
from src.directory import OrganizationDirectory
from src.domain.errors import DirectoryUnavailable, directory_error_detail
from src.observability import incr_metric, log_event
from src.services.accounts import AccountService, PasswordResetSender, log_password_reset_sender
from src.services.invitations import InvitationService
from src.services.organization_context import OrganizationSession, SessionRegistry

_sessions = SessionRegistry(RolePolicy.default())
_directory: OrganizationDirectory | None = None


def get_directory() -> OrganizationDirectory:
    global _directory
    if _directory is None:
        _directory = OrganizationDirectory(get_supabase())
    return _directory


def get_session_registry() -> SessionRegistry:
    return _sessions


def get_role_policy(registry: SessionRegistry = Depends(get_session_registry)) -> RolePolicy:
    return registry.policy


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def get_current_auth(
    authorization: str | None = Header(None),
    directory: OrganizationDirectory = Depends(get_directory),
) -> AuthContext:
    """JWT session auth. Loads the principal record on every request."""
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    try:
        principal = directory.get_principal(payload["sub"])
    except DirectoryUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=directory_error_detail(operation="load_principal", exc=exc),
        ) from exc
    if not principal:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    exp = payload.get("exp")
    return AuthContext(
        principal=principal,
        session_id=payload.get("sid") or principal.id,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


async def get_current_session(
    auth: AuthContext = Depends(get_current_auth),
    directory: OrganizationDirectory = Depends(get_directory),
    registry: SessionRegistry = Depends(get_session_registry),
) -> OrganizationSession:
    """Organization context for the caller's login session, loaded on first use."""
    return await registry.session_for(
        auth.principal, directory, session_id=auth.session_id, expires_at=auth.expires_at
    )


def _deny(session: OrganizationSession, kind: str, name: str, detail: str) -> HTTPException:
    incr_metric("guards.denied", kind=kind, guard=name)
    log_event(
        "guard_denied",
        principal_id=session.principal_id,
        organization_id=session.active_organization.id if session.active_organization else None,
        role=session.effective_role,
        state=session.state.value,
        kind=kind,
        guard=name,
    )
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def require_page(page: str):
    async def _require(session: OrganizationSession = Depends(get_current_session)) -> OrganizationSession:
        if not can_access_page(session, page):
            raise _deny(session, "page", page, f"Page access required: {page}")
        return session

    return _require


def require_action(action: str):
    async def _require(session: OrganizationSession = Depends(get_current_session)) -> OrganizationSession:
        if not can_perform_action(session, action):
            raise _deny(session, "action", action, f"Permission required: {action}")
        return session

    return _require


def require_role(role: str):
    async def _require(session: OrganizationSession = Depends(get_current_session)) -> OrganizationSession:
        if not has_role(session, role):
            raise _deny(session, "role", role, f"Role required: {role}")
        return session

    return _require


def require_any_role(*roles: str):
    async def _require(session: OrganizationSession = Depends(get_current_session)) -> OrganizationSession:
        if not has_any_role(session, roles):
            raise _deny(session, "any_role", ",".join(roles), f"One of roles required: {', '.join(roles)}")
        return session

    return _require


def get_account_service(directory: OrganizationDirectory = Depends(get_directory)) -> AccountService:
    return AccountService(directory.client, directory)


def get_password_reset_sender() -> PasswordResetSender:
    return log_password_reset_sender


def get_invitation_service(
    directory: OrganizationDirectory = Depends(get_directory),
) -> InvitationService:
    return InvitationService(directory.client, directory)


async def require_global_admin(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    """Process-wide administration keys off the stored global role, not an organization role."""
    if auth.global_role != ROLE_ADMIN:
        incr_metric("guards.denied", kind="global_role", guard=ROLE_ADMIN)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return auth
