from fastapi import APIRouter, Depends, HTTPException, status
from src.auth import AuthContext, create_access_token
from src.auth.dependencies import (
    get_account_service,
    get_current_auth,
    get_current_session,
    get_password_reset_sender,
    get_session_registry,
)
from src.config import settings
from src.domain.errors import DirectoryUnavailable, directory_error_detail
from src.domain.records import Principal
from src.models.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PrincipalResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from src.services.accounts import AccountService, EmailAlreadyRegistered, PasswordResetSender
from src.services.organization_context import OrganizationSession, SessionRegistry

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _principal_response(principal: Principal) -> PrincipalResponse:
    return PrincipalResponse(
        id=principal.id,
        email=principal.email,
        display_name=principal.display_name,
        email_verified=principal.email_verified,
    )


def _unavailable(operation: str, exc: DirectoryUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=directory_error_detail(operation=operation, exc=exc),
    )


@router.post("/register", response_model=LoginResponse)
async def register(data: RegisterRequest, accounts: AccountService = Depends(get_account_service)):
    """Register a principal. Supplying organization_name registers an account owner."""
    try:
        registration = accounts.register(
            email=data.email,
            password=data.password,
            display_name=data.name,
            organization_name=data.organization_name,
            ein=data.ein,
        )
    except EmailAlreadyRegistered:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email is already registered",
        )
    except DirectoryUnavailable as exc:
        raise _unavailable("register", exc) from exc

    principal = registration.principal
    return LoginResponse(
        message="Registration successful",
        access_token=create_access_token(principal.id, principal.email),
        user=_principal_response(principal),
    )


@router.post("/login", response_model=LoginResponse)
async def login(data: LoginRequest, accounts: AccountService = Depends(get_account_service)):
    """Login with email and password, returns JWT."""
    try:
        principal = accounts.authenticate(data.email, data.password)
    except DirectoryUnavailable as exc:
        raise _unavailable("login", exc) from exc

    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    return LoginResponse(
        message="Login successful",
        access_token=create_access_token(principal.id, principal.email),
        user=_principal_response(principal),
    )


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    data: ForgotPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
    send_reset: PasswordResetSender = Depends(get_password_reset_sender),
):
    """Issue a reset token and hand the link to the sender. The response is identical for unknown emails."""
    try:
        issued = accounts.issue_password_reset(data.email)
    except DirectoryUnavailable as exc:
        raise _unavailable("forgot_password", exc) from exc

    if issued is not None:
        principal, token = issued
        send_reset(principal, f"{settings.public_app_url}/reset-password?token={token}")
    return MessageResponse(message="If that email is registered, reset instructions have been sent")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    try:
        reset = accounts.reset_password(data.token, data.password)
    except DirectoryUnavailable as exc:
        raise _unavailable("reset_password", exc) from exc

    if not reset:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token",
        )
    return MessageResponse(message="Password has been reset")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    auth: AuthContext = Depends(get_current_auth),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Discard the caller's organization context. The JWT itself expires on its own."""
    registry.drop(auth.session_id)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=MeResponse)
async def get_me(
    auth: AuthContext = Depends(get_current_auth),
    session: OrganizationSession = Depends(get_current_session),
):
    """Current principal with effective role and permissions."""
    return MeResponse(
        user_id=auth.user_id,
        email=auth.email,
        global_role=auth.global_role,
        role=session.effective_role,
        state=session.state.value,
        organization_id=session.active_organization.id if session.active_organization else None,
        permissions=session.permissions.as_dict() if session.permissions else None,
    )
