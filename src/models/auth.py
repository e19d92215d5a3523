from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str | None = None
    organization_name: str | None = Field(default=None, min_length=1)
    ein: str | None = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=6)


class PrincipalResponse(BaseModel):
    id: str
    email: str
    display_name: str | None
    email_verified: bool


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    access_token: str
    token_type: str = "bearer"
    user: PrincipalResponse


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class MeResponse(BaseModel):
    user_id: str
    email: str
    global_role: str
    role: str | None
    state: str
    organization_id: str | None
    permissions: dict[str, dict[str, bool]] | None
