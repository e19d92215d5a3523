from pydantic import BaseModel, Field
from datetime import datetime
from typing import Literal


class InvitationCreate(BaseModel):
    role: Literal["member", "sub_account_owner"] = "member"
    sub_account_name: str | None = None


class InvitationTokenRequest(BaseModel):
    token: str = Field(min_length=1)


class InvitationResponse(BaseModel):
    id: str
    token: str
    link: str
    organization_id: str
    role: str
    status: str
    expires_at: datetime | None
    used_count: int
    max_uses: int
    created_at: datetime | None = None


class InvitationPreview(BaseModel):
    organization_id: str
    organization_name: str | None
    role: str
    sub_account_name: str | None
    expires_at: datetime | None


class InvitationAcceptResponse(BaseModel):
    success: bool = True
    message: str
    organization_id: str
    role: str
