from pydantic import BaseModel, Field
from datetime import datetime
from typing import Literal

OrganizationRoleInput = Literal["member", "user", "sub_account_owner", "admin"]


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1)
    ein: str | None = None


class OrganizationResponse(BaseModel):
    id: str
    name: str
    owner_id: str
    status: str
    is_owner: bool
    is_active: bool
    created_at: datetime | None = None


class ActiveOrganizationResponse(BaseModel):
    state: str
    organization: OrganizationResponse | None
    role: str | None
    permissions: dict[str, dict[str, bool]] | None


class MemberResponse(BaseModel):
    id: str
    email: str
    display_name: str | None
    role: str
    sub_account_owner: str | None = None


class MemberRoleUpdate(BaseModel):
    role: OrganizationRoleInput
