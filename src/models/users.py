from pydantic import BaseModel, field_validator
from datetime import datetime
from typing import Literal
from src.auth.permissions import coerce_role, normalize_role


RoleInput = Literal["user", "member", "admin", "account_owner", "sub_account_owner"]
RoleCanonical = Literal["user", "admin", "account_owner", "sub_account_owner"]


class UserRoleUpdate(BaseModel):
    role: RoleInput

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: object) -> str:
        if not isinstance(value, str):
            raise ValueError("role must be a string")
        return normalize_role(value)


class UserResponse(BaseModel):
    id: str
    email: str
    display_name: str | None
    email_verified: bool
    role: RoleCanonical
    created_at: datetime | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: str | None) -> str:
        return coerce_role(value)
