from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.domain.errors import DirectoryUnavailable

InvitationStatus = Literal["active", "accepted", "replaced", "used", "pending"]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubAccountAssociation(BaseModel):
    """Legacy link between a member and the sub-account owner who invited them."""
    owner_id: str | None = None
    owner_name: str | None = None


class Principal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    email: str
    display_name: str | None = None
    email_verified: bool = False
    role: str | None = None
    organization_roles: dict[str, str] = Field(default_factory=dict)
    sub_account_owners: dict[str, SubAccountAssociation] = Field(default_factory=dict)
    active_organization_id: str | None = None
    created_at: datetime | None = None

    @field_validator("organization_roles", "sub_account_owners", mode="before")
    @classmethod
    def _null_map(cls, value: Any) -> Any:
        return {} if value is None else value

    def membership_entry(self, organization_id: str) -> "MembershipEntry | None":
        role = self.organization_roles.get(organization_id)
        if not role:
            return None
        return MembershipEntry(principal_id=self.id, organization_id=organization_id, role=role)

    def sub_account_association(self, organization_id: str) -> SubAccountAssociation | None:
        return self.sub_account_owners.get(organization_id)


class MembershipEntry(BaseModel):
    principal_id: str
    organization_id: str
    role: str


class Organization(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str
    owner_id: str = Field(min_length=1)
    owner_email: str | None = None
    members: list[str] = Field(default_factory=list)
    members_version: int = 0
    status: str = "active"
    ein: str | None = None
    created_at: datetime | None = None

    @field_validator("members", mode="before")
    @classmethod
    def _null_members(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("members_version", mode="before")
    @classmethod
    def _null_version(cls, value: Any) -> Any:
        return 0 if value is None else value

    def has_member(self, principal_id: str) -> bool:
        return principal_id == self.owner_id or principal_id in self.members


class Invitation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    token: str
    organization_id: str
    role: str = "member"
    status: InvitationStatus
    expires_at: datetime | None = None
    used_count: int = 0
    max_uses: int = 1
    created_by: str | None = None
    sub_account_owner_id: str | None = None
    sub_account_name: str | None = None
    last_used_by: str | None = None
    last_used_at: datetime | None = None
    created_at: datetime | None = None

    @field_validator("expires_at", "last_used_at", "created_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("used_count", mode="before")
    @classmethod
    def _null_count(cls, value: Any) -> Any:
        return 0 if value is None else value

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def is_exhausted(self) -> bool:
        return self.used_count >= self.max_uses


RecordT = TypeVar("RecordT", bound=BaseModel)


def parse_record(model: type[RecordT], document: Any, *, collection: str) -> RecordT:
    """Parse a raw directory document, mapping malformed shapes to DirectoryUnavailable."""
    if not isinstance(document, dict):
        raise DirectoryUnavailable(f"Malformed {collection} document", collection=collection)
    try:
        return model.model_validate(document)
    except ValidationError as exc:
        raise DirectoryUnavailable(
            f"Malformed {collection} document: {exc.error_count()} invalid field(s)",
            collection=collection,
            document_id=str(document.get("id")) if document.get("id") is not None else None,
        ) from exc
