from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from src.auth.permissions import (
    ROLE_ACCOUNT_OWNER,
    ROLE_USER,
    PermissionSet,
    RolePolicy,
    coerce_role,
)
from src.directory import OrganizationDirectory
from src.domain.errors import DirectoryUnavailable
from src.domain.records import Organization, Principal
from src.observability import incr_metric, log_event

ResolutionSource = Literal[
    "global",
    "owner",
    "organization_role",
    "sub_account",
    "membership_default",
    "fallback",
]


def organization_role(principal: Principal, organization: Organization) -> tuple[str, ResolutionSource]:
    """Role a principal holds inside one organization. The owner is always account_owner."""
    if principal.id == organization.owner_id:
        return ROLE_ACCOUNT_OWNER, "owner"
    entry = principal.membership_entry(organization.id)
    if entry is not None:
        return entry.role, "organization_role"
    if principal.sub_account_association(organization.id) is not None:
        return "member", "sub_account"
    return "member", "membership_default"


@dataclass(frozen=True)
class Resolution:
    principal_id: str
    organization_id: str | None
    role: str
    permissions: PermissionSet
    source: ResolutionSource

    def with_permissions(self, permissions: PermissionSet) -> "Resolution":
        return Resolution(
            principal_id=self.principal_id,
            organization_id=self.organization_id,
            role=self.role,
            permissions=permissions,
            source=self.source,
        )


class PermissionResolver:
    """Computes the effective role and permission set for a principal and optional organization.

    Never raises: directory failures degrade to the least-privileged role.
    """

    def __init__(self, directory: OrganizationDirectory, policy: RolePolicy):
        self.directory = directory
        self.policy = policy

    def resolve(self, principal_id: str, organization: Organization | None = None) -> Resolution:
        organization_id = organization.id if organization else None
        try:
            role, source = self._effective_role(principal_id, organization)
        except DirectoryUnavailable as exc:
            log_event(
                "permission_resolution_fallback",
                level=logging.WARNING,
                principal_id=principal_id,
                organization_id=organization_id,
                collection=exc.collection,
                error=str(exc),
            )
            incr_metric("permissions.resolution.fallback")
            role, source = ROLE_USER, "fallback"
        role = coerce_role(role)
        return Resolution(
            principal_id=principal_id,
            organization_id=organization_id,
            role=role,
            permissions=self.policy.permissions_for_role(role),
            source=source,
        )

    def _effective_role(
        self, principal_id: str, organization: Organization | None
    ) -> tuple[str, ResolutionSource]:
        if organization is not None and organization.owner_id == principal_id:
            return ROLE_ACCOUNT_OWNER, "owner"

        principal = self.directory.get_principal(principal_id)
        if principal is None:
            raise DirectoryUnavailable(
                "Principal record not found", collection="users", document_id=principal_id
            )

        if organization is None:
            return principal.role or ROLE_USER, "global"

        return organization_role(principal, organization)
