from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from src.domain.errors import DirectoryUnavailable
from src.domain.records import Organization, Principal, parse_record

T = TypeVar("T")

MEMBERSHIP_WRITE_ATTEMPTS = 3

PRINCIPAL_FIELDS = (
    "id, email, display_name, email_verified, role, organization_roles, "
    "sub_account_owners, active_organization_id, created_at"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OrganizationDirectory:
    """Typed access to the users and organizations tables."""

    def __init__(self, client: Any):
        self.client = client

    def _run(self, collection: str, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except DirectoryUnavailable:
            raise
        except Exception as exc:
            raise DirectoryUnavailable(
                f"Directory request failed for {collection}: {exc}",
                collection=collection,
            ) from exc

    def _users(self):
        return self.client.table("users")

    def _organizations(self):
        return self.client.table("organizations")

    # --- principals ---

    def get_principal(self, principal_id: str) -> Principal | None:
        result = self._run(
            "users",
            lambda: self._users().select(PRINCIPAL_FIELDS).eq("id", principal_id).is_(
                "deleted_at", "null"
            ).execute(),
        )
        if not result.data:
            return None
        return parse_record(Principal, result.data[0], collection="users")

    def get_credentials(self, email: str) -> tuple[Principal, str] | None:
        """Principal plus stored password hash, for login."""
        result = self._run(
            "users",
            lambda: self._users().select(f"{PRINCIPAL_FIELDS}, password_hash").eq(
                "email", email.lower()
            ).is_("deleted_at", "null").execute(),
        )
        if not result.data:
            return None
        row = result.data[0]
        password_hash = row.get("password_hash")
        if not password_hash:
            return None
        return parse_record(Principal, row, collection="users"), password_hash

    def email_exists(self, email: str) -> bool:
        result = self._run(
            "users",
            lambda: self._users().select("id").eq("email", email.lower()).execute(),
        )
        return bool(result.data)

    def create_principal(
        self,
        *,
        email: str,
        password_hash: str,
        display_name: str | None,
        role: str = "user",
    ) -> Principal:
        insert_data = {
            "email": email.lower(),
            "password_hash": password_hash,
            "display_name": display_name,
            "email_verified": False,
            "role": role,
            "organization_roles": {},
            "sub_account_owners": {},
        }
        result = self._run("users", lambda: self._users().insert(insert_data).execute())
        return parse_record(Principal, result.data[0], collection="users")

    def list_principals(self) -> list[Principal]:
        result = self._run(
            "users",
            lambda: self._users().select(PRINCIPAL_FIELDS).is_("deleted_at", "null").order(
                "created_at"
            ).execute(),
        )
        return [parse_record(Principal, row, collection="users") for row in result.data or []]

    def _update_principal(self, principal_id: str, update_data: dict) -> Principal | None:
        update_data["updated_at"] = _now()
        result = self._run(
            "users",
            lambda: self._users().update(update_data).eq("id", principal_id).is_(
                "deleted_at", "null"
            ).execute(),
        )
        if not result.data:
            return None
        return parse_record(Principal, result.data[0], collection="users")

    def set_global_role(self, principal_id: str, role: str) -> Principal | None:
        return self._update_principal(principal_id, {"role": role})

    def set_password_hash(self, principal_id: str, password_hash: str) -> bool:
        return self._update_principal(principal_id, {"password_hash": password_hash}) is not None

    def set_active_organization_hint(self, principal_id: str, organization_id: str | None) -> None:
        self._update_principal(principal_id, {"active_organization_id": organization_id})

    def soft_delete_principal(self, principal_id: str) -> bool:
        return self._update_principal(principal_id, {"deleted_at": _now()}) is not None

    def set_organization_role(
        self,
        principal: Principal,
        organization_id: str,
        role: str,
        *,
        sub_account: dict | None = None,
    ) -> Principal | None:
        # Read-modify-write of the role map; the directory offers no multi-document transaction.
        organization_roles = dict(principal.organization_roles)
        organization_roles[organization_id] = role
        update_data: dict[str, Any] = {"organization_roles": organization_roles}
        if sub_account is not None:
            sub_account_owners = {
                org_id: association.model_dump()
                for org_id, association in principal.sub_account_owners.items()
            }
            sub_account_owners[organization_id] = sub_account
            update_data["sub_account_owners"] = sub_account_owners
        return self._update_principal(principal.id, update_data)

    def clear_organization_role(self, principal: Principal, organization_id: str) -> Principal | None:
        organization_roles = {
            org_id: role
            for org_id, role in principal.organization_roles.items()
            if org_id != organization_id
        }
        sub_account_owners = {
            org_id: association.model_dump()
            for org_id, association in principal.sub_account_owners.items()
            if org_id != organization_id
        }
        update_data: dict[str, Any] = {
            "organization_roles": organization_roles,
            "sub_account_owners": sub_account_owners,
        }
        if principal.active_organization_id == organization_id:
            update_data["active_organization_id"] = None
        return self._update_principal(principal.id, update_data)

    # --- organizations ---

    def get_organization(self, organization_id: str) -> Organization | None:
        result = self._run(
            "organizations",
            lambda: self._organizations().select("*").eq("id", organization_id).execute(),
        )
        if not result.data:
            return None
        return parse_record(Organization, result.data[0], collection="organizations")

    def list_organizations_for(self, principal_id: str) -> list[Organization]:
        """Owned organizations first, then organizations listing the principal as a member."""
        owned = self._run(
            "organizations",
            lambda: self._organizations().select("*").eq("owner_id", principal_id).order(
                "created_at"
            ).execute(),
        )
        member_of = self._run(
            "organizations",
            lambda: self._organizations().select("*").contains(
                "members", [principal_id]
            ).order("created_at").execute(),
        )
        organizations: dict[str, Organization] = {}
        for row in (owned.data or []) + (member_of.data or []):
            organization = parse_record(Organization, row, collection="organizations")
            organizations.setdefault(organization.id, organization)
        return list(organizations.values())

    def create_organization(
        self,
        *,
        owner: Principal,
        name: str,
        ein: str | None = None,
    ) -> Organization:
        insert_data = {
            "name": name,
            "ein": ein,
            "owner_id": owner.id,
            "owner_email": owner.email,
            "members": [owner.id],
            "members_version": 0,
            "status": "active",
        }
        result = self._run(
            "organizations", lambda: self._organizations().insert(insert_data).execute()
        )
        return parse_record(Organization, result.data[0], collection="organizations")

    def _update_members(
        self,
        organization_id: str,
        change: Callable[[Organization], list[str] | None],
    ) -> bool:
        """Read-modify-write of the members array, conditional on members_version.

        `change` returns the new list, or None to leave the document alone.
        """
        for _ in range(MEMBERSHIP_WRITE_ATTEMPTS):
            current = self.get_organization(organization_id)
            if current is None:
                return False
            members = change(current)
            if members is None:
                return False
            result = self._run(
                "organizations",
                lambda: self._organizations().update({
                    "members": members,
                    "members_version": current.members_version + 1,
                    "updated_at": _now(),
                }).eq("id", organization_id).eq(
                    "members_version", current.members_version
                ).execute(),
            )
            if result.data:
                return True
        raise DirectoryUnavailable(
            f"Membership of {organization_id} kept changing during update",
            collection="organizations",
            document_id=organization_id,
        )

    def add_member(self, organization: Organization, principal_id: str) -> bool:
        """Returns False when the principal already belongs to the organization."""

        def _append(current: Organization) -> list[str] | None:
            if current.has_member(principal_id):
                return None
            return [*current.members, principal_id]

        return self._update_members(organization.id, _append)

    def remove_member(self, organization: Organization, principal_id: str) -> bool:
        def _without(current: Organization) -> list[str] | None:
            if principal_id not in current.members:
                return None
            return [member for member in current.members if member != principal_id]

        return self._update_members(organization.id, _without)

    def list_members(self, organization: Organization) -> list[Principal]:
        member_ids = list(dict.fromkeys([organization.owner_id, *organization.members]))
        result = self._run(
            "users",
            lambda: self._users().select(PRINCIPAL_FIELDS).in_("id", member_ids).is_(
                "deleted_at", "null"
            ).execute(),
        )
        return [parse_record(Principal, row, collection="users") for row in result.data or []]
