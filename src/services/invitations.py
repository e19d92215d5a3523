from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from src.config import settings
from src.directory import OrganizationDirectory
from src.domain.errors import (
    DirectoryUnavailable,
    InvitationRejected,
    InvitationRejection,
)
from src.domain.records import Invitation, Organization, Principal, parse_record
from src.observability import incr_metric, log_event

INVITABLE_ROLES = ("member", "sub_account_owner")


def _reject(reason, message: str) -> InvitationRejection:
    incr_metric("invitations.rejected", reason=reason)
    return InvitationRejection(reason=reason, message=message)


@dataclass(frozen=True)
class Redemption:
    invitation: Invitation
    organization: Organization


class InvitationService:
    """Token-indexed invitation lifecycle: active -> accepted, or active -> replaced."""

    def __init__(
        self,
        client: Any,
        directory: OrganizationDirectory,
        *,
        allow_legacy_status_lookup: bool | None = None,
        expiry_days: int | None = None,
        max_uses: int | None = None,
    ):
        self.client = client
        self.directory = directory
        self.allow_legacy_status_lookup = (
            settings.invitation_allow_legacy_status_lookup
            if allow_legacy_status_lookup is None
            else allow_legacy_status_lookup
        )
        self.expiry_days = settings.invitation_expiry_days if expiry_days is None else expiry_days
        self.max_uses = settings.invitation_max_uses if max_uses is None else max_uses

    def _table(self):
        return self.client.table("invitations")

    def _query(self, operation):
        try:
            return operation()
        except Exception as exc:
            raise DirectoryUnavailable(
                f"Invitation store request failed: {exc}", collection="invitations"
            ) from exc

    def _find(self, token: str, *, status: str | None) -> Invitation | None:
        def _select():
            query = self._table().select("*").eq("token", token)
            if status is not None:
                query = query.eq("status", status)
            return query.execute()

        result = self._query(_select)
        if not result.data:
            return None
        return parse_record(Invitation, result.data[0], collection="invitations")

    def validate_invitation(
        self, token: str, *, now: datetime | None = None
    ) -> Invitation | InvitationRejection:
        """Check, in order: existence, status, expiry, remaining uses."""
        now = now or datetime.now(timezone.utc)
        invitation = self._find(token, status="active")
        if invitation is None:
            legacy = self._find(token, status=None)
            if legacy is None:
                return _reject("not_found", "Invalid or expired invitation link")
            if not self.allow_legacy_status_lookup:
                return _reject("not_active", "This invitation is no longer active")
            invitation = legacy

        if invitation.is_expired(now):
            return _reject("expired", "This invitation has expired. Please request a new invitation.")
        if invitation.is_exhausted():
            return _reject("exhausted", "This invitation has already been used")
        return invitation

    def create_invitation(
        self,
        *,
        organization: Organization,
        inviter: Principal,
        role: str = "member",
        sub_account_name: str | None = None,
    ) -> Invitation:
        if role not in INVITABLE_ROLES:
            raise ValueError(f"Unsupported invitation role: {role}")
        now = datetime.now(timezone.utc)
        insert_data = {
            "token": secrets.token_urlsafe(32),
            "organization_id": organization.id,
            "role": role,
            "status": "active",
            "expires_at": (now + timedelta(days=self.expiry_days)).isoformat(),
            "used_count": 0,
            "max_uses": self.max_uses,
            "created_by": inviter.id,
            "sub_account_owner_id": inviter.id if sub_account_name else None,
            "sub_account_name": sub_account_name,
        }
        result = self._query(lambda: self._table().insert(insert_data).execute())
        invitation = parse_record(Invitation, result.data[0], collection="invitations")
        log_event(
            "invitation_created",
            invitation_id=invitation.id,
            organization_id=organization.id,
            role=role,
        )
        return invitation

    def get_active_invitation(self, organization_id: str) -> Invitation | None:
        result = self._query(
            lambda: self._table().select("*").eq("organization_id", organization_id).eq(
                "status", "active"
            ).order("created_at", desc=True).limit(1).execute()
        )
        if not result.data:
            return None
        return parse_record(Invitation, result.data[0], collection="invitations")

    def regenerate_invitation(
        self,
        *,
        organization: Organization,
        inviter: Principal,
        role: str = "member",
        sub_account_name: str | None = None,
    ) -> Invitation:
        """Retire every active invitation of the organization and issue a new one."""
        self._query(
            lambda: self._table().update({"status": "replaced"}).eq(
                "organization_id", organization.id
            ).eq("status", "active").execute()
        )
        return self.create_invitation(
            organization=organization,
            inviter=inviter,
            role=role,
            sub_account_name=sub_account_name,
        )

    def _consume(self, invitation: Invitation, principal_id: str) -> bool:
        """Compare-and-swap on (status, used_count); False when another redemption got there first."""
        used_count = invitation.used_count + 1
        update_data = {
            "used_count": used_count,
            "status": "accepted" if used_count >= invitation.max_uses else invitation.status,
            "last_used_by": principal_id,
            "last_used_at": datetime.now(timezone.utc).isoformat(),
        }
        result = self._query(
            lambda: self._table().update(update_data).eq("id", invitation.id).eq(
                "status", invitation.status
            ).eq("used_count", invitation.used_count).execute()
        )
        return bool(result.data)

    def _release(
        self, invitation: Invitation, principal_id: str, joined: Organization | None
    ) -> None:
        """Undo a consume whose membership writes failed, so the token can be redeemed again."""
        restore = invitation.model_dump(
            mode="json", include={"used_count", "status", "last_used_by", "last_used_at"}
        )
        try:
            if joined is not None:
                self.directory.remove_member(joined, principal_id)
            self._query(
                lambda: self._table().update(restore).eq("id", invitation.id).eq(
                    "used_count", invitation.used_count + 1
                ).execute()
            )
        except DirectoryUnavailable as exc:
            log_event(
                "invitation_release_failed",
                level=logging.ERROR,
                invitation_id=invitation.id,
                principal_id=principal_id,
                error=str(exc),
            )
            incr_metric("invitations.release_failed")
            return
        log_event(
            "invitation_released",
            level=logging.WARNING,
            invitation_id=invitation.id,
            principal_id=principal_id,
        )

    def redeem_invitation(self, token: str, principal: Principal) -> Redemption:
        validated = self.validate_invitation(token)
        if isinstance(validated, InvitationRejection):
            raise InvitationRejected(validated)
        invitation = validated

        organization = self.directory.get_organization(invitation.organization_id)
        if organization is None:
            raise InvitationRejected(_reject("not_found", "Organization not found"))
        if organization.has_member(principal.id):
            raise InvitationRejected(
                _reject("already_member", "You are already a member of this organization")
            )

        if not self._consume(invitation, principal.id):
            log_event(
                "invitation_redemption_conflict",
                level=logging.WARNING,
                invitation_id=invitation.id,
                principal_id=principal.id,
            )
            raise InvitationRejected(
                _reject("already_consumed", "This invitation has already been used")
            )

        sub_account = None
        if invitation.sub_account_owner_id and invitation.sub_account_name:
            sub_account = {
                "owner_id": invitation.sub_account_owner_id,
                "owner_name": invitation.sub_account_name,
            }
        joined = False
        try:
            joined = self.directory.add_member(organization, principal.id)
            self.directory.set_organization_role(
                principal, organization.id, invitation.role, sub_account=sub_account
            )
        except DirectoryUnavailable:
            self._release(invitation, principal.id, organization if joined else None)
            raise
        log_event(
            "invitation_redeemed",
            invitation_id=invitation.id,
            organization_id=organization.id,
            principal_id=principal.id,
            role=invitation.role,
        )
        incr_metric("invitations.redeemed")
        return Redemption(invitation=invitation, organization=organization)
