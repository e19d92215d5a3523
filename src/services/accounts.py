from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import bcrypt as bcrypt_lib

from src.config import settings
from src.directory import OrganizationDirectory
from src.domain.errors import DirectoryUnavailable
from src.domain.records import Organization, Principal
from src.observability import log_event


def hash_password(password: str) -> str:
    """Hash password using bcrypt."""
    return bcrypt_lib.hashpw(password.encode(), bcrypt_lib.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Verify password against hash."""
    try:
        return bcrypt_lib.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


def _hash_token(token: str) -> str:
    """SHA-256 hash a token for lookup."""
    return hashlib.sha256(token.encode()).hexdigest()


PasswordResetSender = Callable[[Principal, str], None]


def log_password_reset_sender(principal: Principal, reset_url: str) -> None:
    """Default delivery. Records that a link was issued; the link itself never leaves the process."""
    # TODO: send reset_url by email once an email provider is configured.
    log_event(
        "password_reset_delivery_pending",
        level=logging.WARNING,
        principal_id=principal.id,
    )


class EmailAlreadyRegistered(Exception):
    pass


@dataclass(frozen=True)
class Registration:
    principal: Principal
    organization: Organization | None


class AccountService:
    def __init__(self, client: Any, directory: OrganizationDirectory):
        self.client = client
        self.directory = directory

    def register(
        self,
        *,
        email: str,
        password: str,
        display_name: str | None = None,
        organization_name: str | None = None,
        ein: str | None = None,
    ) -> Registration:
        """Create a principal; with an organization name the principal also becomes its owner."""
        if self.directory.email_exists(email):
            raise EmailAlreadyRegistered(email)
        principal = self.directory.create_principal(
            email=email,
            password_hash=hash_password(password),
            display_name=display_name or email.split("@")[0],
        )
        organization = None
        if organization_name:
            organization = self.directory.create_organization(
                owner=principal, name=organization_name, ein=ein
            )
        log_event(
            "principal_registered",
            principal_id=principal.id,
            organization_id=organization.id if organization else None,
        )
        return Registration(principal=principal, organization=organization)

    def authenticate(self, email: str, password: str) -> Principal | None:
        credentials = self.directory.get_credentials(email)
        if credentials is None:
            return None
        principal, password_hash = credentials
        if not verify_password(password, password_hash):
            return None
        return principal

    def _resets(self):
        return self.client.table("password_resets")

    def issue_password_reset(self, email: str) -> tuple[Principal, str] | None:
        """Returns the principal and raw reset token, or None when the email is unknown."""
        credentials = self.directory.get_credentials(email)
        if credentials is None:
            return None
        principal, _ = credentials
        raw_token = secrets.token_urlsafe(32)
        expires_at = datetime.now(timezone.utc) + timedelta(
            minutes=settings.password_reset_expiry_minutes
        )
        try:
            self._resets().insert({
                "user_id": principal.id,
                "token_hash": _hash_token(raw_token),
                "expires_at": expires_at.isoformat(),
            }).execute()
        except Exception as exc:
            raise DirectoryUnavailable(
                f"Password reset store request failed: {exc}", collection="password_resets"
            ) from exc
        log_event("password_reset_issued", principal_id=principal.id)
        return principal, raw_token

    def reset_password(self, token: str, new_password: str) -> bool:
        token_hash = _hash_token(token)
        try:
            result = self._resets().select("id, user_id, expires_at, used_at").eq(
                "token_hash", token_hash
            ).is_("used_at", "null").execute()
        except Exception as exc:
            raise DirectoryUnavailable(
                f"Password reset store request failed: {exc}", collection="password_resets"
            ) from exc
        if not result.data:
            return False

        record = result.data[0]
        expires_at = datetime.fromisoformat(record["expires_at"].replace("Z", "+00:00"))
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            return False

        if not self.directory.set_password_hash(record["user_id"], hash_password(new_password)):
            return False
        try:
            self._resets().update({
                "used_at": datetime.now(timezone.utc).isoformat()
            }).eq("id", record["id"]).execute()
        except Exception as exc:
            raise DirectoryUnavailable(
                f"Password reset store request failed: {exc}", collection="password_resets"
            ) from exc
        log_event("password_reset_completed", principal_id=record["user_id"])
        return True
