from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Literal

from src.auth.permissions import PermissionSet, RolePolicy
from src.directory import OrganizationDirectory
from src.domain.errors import DirectoryUnavailable
from src.domain.records import Organization, Principal
from src.observability import incr_metric, log_event
from src.services.resolver import PermissionResolver, Resolution


class ContextState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    NO_ORGANIZATIONS = "no_organizations"
    HAS_ACTIVE_ORGANIZATION = "has_active_organization"


ContextEventKind = Literal[
    "organizations_loaded",
    "organization_switched",
    "organizations_refreshed",
    "permissions_updated",
]


@dataclass(frozen=True)
class ContextEvent:
    kind: ContextEventKind
    principal_id: str
    state: ContextState
    organization_id: str | None
    role: str | None
    permissions: PermissionSet | None


ContextListener = Callable[[ContextEvent], None]


class OrganizationSession:
    """Active-organization state for one signed-in principal.

    Every commit of a resolution is tagged with a generation number; a resolution
    that finishes after a newer switch was requested is dropped.
    """

    def __init__(
        self,
        principal_id: str,
        directory: OrganizationDirectory,
        resolver: PermissionResolver,
        policy: RolePolicy,
    ):
        self.principal_id = principal_id
        self.directory = directory
        self.resolver = resolver
        self.policy = policy
        self.state = ContextState.UNINITIALIZED
        self.organizations: list[Organization] = []
        self.active_organization: Organization | None = None
        self.resolution: Resolution | None = None
        self._generation = 0
        self._listeners: list[ContextListener] = []
        self._unsubscribe_policy = policy.subscribe(self._on_policy_updated)

    @property
    def effective_role(self) -> str | None:
        return self.resolution.role if self.resolution else None

    @property
    def permissions(self) -> PermissionSet | None:
        return self.resolution.permissions if self.resolution else None

    def organization(self, organization_id: str) -> Organization | None:
        return next((org for org in self.organizations if org.id == organization_id), None)

    def subscribe(self, listener: ContextListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, kind: ContextEventKind) -> None:
        event = ContextEvent(
            kind=kind,
            principal_id=self.principal_id,
            state=self.state,
            organization_id=self.active_organization.id if self.active_organization else None,
            role=self.effective_role,
            permissions=self.permissions,
        )
        for listener in list(self._listeners):
            listener(event)

    async def _fetch_organizations(self) -> list[Organization] | None:
        try:
            return await asyncio.to_thread(self.directory.list_organizations_for, self.principal_id)
        except DirectoryUnavailable as exc:
            log_event(
                "organization_list_unavailable",
                level=logging.WARNING,
                principal_id=self.principal_id,
                error=str(exc),
            )
            incr_metric("organization_context.list_failed")
            return None

    async def _commit(self, organization: Organization | None, kind: ContextEventKind) -> bool:
        self._generation += 1
        generation = self._generation
        self.active_organization = organization
        self.state = (
            ContextState.HAS_ACTIVE_ORGANIZATION if organization else ContextState.NO_ORGANIZATIONS
        )
        self.resolution = None

        resolution = await asyncio.to_thread(self.resolver.resolve, self.principal_id, organization)

        if generation != self._generation:
            log_event(
                "stale_resolution_dropped",
                principal_id=self.principal_id,
                organization_id=organization.id if organization else None,
            )
            incr_metric("organization_context.stale_resolution_dropped")
            return False
        # The role table may have changed while the resolver was running.
        self.resolution = resolution.with_permissions(
            self.policy.permissions_for_role(resolution.role)
        )
        self._publish(kind)
        return True

    async def load(self, hint: str | None = None) -> None:
        """Fetch memberships and activate the hinted organization, else the first one."""
        self._generation += 1
        generation = self._generation
        self.state = ContextState.LOADING
        self.active_organization = None
        self.resolution = None

        organizations = await self._fetch_organizations()
        if generation != self._generation:
            return
        self.organizations = organizations or []

        target = None
        if self.organizations:
            target = (self.organization(hint) if hint else None) or self.organizations[0]
        await self._commit(target, "organizations_loaded")

    async def switch_organization(self, organization_id: str) -> bool:
        """Activate one of the loaded memberships. Unknown ids are rejected without side effects."""
        target = None
        if self.state not in (ContextState.UNINITIALIZED, ContextState.LOADING):
            target = self.organization(organization_id)
        if target is None:
            log_event(
                "organization_switch_rejected",
                level=logging.WARNING,
                principal_id=self.principal_id,
                organization_id=organization_id,
                state=self.state.value,
            )
            incr_metric("organization_context.switch_rejected")
            return False

        committed = await self._commit(target, "organization_switched")
        if committed:
            try:
                await asyncio.to_thread(
                    self.directory.set_active_organization_hint, self.principal_id, target.id
                )
            except DirectoryUnavailable as exc:
                log_event(
                    "organization_hint_persist_failed",
                    level=logging.WARNING,
                    principal_id=self.principal_id,
                    organization_id=target.id,
                    error=str(exc),
                )
        return True

    async def refresh(self) -> None:
        organizations = await self._fetch_organizations()
        if organizations is None:
            return
        self.organizations = organizations
        if not organizations:
            await self._commit(None, "organizations_refreshed")
            return
        current = (
            self.organization(self.active_organization.id) if self.active_organization else None
        )
        await self._commit(current or organizations[0], "organizations_refreshed")

    async def reresolve(self) -> None:
        if self.state in (ContextState.UNINITIALIZED, ContextState.LOADING):
            return
        await self._commit(self.active_organization, "permissions_updated")

    async def on_role_entry_changed(self, organization_id: str) -> None:
        if self.active_organization is not None and self.active_organization.id == organization_id:
            await self.reresolve()

    def _on_policy_updated(self, role: str, permissions: PermissionSet) -> None:
        if self.resolution is None or self.resolution.role != role:
            return
        self.resolution = self.resolution.with_permissions(permissions)
        self._publish("permissions_updated")

    def close(self) -> None:
        self._unsubscribe_policy()
        self._listeners.clear()
        self._generation += 1
        self.state = ContextState.UNINITIALIZED
        self.organizations = []
        self.active_organization = None
        self.resolution = None


class SessionRegistry:
    """In-process organization contexts keyed by login session, sharing one role policy.

    Each access token carries its own session id, so two devices of one principal
    keep independent active organizations. Change notifications fan out by principal.
    """

    def __init__(self, policy: RolePolicy):
        self.policy = policy
        self._sessions: dict[str, OrganizationSession] = {}
        self._expires_at: dict[str, datetime] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, session_id: str) -> OrganizationSession | None:
        return self._sessions.get(session_id)

    def sessions_for(self, principal_id: str) -> list[OrganizationSession]:
        return [
            session for session in self._sessions.values() if session.principal_id == principal_id
        ]

    def _prune_expired(self) -> None:
        now = datetime.now(timezone.utc)
        for session_id, expires_at in list(self._expires_at.items()):
            if expires_at <= now:
                self.drop(session_id)

    async def session_for(
        self,
        principal: Principal,
        directory: OrganizationDirectory,
        *,
        session_id: str | None = None,
        expires_at: datetime | None = None,
    ) -> OrganizationSession:
        """The context for one login session, loaded on first use.

        Only concurrent first requests of the same session wait on each other.
        """
        key = session_id or principal.id
        self._prune_expired()
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            session = self._sessions.get(key)
            if session is None:
                session = OrganizationSession(
                    principal.id,
                    directory,
                    PermissionResolver(directory, self.policy),
                    self.policy,
                )
                self._sessions[key] = session
                if expires_at is not None:
                    self._expires_at[key] = expires_at
                await session.load(principal.active_organization_id)
            return session

    def drop(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        self._expires_at.pop(session_id, None)
        self._locks.pop(session_id, None)
        if session is not None:
            session.close()

    def drop_principal(self, principal_id: str) -> None:
        for session_id, session in list(self._sessions.items()):
            if session.principal_id == principal_id:
                self.drop(session_id)

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self.drop(session_id)

    async def notify_role_entry_changed(self, organization_id: str) -> None:
        for session in list(self._sessions.values()):
            await session.on_role_entry_changed(organization_id)

    async def notify_global_role_changed(self, principal_id: str) -> None:
        for session in self.sessions_for(principal_id):
            await session.reresolve()

    async def notify_membership_changed(self, principal_id: str) -> None:
        for session in self.sessions_for(principal_id):
            await session.refresh()
