from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from src.auth.permissions import normalize_role

if TYPE_CHECKING:
    from src.services.organization_context import OrganizationSession


def _canonical(role: str) -> str | None:
    try:
        return normalize_role(role)
    except ValueError:
        return None


def can_access_page(session: OrganizationSession | None, name: str) -> bool:
    if session is None or session.permissions is None:
        return False
    return session.permissions.allows_page(name)


def can_perform_action(session: OrganizationSession | None, name: str) -> bool:
    if session is None or session.permissions is None:
        return False
    return session.permissions.allows_action(name)


def has_role(session: OrganizationSession | None, role: str) -> bool:
    """Compares against the effective role, which is organization-scoped when one is active."""
    if session is None or session.effective_role is None:
        return False
    return session.effective_role == _canonical(role)


def has_any_role(session: OrganizationSession | None, roles: Iterable[str]) -> bool:
    if session is None or session.effective_role is None or isinstance(roles, str):
        return False
    return session.effective_role in {_canonical(role) for role in roles}
