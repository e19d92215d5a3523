from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Final, Mapping

ROLE_USER: Final[str] = "user"
ROLE_ADMIN: Final[str] = "admin"
ROLE_ACCOUNT_OWNER: Final[str] = "account_owner"
ROLE_SUB_ACCOUNT_OWNER: Final[str] = "sub_account_owner"

LEGACY_ROLE_ALIASES: Final[dict[str, str]] = {
    "member": ROLE_USER,
}

CANONICAL_ROLES: Final[tuple[str, ...]] = (
    ROLE_USER,
    ROLE_ADMIN,
    ROLE_ACCOUNT_OWNER,
    ROLE_SUB_ACCOUNT_OWNER,
)

PAGES: Final[tuple[str, ...]] = (
    "home",
    "about",
    "profile",
    "admin",
    "users",
    "reports",
    "settings",
    "invitations",
    "billing",
    "account_owner",
)

CREATE_USER: Final[str] = "create_user"
EDIT_USER: Final[str] = "edit_user"
DELETE_USER: Final[str] = "delete_user"
VIEW_USERS: Final[str] = "view_users"
MANAGE_ROLES: Final[str] = "manage_roles"
EXPORT_DATA: Final[str] = "export_data"
VIEW_ANALYTICS: Final[str] = "view_analytics"
SYSTEM_SETTINGS: Final[str] = "system_settings"
MANAGE_INVITATIONS: Final[str] = "manage_invitations"
MANAGE_BILLING: Final[str] = "manage_billing"
DELETE_ACCOUNT: Final[str] = "delete_account"
TRANSFER_OWNERSHIP: Final[str] = "transfer_ownership"

ACTIONS: Final[tuple[str, ...]] = (
    CREATE_USER,
    EDIT_USER,
    DELETE_USER,
    VIEW_USERS,
    MANAGE_ROLES,
    EXPORT_DATA,
    VIEW_ANALYTICS,
    SYSTEM_SETTINGS,
    MANAGE_INVITATIONS,
    MANAGE_BILLING,
    DELETE_ACCOUNT,
    TRANSFER_OWNERSHIP,
)

_BASE_PAGES: Final[set[str]] = {"home", "about", "profile"}
_ADMIN_PAGES: Final[set[str]] = _BASE_PAGES | {"admin", "users", "reports", "settings"}
_ADMIN_ACTIONS: Final[set[str]] = {
    CREATE_USER,
    EDIT_USER,
    DELETE_USER,
    VIEW_USERS,
    MANAGE_ROLES,
    EXPORT_DATA,
    VIEW_ANALYTICS,
    SYSTEM_SETTINGS,
}

DEFAULT_ROLE_GRANTS: Final[dict[str, tuple[set[str], set[str]]]] = {
    ROLE_USER: (_BASE_PAGES, set()),
    ROLE_ADMIN: (_ADMIN_PAGES, _ADMIN_ACTIONS),
    ROLE_ACCOUNT_OWNER: (
        _ADMIN_PAGES | {"invitations", "billing", "account_owner"},
        _ADMIN_ACTIONS | {MANAGE_INVITATIONS, MANAGE_BILLING},
    ),
    ROLE_SUB_ACCOUNT_OWNER: (
        _BASE_PAGES | {"invitations", "billing"},
        {MANAGE_INVITATIONS, MANAGE_BILLING},
    ),
}


def normalize_role(role: str | None) -> str:
    """Canonical role name. Raises ValueError for anything outside the enumeration."""
    if role is not None and not isinstance(role, str):
        raise ValueError(f"Unsupported role: {role!r}")
    raw = (role or "").strip().lower()
    normalized = LEGACY_ROLE_ALIASES.get(raw, raw)
    if normalized not in CANONICAL_ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def coerce_role(role: str | None) -> str:
    """Like normalize_role, but unknown or missing roles fall back to least privilege."""
    try:
        return normalize_role(role)
    except ValueError:
        return ROLE_USER


@dataclass(frozen=True)
class PermissionSet:
    pages: Mapping[str, bool] = field(default_factory=dict)
    actions: Mapping[str, bool] = field(default_factory=dict)

    @classmethod
    def from_grants(cls, pages: set[str], actions: set[str]) -> "PermissionSet":
        return cls(
            pages={name: name in pages for name in PAGES},
            actions={name: name in actions for name in ACTIONS},
        )

    @classmethod
    def from_mappings(cls, pages: Mapping[str, bool], actions: Mapping[str, bool]) -> "PermissionSet":
        """Build a full set from partial mappings. Unknown names are rejected, missing ones deny."""
        unknown_pages = set(pages) - set(PAGES)
        unknown_actions = set(actions) - set(ACTIONS)
        if unknown_pages or unknown_actions:
            raise ValueError(
                f"Unknown permission names: {sorted(unknown_pages | unknown_actions)}"
            )
        return cls(
            pages={name: bool(pages.get(name, False)) for name in PAGES},
            actions={name: bool(actions.get(name, False)) for name in ACTIONS},
        )

    def allows_page(self, name: str) -> bool:
        return self.pages.get(name, False) is True

    def allows_action(self, name: str) -> bool:
        return self.actions.get(name, False) is True

    def as_dict(self) -> dict[str, dict[str, bool]]:
        return {"pages": dict(self.pages), "actions": dict(self.actions)}


PolicyListener = Callable[[str, PermissionSet], None]


class RolePolicy:
    """Role table. Each role maps to exactly one PermissionSet, replaced as a whole on update."""

    def __init__(self, table: Mapping[str, PermissionSet]):
        missing = set(CANONICAL_ROLES) - set(table)
        if missing:
            raise ValueError(f"Role table missing roles: {sorted(missing)}")
        self._lock = Lock()
        self._table: dict[str, PermissionSet] = {role: table[role] for role in CANONICAL_ROLES}
        self._listeners: list[PolicyListener] = []

    @classmethod
    def default(cls) -> "RolePolicy":
        return cls(
            {
                role: PermissionSet.from_grants(pages, actions)
                for role, (pages, actions) in DEFAULT_ROLE_GRANTS.items()
            }
        )

    def roles(self) -> list[str]:
        return list(CANONICAL_ROLES)

    def permissions_for_role(self, role: str | None) -> PermissionSet:
        with self._lock:
            return self._table[coerce_role(role)]

    def snapshot(self) -> dict[str, PermissionSet]:
        with self._lock:
            return dict(self._table)

    def update_role_permissions(self, role: str, new_set: PermissionSet) -> None:
        normalized = normalize_role(role)
        with self._lock:
            self._table[normalized] = new_set
            listeners = list(self._listeners)
        for listener in listeners:
            listener(normalized, new_set)

    def subscribe(self, listener: PolicyListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe
