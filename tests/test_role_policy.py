import pytest

from src.auth.permissions import (
    ACTIONS,
    CANONICAL_ROLES,
    PAGES,
    PermissionSet,
    RolePolicy,
    coerce_role,
    normalize_role,
)


def test_every_role_maps_to_a_total_permission_set(policy):
    for role in CANONICAL_ROLES:
        permissions = policy.permissions_for_role(role)

        assert set(permissions.pages) == set(PAGES)
        assert set(permissions.actions) == set(ACTIONS)
        assert permissions == policy.permissions_for_role(role)


def test_unknown_or_missing_role_gets_user_permissions(policy):
    user = policy.permissions_for_role("user")

    assert policy.permissions_for_role(None) == user
    assert policy.permissions_for_role("") == user
    assert policy.permissions_for_role("superuser") == user
    assert policy.permissions_for_role("member") == user


def test_default_table_grants():
    policy = RolePolicy.default()
    user = policy.permissions_for_role("user")
    admin = policy.permissions_for_role("admin")
    owner = policy.permissions_for_role("account_owner")
    sub = policy.permissions_for_role("sub_account_owner")

    assert user.allows_page("home")
    assert not user.allows_page("admin")
    assert not any(user.actions.values())

    assert admin.allows_page("admin")
    assert admin.allows_action("manage_roles")
    assert not admin.allows_action("manage_invitations")

    assert owner.allows_page("billing")
    assert owner.allows_action("manage_invitations")
    assert not owner.allows_action("delete_account")
    assert not owner.allows_action("transfer_ownership")

    assert sub.allows_page("invitations")
    assert not sub.allows_page("admin")
    assert sub.allows_action("manage_billing")
    assert not sub.allows_action("view_users")


def test_unknown_permission_names_deny(policy):
    admin = policy.permissions_for_role("admin")

    assert admin.allows_page("nonexistent") is False
    assert admin.allows_action("nonexistent") is False


def test_update_replaces_whole_set_and_notifies(policy):
    seen = []
    policy.subscribe(lambda role, permissions: seen.append((role, permissions)))
    new_set = PermissionSet.from_mappings({"home": True, "reports": True}, {"export_data": True})

    policy.update_role_permissions("member", new_set)

    updated = policy.permissions_for_role("user")
    assert updated == new_set
    assert updated.allows_page("reports")
    assert not updated.allows_page("about")
    assert seen == [("user", new_set)]


def test_update_rejects_roles_outside_enumeration(policy):
    with pytest.raises(ValueError):
        policy.update_role_permissions("owner", PermissionSet.from_grants(set(), set()))


def test_unsubscribed_listener_is_not_called(policy):
    seen = []
    unsubscribe = policy.subscribe(lambda role, permissions: seen.append(role))
    unsubscribe()

    policy.update_role_permissions("admin", PermissionSet.from_grants({"home"}, set()))

    assert seen == []


def test_policies_are_isolated():
    first = RolePolicy.default()
    second = RolePolicy.default()

    first.update_role_permissions("admin", PermissionSet.from_grants({"home"}, set()))

    assert not first.permissions_for_role("admin").allows_page("admin")
    assert second.permissions_for_role("admin").allows_page("admin")


def test_from_mappings_rejects_unknown_names():
    with pytest.raises(ValueError):
        PermissionSet.from_mappings({"home": True, "secret_page": True}, {})


def test_role_normalization():
    assert normalize_role(" Admin ") == "admin"
    assert normalize_role("member") == "user"
    assert coerce_role("root") == "user"
    with pytest.raises(ValueError):
        normalize_role("root")
