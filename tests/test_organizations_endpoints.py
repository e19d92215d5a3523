import json
import logging


def test_list_organizations_marks_owned_and_active(client, auth_headers):
    response = client.get("/api/organizations/", headers=auth_headers("u-multi"))

    assert response.status_code == 200
    orgs = {org["id"]: org for org in response.json()}
    assert list(orgs) == ["org-b", "org-a"]
    assert orgs["org-b"]["is_owner"] is True
    assert orgs["org-b"]["is_active"] is True
    assert orgs["org-a"]["is_owner"] is False
    assert orgs["org-a"]["is_active"] is False


def test_active_organization_without_memberships(client, auth_headers):
    response = client.get("/api/organizations/active", headers=auth_headers("u-loner"))

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "no_organizations"
    assert body["organization"] is None
    assert body["role"] == "user"
    assert body["permissions"]["pages"]["home"] is True
    assert body["permissions"]["pages"]["admin"] is False


def test_switch_changes_effective_role(client, auth_headers):
    headers = auth_headers("u-multi")

    response = client.post("/api/organizations/org-a/switch", headers=headers)

    assert response.status_code == 200
    assert response.json()["organization"]["id"] == "org-a"
    assert response.json()["role"] == "admin"
    assert client.get("/api/auth/me", headers=headers).json()["role"] == "admin"


def test_switch_to_foreign_organization_is_404(client, auth_headers):
    headers = auth_headers("u-member")

    response = client.post("/api/organizations/org-b/switch", headers=headers)

    assert response.status_code == 404
    assert client.get("/api/organizations/active", headers=headers).json()["organization"]["id"] == "org-a"


def test_create_organization_activates_it(client, auth_headers):
    headers = auth_headers("u-loner")

    response = client.post("/api/organizations/", json={"name": "Loner Inc"}, headers=headers)

    assert response.status_code == 201
    assert response.json()["is_owner"] is True
    assert response.json()["is_active"] is True
    me = client.get("/api/auth/me", headers=headers).json()
    assert me["role"] == "account_owner"
    assert me["organization_id"] == response.json()["id"]


def test_create_organization_requires_name(client, auth_headers):
    response = client.post("/api/organizations/", json={"name": ""}, headers=auth_headers("u-loner"))

    assert response.status_code == 400


def test_owner_lists_members_with_resolved_roles(client, auth_headers):
    response = client.get("/api/organizations/org-a/members", headers=auth_headers("u-owner"))

    assert response.status_code == 200
    roles = {member["id"]: member["role"] for member in response.json()}
    assert roles["u-owner"] == "account_owner"
    assert roles["u-member"] == "user"
    assert roles["u-sub"] == "sub_account_owner"
    assert roles["u-legacy"] == "user"
    assert roles["u-multi"] == "admin"
    legacy = next(member for member in response.json() if member["id"] == "u-legacy")
    assert legacy["sub_account_owner"] == "Sub Team"


def test_member_cannot_list_members(client, auth_headers):
    response = client.get("/api/organizations/org-a/members", headers=auth_headers("u-member"))

    assert response.status_code == 403


def test_sub_account_owner_cannot_list_members(client, auth_headers):
    response = client.get("/api/organizations/org-a/members", headers=auth_headers("u-sub"))

    assert response.status_code == 403


def test_members_of_inactive_organization_are_not_reachable(client, auth_headers):
    response = client.get("/api/organizations/org-a/members", headers=auth_headers("u-multi"))

    assert response.status_code == 404


def test_role_update_is_visible_to_member_session(client, auth_headers):
    member_headers = auth_headers("u-member")
    assert client.get("/api/auth/me", headers=member_headers).json()["role"] == "user"

    response = client.put(
        "/api/organizations/org-a/members/u-member/role",
        json={"role": "sub_account_owner"},
        headers=auth_headers("u-owner"),
    )

    assert response.status_code == 200
    assert response.json()["role"] == "sub_account_owner"
    me = client.get("/api/auth/me", headers=member_headers).json()
    assert me["role"] == "sub_account_owner"
    assert me["permissions"]["actions"]["manage_invitations"] is True


def test_owner_role_cannot_be_overwritten(client, auth_headers):
    response = client.put(
        "/api/organizations/org-a/members/u-owner/role",
        json={"role": "user"},
        headers=auth_headers("u-owner"),
    )

    assert response.status_code == 400


def test_role_update_rejects_owner_role_value(client, auth_headers):
    response = client.put(
        "/api/organizations/org-a/members/u-member/role",
        json={"role": "account_owner"},
        headers=auth_headers("u-owner"),
    )

    assert response.status_code == 400


def test_role_update_requires_manage_roles(client, auth_headers):
    response = client.put(
        "/api/organizations/org-a/members/u-legacy/role",
        json={"role": "admin"},
        headers=auth_headers("u-member"),
    )

    assert response.status_code == 403


def test_remove_member_drops_their_context(client, fake_db, auth_headers):
    member_headers = auth_headers("u-member")
    client.get("/api/auth/me", headers=member_headers)

    response = client.delete(
        "/api/organizations/org-a/members/u-member", headers=auth_headers("u-owner")
    )

    assert response.status_code == 204
    row = next(user for user in fake_db.tables["users"] if user["id"] == "u-member")
    assert "org-a" not in row["organization_roles"]
    me = client.get("/api/auth/me", headers=member_headers).json()
    assert me["state"] == "no_organizations"
    assert me["organization_id"] is None


def test_owner_cannot_be_removed(client, auth_headers):
    response = client.delete(
        "/api/organizations/org-a/members/u-owner", headers=auth_headers("u-owner")
    )

    assert response.status_code == 400


def test_refresh_picks_up_new_membership(client, fake_db, auth_headers):
    headers = auth_headers("u-loner")
    assert client.get("/api/organizations/active", headers=headers).json()["state"] == "no_organizations"
    org_b = next(org for org in fake_db.tables["organizations"] if org["id"] == "org-b")
    org_b["members"].append("u-loner")

    response = client.post("/api/organizations/refresh", headers=headers)

    assert response.status_code == 200
    assert response.json()["organization"]["id"] == "org-b"
    assert response.json()["role"] == "user"


def test_guard_denials_are_counted(client, auth_headers):
    client.get("/api/organizations/org-a/members", headers=auth_headers("u-member"))

    metrics = client.get("/api/admin/metrics", headers=auth_headers("u-admin")).json()["counters"]

    assert metrics["guards.denied|guard=view_users,kind=action"] == 1


def test_directory_outage_during_auth_is_503(client, fake_db, auth_headers):
    fake_db.failing_tables.add("users")

    response = client.get("/api/organizations/active", headers=auth_headers("u-owner"))

    assert response.status_code == 503


def test_switch_on_one_login_leaves_other_login_alone(client, auth_headers):
    laptop = auth_headers("u-multi")
    phone = auth_headers("u-multi")
    assert client.get("/api/auth/me", headers=phone).json()["organization_id"] == "org-b"

    response = client.post("/api/organizations/org-a/switch", headers=laptop)

    assert response.status_code == 200
    assert client.get("/api/auth/me", headers=laptop).json()["organization_id"] == "org-a"
    me = client.get("/api/auth/me", headers=phone).json()
    assert me["organization_id"] == "org-b"
    assert me["role"] == "account_owner"


def test_guard_denial_log_carries_request_id(client, auth_headers, caplog):
    caplog.set_level(logging.INFO, logger="orgaccess")
    headers = {**auth_headers("u-member"), "X-Request-ID": "req-123"}

    response = client.get("/api/organizations/org-a/members", headers=headers)

    assert response.status_code == 403
    assert response.headers["X-Request-ID"] == "req-123"
    payloads = [json.loads(record.getMessage()) for record in caplog.records if record.name == "orgaccess"]
    denied = [payload for payload in payloads if payload["event"] == "guard_denied"]
    assert len(denied) == 1
    assert denied[0]["request_id"] == "req-123"
    assert denied[0]["guard"] == "view_users"
