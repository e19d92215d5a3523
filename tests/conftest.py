import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from src.auth.dependencies import get_directory, get_session_registry
from src.auth.jwt import create_access_token
from src.auth.permissions import RolePolicy
from src.directory import OrganizationDirectory
from src.main import app
from src.observability import reset_metrics
from src.services.accounts import hash_password
from src.services.organization_context import SessionRegistry


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, table_name: str, db: "FakeSupabase"):
        self.table_name = table_name
        self.db = db
        self.operation = "select"
        self.filters = []
        self.payload = None
        self.order_by = None
        self.limit_count = None

    def select(self, _fields: str):
        self.operation = "select"
        return self

    def insert(self, payload: dict):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict):
        self.operation = "update"
        self.payload = payload
        return self

    def eq(self, key: str, value):
        self.filters.append(("eq", key, value))
        return self

    def is_(self, key: str, value):
        self.filters.append(("is", key, value))
        return self

    def contains(self, key: str, values):
        self.filters.append(("contains", key, values))
        return self

    def in_(self, key: str, values):
        self.filters.append(("in", key, values))
        return self

    def order(self, key: str, desc: bool = False):
        self.order_by = (key, desc)
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    def _matches(self, row: dict) -> bool:
        for kind, key, value in self.filters:
            if kind == "eq" and row.get(key) != value:
                return False
            if kind == "is" and value == "null" and row.get(key) is not None:
                return False
            if kind == "contains" and not set(value).issubset(set(row.get(key) or [])):
                return False
            if kind == "in" and row.get(key) not in value:
                return False
        return True

    def execute(self):
        if self.table_name in self.db.failing_tables:
            raise RuntimeError(f"{self.table_name} unreachable")
        table = self.db.tables.setdefault(self.table_name, [])
        if self.operation == "insert":
            row = dict(self.payload or {})
            row.setdefault("id", f"{self.table_name}-{len(table) + 1}")
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            table.append(row)
            return FakeResponse([dict(row)])
        if self.operation == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(self.payload or {})
                    updated.append(dict(row))
            return FakeResponse(updated)
        rows = [dict(row) for row in table if self._matches(row)]
        if self.order_by:
            key, desc = self.order_by
            rows.sort(key=lambda row: row.get(key) or "", reverse=desc)
        if self.limit_count is not None:
            rows = rows[: self.limit_count]
        return FakeResponse(rows)


class FakeSupabase:
    def __init__(self, tables: dict):
        self.tables = tables
        self.failing_tables: set[str] = set()

    def table(self, table_name: str):
        return FakeQuery(table_name, self)


PASSWORD = "secret-pass"
_PASSWORD_HASH = hash_password(PASSWORD)


def _user(user_id: str, role: str = "user", **fields) -> dict:
    row = {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "password_hash": _PASSWORD_HASH,
        "display_name": user_id,
        "email_verified": True,
        "role": role,
        "organization_roles": {},
        "sub_account_owners": {},
        "active_organization_id": None,
        "created_at": "2026-01-01T00:00:00+00:00",
        "deleted_at": None,
    }
    row.update(fields)
    return row


def _base_tables() -> dict:
    future = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    return {
        "users": [
            # u-owner owns org-a; its stored entry wrongly says member.
            _user("u-owner", organization_roles={"org-a": "member"}),
            _user("u-member", organization_roles={"org-a": "member"}),
            _user("u-sub", organization_roles={"org-a": "sub_account_owner"}),
            _user(
                "u-legacy",
                sub_account_owners={"org-a": {"owner_id": "u-sub", "owner_name": "Sub Team"}},
            ),
            _user("u-multi", organization_roles={"org-a": "admin"}),
            _user("u-admin", role="admin"),
            _user("u-loner"),
        ],
        "organizations": [
            {
                "id": "org-a",
                "name": "Org A",
                "owner_id": "u-owner",
                "owner_email": "u-owner@example.com",
                "members": ["u-owner", "u-member", "u-sub", "u-legacy", "u-multi"],
                "members_version": 0,
                "status": "active",
                "created_at": "2026-01-01T00:00:00+00:00",
            },
            {
                "id": "org-b",
                "name": "Org B",
                "owner_id": "u-multi",
                "owner_email": "u-multi@example.com",
                "members": ["u-multi"],
                "members_version": 0,
                "status": "active",
                "created_at": "2026-01-02T00:00:00+00:00",
            },
        ],
        "invitations": [
            {
                "id": "inv-active",
                "token": "tok-active",
                "organization_id": "org-a",
                "role": "member",
                "status": "active",
                "expires_at": future,
                "used_count": 0,
                "max_uses": 1,
                "created_by": "u-owner",
                "created_at": "2026-01-03T00:00:00+00:00",
            },
            {
                "id": "inv-expired",
                "token": "tok-expired",
                "organization_id": "org-a",
                "role": "member",
                "status": "active",
                "expires_at": past,
                "used_count": 0,
                "max_uses": 1,
                "created_by": "u-owner",
                "created_at": "2026-01-03T00:00:00+00:00",
            },
            {
                "id": "inv-legacy",
                "token": "tok-legacy",
                "organization_id": "org-a",
                "role": "member",
                "status": "pending",
                "expires_at": future,
                "used_count": 0,
                "max_uses": 1,
                "created_by": "u-owner",
                "created_at": "2026-01-03T00:00:00+00:00",
            },
            {
                "id": "inv-sub",
                "token": "tok-sub",
                "organization_id": "org-a",
                "role": "member",
                "status": "active",
                "expires_at": future,
                "used_count": 0,
                "max_uses": 1,
                "created_by": "u-sub",
                "sub_account_owner_id": "u-sub",
                "sub_account_name": "Sub Team",
                "created_at": "2026-01-03T00:00:00+00:00",
            },
        ],
        "password_resets": [],
    }


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase(_base_tables())


@pytest.fixture
def directory(fake_db) -> OrganizationDirectory:
    return OrganizationDirectory(fake_db)


@pytest.fixture
def policy() -> RolePolicy:
    return RolePolicy.default()


@pytest.fixture
def registry(policy):
    sessions = SessionRegistry(policy)
    yield sessions
    sessions.clear()


@pytest.fixture
def client(directory, registry):
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_session_registry] = lambda: registry
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict:
        token = create_access_token(user_id, f"{user_id}@example.com")
        return {"Authorization": f"Bearer {token}"}

    return _headers
