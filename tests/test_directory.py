import pytest

from src.directory import MEMBERSHIP_WRITE_ATTEMPTS
from src.domain.errors import DirectoryUnavailable


def _org_row(fake_db, organization_id: str) -> dict:
    return next(org for org in fake_db.tables["organizations"] if org["id"] == organization_id)


def test_add_member_from_stale_snapshot_keeps_earlier_join(fake_db, directory):
    stale = directory.get_organization("org-b")

    assert directory.add_member(stale, "u-loner") is True
    assert directory.add_member(stale, "u-admin") is True

    row = _org_row(fake_db, "org-b")
    assert row["members"] == ["u-multi", "u-loner", "u-admin"]
    assert row["members_version"] == 2


def test_add_member_retries_after_version_conflict(fake_db, directory, monkeypatch):
    stale = directory.get_organization("org-b")
    directory.add_member(stale, "u-loner")
    get_organization = directory.get_organization
    reads = []

    def _stale_once(organization_id):
        reads.append(organization_id)
        return stale if len(reads) == 1 else get_organization(organization_id)

    monkeypatch.setattr(directory, "get_organization", _stale_once)

    assert directory.add_member(stale, "u-admin") is True
    assert len(reads) == 2
    assert _org_row(fake_db, "org-b")["members"] == ["u-multi", "u-loner", "u-admin"]


def test_add_existing_member_leaves_document_alone(fake_db, directory):
    assert directory.add_member(directory.get_organization("org-a"), "u-member") is False
    assert _org_row(fake_db, "org-a")["members_version"] == 0


def test_remove_member_from_stale_snapshot(fake_db, directory):
    stale = directory.get_organization("org-a")
    directory.add_member(stale, "u-loner")

    assert directory.remove_member(stale, "u-member") is True

    row = _org_row(fake_db, "org-a")
    assert "u-loner" in row["members"]
    assert "u-member" not in row["members"]


def test_membership_write_gives_up_after_repeated_conflicts(fake_db, directory, monkeypatch):
    stale = directory.get_organization("org-b")
    directory.add_member(stale, "u-loner")
    monkeypatch.setattr(directory, "get_organization", lambda organization_id: stale)

    with pytest.raises(DirectoryUnavailable):
        directory.add_member(stale, "u-admin")

    assert _org_row(fake_db, "org-b")["members"] == ["u-multi", "u-loner"]
    assert MEMBERSHIP_WRITE_ATTEMPTS > 1


def test_missing_members_version_reads_as_zero(fake_db, directory):
    _org_row(fake_db, "org-b")["members_version"] = None

    assert directory.get_organization("org-b").members_version == 0
