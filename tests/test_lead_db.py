# tests/test_lead_db.py
from datetime import datetime, timezone

import pytest

from modules.lead_intake.lib import db
from modules.lead_intake.lib.canonical import hash_string
from modules.lead_intake.lib.models import JobRow, WorkMode


def _row(**kw) -> JobRow:
    base = dict(
        company="Acme",
        title="Backend Engineer",
        url="https://jobs.lever.co/acme/1",
        location="Remote",
        work_mode=WorkMode.REMOTE.value,
        score=15,
        tags=["engineer", "python"],
        received_at=datetime(2025, 1, 2, 3, 4, 5, 678, tzinfo=timezone.utc),
        source_id="lever:acme:1",
        seen_from_source="lever",
    )
    base.update(kw)
    return JobRow(**base)


# ----------------------------------------------------------------------
# 1. insert_job_if_new is idempotent on source_id
# ----------------------------------------------------------------------
def test_insert_is_idempotent(store):
    assert store.insert_job_if_new(_row()) is True
    assert store.insert_job_if_new(_row(title="Changed title")) is False
    assert store.count_jobs() == 1

    got = store.get_job("lever:acme:1")
    assert got["title"] == "Backend Engineer"
    assert got["tags"] == ["engineer", "python"]
    assert got["date"] == "2025-01-02T03:04:05Z"
    assert got["work_mode"] == "Remote"


def test_insert_backfills_empty_logo_key_on_conflict(store):
    store.insert_job_if_new(_row())
    assert store.get_job("lever:acme:1")["logo_key"] == ""

    assert store.insert_job_if_new(_row(logo_key="abc")) is False
    assert store.get_job("lever:acme:1")["logo_key"] == "abc"

    # an existing logo is never replaced
    store.insert_job_if_new(_row(logo_key="zzz"))
    assert store.get_job("lever:acme:1")["logo_key"] == "abc"


def test_insert_requires_url(store):
    with pytest.raises(ValueError):
        store.insert_job_if_new(_row(url="  "))
    assert store.count_jobs() == 0


def test_insert_fills_defaults_and_derives_source_id(store):
    row = _row(company="", title="  ", location="", work_mode="", source_id="")
    assert store.insert_job_if_new(row) is True

    expected_id = hash_string("url:https://jobs.lever.co/acme/1")
    assert row.source_id == expected_id
    got = store.get_job(expected_id)
    assert got["company"] == "Unknown"
    assert got["title"] == "Job Posting"
    assert got["location"] == "Unknown"
    assert got["work_mode"] == "Unknown"


def test_set_logo_key_if_missing(store):
    store.insert_job_if_new(_row())
    assert store.set_logo_key_if_missing("lever:acme:1", "k1") is True
    assert store.set_logo_key_if_missing("lever:acme:1", "k2") is False
    assert store.set_logo_key_if_missing("", "k3") is False
    assert store.get_job("lever:acme:1")["logo_key"] == "k1"


def test_latest_jobs_newest_first(store):
    for i in range(3):
        store.insert_job_if_new(_row(source_id=f"lever:acme:{i}", url=f"https://jobs.lever.co/acme/{i}"))
    latest = store.latest_jobs(limit=2)
    assert [r["source_id"] for r in latest] == ["lever:acme:2", "lever:acme:1"]


# ----------------------------------------------------------------------
# 2. company_domains cache and logos
# ----------------------------------------------------------------------
def test_company_domain_cache_distinguishes_miss_from_unknown(store):
    assert store.get_company_domain("Acme Corp") is None
    store.upsert_company_domain("  Acme   Corp ", "ACME.com")
    assert store.get_company_domain("acme corp") == "acme.com"

    store.upsert_company_domain("Nobody Inc", "")
    assert store.get_company_domain("Nobody Inc") == ""
    assert store.get_company_domain("") is None


def test_logo_roundtrip(store):
    assert store.has_logo("k") is False
    store.put_logo("k", "image/png", b"\x89PNG\r\n\x1a\nrest")
    assert store.has_logo("k") is True
    assert store.get_logo("k") == ("image/png", b"\x89PNG\r\n\x1a\nrest")
    assert store.get_logo("missing") is None


# ----------------------------------------------------------------------
# 3. Persistence and reset
# ----------------------------------------------------------------------
def test_rows_survive_reopen_and_reset_removes_file(tmp_path):
    path = str(tmp_path / "nested" / "leads.db")
    with db.JobStore(path) as s:
        s.insert_job_if_new(_row())
    with db.JobStore(path) as s:
        assert s.count_jobs() == 1

    db.reset_db(path)
    with db.JobStore(path) as s:
        assert s.count_jobs() == 0
    db.reset_db(str(tmp_path / "never-created.db"))
