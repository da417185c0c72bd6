# tests/test_lead_lever.py
import json
from datetime import datetime, timezone

import pytest

from modules.lead_intake.lib import engine
from modules.lead_intake.lib.config import CompanyRef
from modules.lead_intake.lib.context import FetchContext
from modules.lead_intake.lib.http_client import HttpClient
from modules.lead_intake.lib.models import WorkMode
from modules.lead_intake.lib.scrapers import lever
from service import logging_utils as L

ACME = CompanyRef(slug="acme", name="Acme")

POSTINGS = [
    {
        "id": "a1",
        "text": "Python Engineer",
        "hostedUrl": "https://jobs.lever.co/acme/a1",
        "categories": {"location": "Remote - US", "team": "Platform"},
        "workplaceType": "remote",
        "createdAt": 1735689600000,
        "descriptionPlain": "We write Python.",
    },
    {
        "id": "a2",
        "text": "Backend Developer",
        "hostedUrl": "https://jobs.lever.co/acme/a2",
        "categories": {"location": "Chicago, IL"},
        "workplaceType": "onsite",
        "createdAt": 1735689600000,
    },
    {
        "id": "a3",
        "text": "Platform Engineer",
        "hostedUrl": "https://jobs.lever.co/acme/a3",
        "categories": {},
    },
    {"id": "", "text": "No id", "hostedUrl": "https://jobs.lever.co/acme/x"},
    {"id": "a4", "text": "", "hostedUrl": "https://jobs.lever.co/acme/a4"},
    "not-a-posting",
]

A3_PAGE = """
<html><body>
  <div class="posting-headline"><h2>Platform Engineer</h2>
    <div class="posting-categories"><div class="location">Austin, TX</div></div>
  </div>
</body></html>
"""


def _route_acme(fake_session, response):
    fake_session.add("GET", "api.lever.co/v0/postings/acme", response(json_body=POSTINGS))
    fake_session.add("GET", "jobs.lever.co/acme/a3", response(body=A3_PAGE))


# ----------------------------------------------------------------------
# 1. Postings JSON → leads
# ----------------------------------------------------------------------
def test_parse_postings_maps_fields_and_skips_incomplete():
    leads = lever.parse_postings(POSTINGS, ACME)

    assert [lead.ats_job_id for lead in leads] == ["lever:acme:a1", "lever:acme:a2", "lever:acme:a3"]
    a1 = leads[0]
    assert a1.company == "Acme"
    assert a1.location == "Remote - US"
    assert a1.work_mode is WorkMode.REMOTE
    assert a1.description == "We write Python."
    assert a1.posted_at == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert leads[1].work_mode is WorkMode.ONSITE
    assert leads[2].location == ""
    assert leads[2].work_mode is WorkMode.UNKNOWN
    assert leads[2].posted_at is not None  # missing createdAt falls back to now


def test_parse_postings_rejects_non_list():
    with pytest.raises(ValueError):
        lever.parse_postings({"ok": False, "error": "Document not found"}, ACME)


# ----------------------------------------------------------------------
# 2. Fetcher: hydration only where the API left gaps
# ----------------------------------------------------------------------
def test_fetcher_hydrates_only_incomplete_postings(fake_session, response):
    _route_acme(fake_session, response)
    f = lever.LeverFetcher([ACME], HttpClient(session=fake_session), workers=1)

    result = f.fetch(FetchContext.with_timeout(10))

    assert result.errors == []
    by_id = {lead.ats_job_id: lead for lead in result.leads}
    assert by_id["lever:acme:a3"].location == "Austin, TX"
    page_calls = fake_session.calls_to("jobs.lever.co/acme/")
    assert [c.url for c in page_calls] == ["https://jobs.lever.co/acme/a3"]


def test_fetcher_reports_bad_payload_as_company_error(fake_session, response):
    fake_session.add("GET", "api.lever.co/v0/postings/acme", response(json_body={"ok": False}))
    f = lever.LeverFetcher([ACME], HttpClient(session=fake_session), workers=1)

    result = f.fetch(FetchContext.with_timeout(10))

    assert result.leads == []
    assert len(result.errors) == 1 and "ValueError" in result.errors[0]


# ----------------------------------------------------------------------
# 3. End to end through the orchestrator
# ----------------------------------------------------------------------
def test_run_once_stores_filtered_lever_jobs(make_settings, store, fake_session, response):
    _route_acme(fake_session, response)
    settings = make_settings()

    def get_fetchers(s, limiter):
        return [lever.LeverFetcher([ACME], HttpClient(session=fake_session, limiter=limiter), workers=1)]

    added = engine.run_once(settings, store=store, get_fetchers=get_fetchers, enrich=False)

    assert added == 2  # a2 is in a blocked location
    assert store.get_job("lever:acme:a1")["work_mode"] == "Remote"
    assert store.get_job("lever:acme:a2") is None
    assert store.get_job("lever:acme:a3")["location"] == "Austin, TX"

    # same postings again → nothing new
    assert engine.run_once(settings, store=store, get_fetchers=get_fetchers, enrich=False) == 0

    with open(L.get_activity_log_path(), encoding="utf-8") as fh:
        summaries = [r for r in map(json.loads, fh) if r.get("op") == "summary"]
    assert summaries[0]["found_by_source"] == {"lever": 3}
    assert summaries[0]["added_by_source"] == {"lever": 2}
    assert summaries[0]["skipped"] == {"location": 1}
    assert summaries[1]["total_added"] == 0
