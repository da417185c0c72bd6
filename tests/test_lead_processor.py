# tests/test_lead_processor.py
import json
import os

import requests

from modules.lead_intake.lib.context import FetchContext
from modules.lead_intake.lib.enrich import Enricher, logo_key_for_url
from modules.lead_intake.lib.events import EventBus
from modules.lead_intake.lib.http_client import HttpClient
from modules.lead_intake.lib.models import JobLead, WorkMode
from modules.lead_intake.lib.processor import LeadProcessor, build_job_row
from modules.lead_intake.lib.rules import REASON_LOCATION, REASON_NO_KEYWORD, LeadScorer
from service import logging_utils as L


def _leads():
    return [
        JobLead(
            company="Acme",
            title="Python Engineer",
            url="https://jobs.lever.co/acme/1",
            location="Remote - US",
            work_mode=WorkMode.REMOTE,
            ats_job_id="lever:acme:1",
            source="lever",
        ),
        JobLead(
            company="Acme",
            title="Backend Engineer",
            url="https://jobs.lever.co/acme/2",
            location="Chicago, IL",
            ats_job_id="lever:acme:2",
            source="lever",
        ),
        JobLead(
            company="Acme",
            title="Account Executive",
            url="https://jobs.lever.co/acme/3",
            location="Austin, TX",
            ats_job_id="lever:acme:3",
            source="lever",
        ),
    ]


class FakeEnricher:
    def __init__(self, key="logo-key", exc=None, url_key=""):
        self.key = key
        self.exc = exc
        self.url_key = url_key
        self.calls = []
        self.url_calls = []

    def logo_key_for_url(self, ctx, url):
        self.url_calls.append(url)
        return self.url_key

    def logo_key_for_company(self, ctx, company):
        self.calls.append(company)
        if self.exc is not None:
            raise self.exc
        return self.key


def _read_jsonl(path):
    if not os.path.exists(path):
        return []
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


# ----------------------------------------------------------------------
# 1. filter → score → insert → notify
# ----------------------------------------------------------------------
def test_process_inserts_kept_leads_and_publishes(make_settings, store):
    bus = EventBus()
    q = bus.subscribe()
    proc = LeadProcessor(store, make_settings(), notifier=bus)

    added = proc.process(FetchContext.background(), _leads())

    assert added == 1
    assert proc.skipped == {REASON_LOCATION: 1, REASON_NO_KEYWORD: 1}
    row = store.get_job("lever:acme:1")
    assert row["score"] == 15
    assert row["tags"] == ["engineer", "python"]
    assert row["work_mode"] == "Remote"
    assert row["seen_from_source"] == "lever"

    event = q.get_nowait()
    assert event.type == "job_created"
    assert (event.source_id, event.company, event.title, event.score) == ("lever:acme:1", "Acme", "Python Engineer", 15)
    assert q.empty()


def test_second_pass_is_deduped(make_settings, store):
    bus = EventBus()
    q = bus.subscribe()
    ctx = FetchContext.background()
    LeadProcessor(store, make_settings(), notifier=bus).process(ctx, _leads())
    q.get_nowait()

    added = LeadProcessor(store, make_settings(), notifier=bus).process(ctx, _leads())

    assert added == 0
    assert q.empty()
    assert store.count_jobs() == 1


def test_lead_without_url_is_skipped_not_fatal(make_settings, store):
    leads = [JobLead(company="Acme", title="Python Engineer", url="", source="lever", ats_job_id="lever:acme:9")]
    leads += _leads()[:1]
    assert LeadProcessor(store, make_settings()).process(FetchContext.background(), leads) == 1


# ----------------------------------------------------------------------
# 2. Enrichment is best effort
# ----------------------------------------------------------------------
def test_enricher_sets_logo_key(make_settings, store):
    enricher = FakeEnricher(key="abc123")
    LeadProcessor(store, make_settings(), enricher=enricher).process(FetchContext.background(), _leads())
    assert enricher.calls == ["Acme"]
    assert store.get_job("lever:acme:1")["logo_key"] == "abc123"


def test_enricher_failure_is_logged_and_insert_kept(make_settings, store):
    enricher = FakeEnricher(exc=requests.ConnectionError("dns down"))
    added = LeadProcessor(store, make_settings(), enricher=enricher).process(FetchContext.background(), _leads())

    assert added == 1
    assert store.get_job("lever:acme:1")["logo_key"] == ""
    errors = _read_jsonl(L.get_error_log_path())
    assert any(r.get("component") == "lead_intake.processor" and r.get("op") == "enrich" for r in errors)


# ----------------------------------------------------------------------
# 3. Expired insert budget stops processing
# ----------------------------------------------------------------------
def test_expired_context_stops_processing(make_settings, store):
    ctx = FetchContext.background()
    ctx.cancel()
    assert LeadProcessor(store, make_settings()).process(ctx, _leads()) == 0
    assert store.count_jobs() == 0


def test_build_job_row_derives_identity_and_score(make_settings):
    lead = _leads()[0]
    row = build_job_row(lead, LeadScorer(make_settings().scoring))
    assert row.source_id == "lever:acme:1"
    assert row.work_mode == "Remote"
    assert row.score == 15
    assert row.received_at is not None


def test_expired_context_marks_batch_incomplete(make_settings, store):
    proc = LeadProcessor(store, make_settings())
    proc.process(FetchContext.background(), _leads())
    assert proc.complete

    ctx = FetchContext.background()
    ctx.cancel()
    proc.process(ctx, _leads())
    assert not proc.complete


# ----------------------------------------------------------------------
# 4. Logo from the lead's own image URL
# ----------------------------------------------------------------------
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
LOGO_URL = "https://lh3.googleusercontent.com/acme-logo.png"


def test_lead_logo_url_is_cached_and_stored(make_settings, store, fake_session, response):
    fake_session.add("GET", "googleusercontent.com/acme-logo", response(body=PNG, headers={"Content-Type": "image/png"}))
    enricher = Enricher(store, HttpClient(session=fake_session))
    lead = _leads()[0]
    lead.logo_url = LOGO_URL

    LeadProcessor(store, make_settings(), enricher=enricher).process(FetchContext.with_timeout(5), [lead])

    key = store.get_job("lever:acme:1")["logo_key"]
    assert key == logo_key_for_url(LOGO_URL)
    assert store.get_logo(key) == ("image/png", PNG)
    assert fake_session.calls_to("duckduckgo.com") == []


def test_duplicate_lead_backfills_missing_logo(make_settings, store):
    lead = _leads()[0]
    lead.logo_url = LOGO_URL
    LeadProcessor(store, make_settings()).process(FetchContext.background(), [lead])
    assert store.get_job("lever:acme:1")["logo_key"] == ""

    enricher = FakeEnricher(url_key="u-key")
    added = LeadProcessor(store, make_settings(), enricher=enricher).process(FetchContext.background(), [lead])

    assert added == 0
    assert enricher.url_calls == [LOGO_URL]
    assert store.get_job("lever:acme:1")["logo_key"] == "u-key"


def test_existing_logo_is_not_overwritten(make_settings, store):
    lead = _leads()[0]
    lead.logo_url = LOGO_URL
    LeadProcessor(store, make_settings(), enricher=FakeEnricher(url_key="first")).process(FetchContext.background(), [lead])
    LeadProcessor(store, make_settings(), enricher=FakeEnricher(url_key="second")).process(FetchContext.background(), [lead])
    assert store.get_job("lever:acme:1")["logo_key"] == "first"


# ----------------------------------------------------------------------
# 5. A failing subscriber never stops the batch
# ----------------------------------------------------------------------
class BrokenNotifier:
    def __init__(self):
        self.calls = 0

    def publish(self, event):
        self.calls += 1
        raise RuntimeError("subscriber gone")


def test_publish_failure_is_logged_and_processing_continues(make_settings, store):
    leads = _leads()[:1] + [
        JobLead(
            company="Beta",
            title="Senior Python Developer",
            url="https://jobs.lever.co/beta/1",
            location="Remote",
            ats_job_id="lever:beta:1",
            source="lever",
        )
    ]
    notifier = BrokenNotifier()
    proc = LeadProcessor(store, make_settings(), notifier=notifier)

    added = proc.process(FetchContext.background(), leads)

    assert added == 2
    assert notifier.calls == 2
    assert proc.complete
    errors = _read_jsonl(L.get_error_log_path())
    assert [r["source_id"] for r in errors if r.get("op") == "publish"] == ["lever:acme:1", "lever:beta:1"]
