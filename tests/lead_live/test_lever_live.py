# tests/lead_live/test_lever_live.py
from __future__ import annotations

import os

import pytest

from modules.lead_intake.lib.config import CompanyRef
from modules.lead_intake.lib.context import FetchContext
from modules.lead_intake.lib.http_client import HttpClient
from modules.lead_intake.lib.ratelimit import HostLimiter
from modules.lead_intake.lib.scrapers.lever import LeverFetcher


def _print_result(label: str, result, max_items: int | None = None) -> None:
    # allow override via env (e.g., LEVER_MAX_PRINT=999)
    if max_items is None:
        env_max = os.getenv("LEVER_MAX_PRINT")
        max_items = int(env_max) if env_max else None

    leads = result.leads or []
    limit = len(leads) if max_items is None else min(max_items, len(leads))
    print(f"\n[{label}] leads: {len(leads)}  errors: {len(result.errors or [])}")
    for e in result.errors or []:
        print(f"      error: {e}")
    for lead in leads[:limit]:
        print(f"      • {lead.title}  ({lead.location}, {lead.work_mode.value})  [{lead.url}]")


@pytest.mark.live
def test_lever_palantir_live():
    """
    Live smoke test against the public Lever postings API.
    Zero postings is not a failure (boards change); the shape of what comes back is checked.
    """
    slug = os.getenv("LEVER_TEST_SLUG", "palantir")
    fetcher = LeverFetcher(
        [CompanyRef(slug=slug, name=slug.title())],
        HttpClient(timeout=20.0, limiter=HostLimiter(rate=1.0, burst=2)),
        workers=1,
        per_company_timeout=120.0,
    )
    try:
        result = fetcher.fetch(FetchContext.with_timeout(180))
    finally:
        fetcher.close()

    _print_result(f"lever:{slug}", result, max_items=25)

    assert result.source == "lever"
    assert result.errors == []
    for lead in result.leads:
        assert lead.title.strip() != ""
        assert lead.url.startswith("https://jobs.lever.co/")
        assert lead.ats_job_id.startswith(f"lever:{slug}:")
        assert lead.source == "lever"
