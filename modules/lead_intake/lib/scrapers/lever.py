from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests
from bs4 import BeautifulSoup

from ..config import CompanyRef, Settings
from ..context import DeadlineExceeded, FetchContext
from ..http_client import HttpClient
from ..location import infer_work_mode, normalize_location
from ..models import JobLead, ScrapeResult, WorkMode
from ..ratelimit import HostLimiter
from ..utils import clean_text, now_utc
from .base import BaseFetcher
from .pool import run_company_pool
from .registry import register

log = logging.getLogger(__name__)

API_URL = "https://api.lever.co/v0/postings/{slug}?mode=json"

# Tried in order on the hosted job page when the API left location empty.
HYDRATE_LOCATION_SELECTORS = (
    "[itemprop='jobLocation']",
    "[data-qa='location']",
    ".location",
    ".posting-categories .location",
    ".posting-categories li",
)

_WORKPLACE_TYPES = {
    "remote": WorkMode.REMOTE,
    "hybrid": WorkMode.HYBRID,
    "onsite": WorkMode.ONSITE,
    "on-site": WorkMode.ONSITE,
}


def _posted_at(created_ms: Any) -> datetime:
    try:
        ms = int(created_ms or 0)
    except (TypeError, ValueError):
        ms = 0
    if ms <= 0:
        return now_utc()
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def parse_postings(payload: Any, company: CompanyRef) -> list[JobLead]:
    """Lever postings JSON -> leads. Postings without id, hostedUrl or text are skipped."""
    if not isinstance(payload, list):
        raise ValueError(f"lever: expected a JSON list for {company.slug!r}, got {type(payload).__name__}")

    out: list[JobLead] = []
    for p in payload:
        if not isinstance(p, dict):
            continue
        pid = str(p.get("id") or "").strip()
        url = str(p.get("hostedUrl") or "").strip()
        title = clean_text(p.get("text"))
        if not pid or not url or not title:
            continue

        cats = p.get("categories") or {}
        loc = normalize_location(cats.get("location") if isinstance(cats, dict) else "")
        desc = p.get("descriptionPlain") or p.get("description") or ""

        mode = _WORKPLACE_TYPES.get(str(p.get("workplaceType") or "").strip().lower())
        if mode is None:
            mode = infer_work_mode(loc, title, desc)

        out.append(
            JobLead(
                company=company.display_name,
                title=title,
                url=url,
                location=loc,
                work_mode=mode,
                ats_job_id=f"lever:{company.slug}:{pid}",
                description=desc,
                posted_at=_posted_at(p.get("createdAt")),
                source="lever",
            )
        )
    return out


def hydrate_from_html(lead: JobLead, html: str) -> None:
    soup = BeautifulSoup(html, "html5lib")
    if not lead.title:
        h1 = soup.select_one("h1")
        if h1 is not None:
            lead.title = clean_text(h1.get_text(" "))

    if not lead.location:
        for sel in HYDRATE_LOCATION_SELECTORS:
            el = soup.select_one(sel)
            t = clean_text(el.get_text(" ")) if el is not None else ""
            if t:
                lead.location = normalize_location(t)
                break

    if lead.work_mode == WorkMode.UNKNOWN:
        lead.work_mode = infer_work_mode(lead.location, lead.title, lead.description)


@register
class LeverFetcher(BaseFetcher):
    """Lever public postings API, one request per company plus optional page hydration."""

    kind = "lever"
    timeout_sec = 300.0

    def __init__(
        self,
        companies: list[CompanyRef],
        http: HttpClient,
        *,
        workers: int = 8,
        per_company_timeout: float = 30.0,
    ) -> None:
        self.companies = list(companies)
        self.http = http
        self.workers = workers
        self.per_company_timeout = per_company_timeout

    @classmethod
    def from_settings(cls, settings: Settings, limiter: HostLimiter) -> LeverFetcher | None:
        src = settings.source(cls.kind)
        if not src.active:
            return None
        return cls(list(src.companies), HttpClient(timeout=20.0, limiter=limiter), workers=settings.workers)

    def fetch(self, ctx: FetchContext) -> ScrapeResult:
        leads, errors = run_company_pool(
            ctx,
            self.companies,
            self._fetch_company,
            label=self.kind,
            workers=self.workers,
            per_company_timeout=self.per_company_timeout,
        )
        return ScrapeResult(source=self.kind, leads=leads, errors=errors)

    def close(self) -> None:
        self.http.close()

    def _fetch_company(self, ctx: FetchContext, company: CompanyRef) -> list[JobLead]:
        payload = self.http.get_json(ctx, API_URL.format(slug=company.slug))
        leads = parse_postings(payload, company)

        for lead in leads:
            if lead.location and lead.work_mode != WorkMode.UNKNOWN:
                continue
            try:
                hydrate_from_html(lead, self.http.get_text(ctx, lead.url))
            except requests.RequestException as e:
                log.debug("[ats:lever] hydrate failed url=%s err=%r", lead.url, e)
            except DeadlineExceeded:
                # Keep what the API gave us for the rest.
                log.info("[ats:lever] company=%s hydration cut short by deadline", company.slug)
                break
        return leads
