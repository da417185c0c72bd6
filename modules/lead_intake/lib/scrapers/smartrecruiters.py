from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from ..config import CompanyRef, Settings
from ..context import DeadlineExceeded, FetchContext
from ..http_client import HttpClient
from ..location import infer_work_mode, normalize_location
from ..models import JobLead, ScrapeResult, WorkMode
from ..ratelimit import HostLimiter
from ..utils import clean_text, parse_timestamp
from .base import BaseFetcher, ScraperError
from .pool import run_company_pool
from .registry import register

log = logging.getLogger(__name__)

API_URL = "https://api.smartrecruiters.com/v1/companies/{slug}/postings"
JOB_URL = "https://jobs.smartrecruiters.com/{slug}/{id}"
PAGE_LIMIT = 100
MAX_OFFSET = 5000


def _location_text(loc: Any) -> tuple[str, bool]:
    """'City, Region, Country' from the posting's location object, plus its remote flag."""
    if not isinstance(loc, dict):
        return "", False
    parts = [str(loc.get(k) or "").strip() for k in ("city", "region", "country")]
    return ", ".join(p for p in parts if p), bool(loc.get("remote"))


def parse_postings(content: list[Any], slug: str, company: CompanyRef) -> list[JobLead]:
    out: list[JobLead] = []
    for p in content:
        if not isinstance(p, dict):
            continue
        title = clean_text(p.get("name"))
        pid = str(p.get("id") or p.get("uuid") or p.get("ref") or "").strip()
        if not title or not pid:
            continue

        raw_loc, remote = _location_text(p.get("location"))
        loc = normalize_location(raw_loc)
        mode = WorkMode.REMOTE if remote else infer_work_mode(loc, title)
        if remote and "remote" not in loc.lower():
            loc = f"{loc} (Remote)" if loc else "Remote"

        out.append(
            JobLead(
                company=company.display_name,
                title=title,
                url=JOB_URL.format(slug=slug, id=pid),
                location=loc,
                work_mode=mode,
                ats_job_id=f"smartrecruiters:{slug}:{pid}",
                posted_at=parse_timestamp(p.get("releasedDate")),
                source="smartrecruiters",
            )
        )
    return out


@register
class SmartRecruitersFetcher(BaseFetcher):
    kind = "smartrecruiters"
    timeout_sec = 180.0

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
    def from_settings(cls, settings: Settings, limiter: HostLimiter) -> SmartRecruitersFetcher | None:
        src = settings.source(cls.kind)
        if not src.active:
            return None
        return cls(list(src.companies), HttpClient(timeout=25.0, limiter=limiter), workers=settings.workers)

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
        slug = company.slug.strip()
        url = API_URL.format(slug=quote(slug, safe=""))

        out: list[JobLead] = []
        offset = 0
        while True:
            try:
                data = self.http.get_json(
                    ctx,
                    url,
                    params={"limit": PAGE_LIMIT, "offset": offset},
                    headers={"Accept": "application/json"},
                )
            except DeadlineExceeded:
                if not out:
                    raise
                log.info("[ats:smartrecruiters] company=%s deadline hit at offset=%d; keeping %d", slug, offset, len(out))
                return out
            if not isinstance(data, dict):
                raise ScraperError(f"smartrecruiters: unexpected payload type {type(data).__name__}")

            content = data.get("content") or []
            if not content:
                break
            out.extend(parse_postings(content, slug, company))

            offset += PAGE_LIMIT
            try:
                total = int(data.get("totalFound") or 0)
            except (TypeError, ValueError):
                total = 0
            if total > 0 and offset >= total:
                break
            if offset > MAX_OFFSET:
                break
        return out
