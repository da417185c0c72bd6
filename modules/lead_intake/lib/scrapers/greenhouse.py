# modules/lead_intake/lib/scrapers/greenhouse.py
from __future__ import annotations

import logging
import re
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup  # pip install beautifulsoup4 html5lib

from ..config import CompanyRef, Settings
from ..context import DeadlineExceeded, FetchContext
from ..http_client import HttpClient
from ..location import find_location, infer_work_mode, normalize_location
from ..models import JobLead, ScrapeResult
from ..ratelimit import HostLimiter
from ..utils import clean_text, now_utc
from .base import BaseFetcher
from .pool import run_company_pool
from .registry import register

log = logging.getLogger(__name__)

BOARD_BASE = "https://boards.greenhouse.io"
_JOB_ID_RE = re.compile(r"/jobs/(\d+)")


def extract_job_id(url: str) -> str:
    m = _JOB_ID_RE.search(url or "")
    return m.group(1) if m else ""


# board link labels that are not job titles
_JUNK_TITLES = frozenset({
    "view", "view job", "view role", "view opening", "view details",
    "apply", "apply now", "apply here", "learn more", "details",
})


def looks_like_junk_title(t: str) -> bool:
    low = " ".join((t or "").lower().split()).strip(" .:>»›")
    return low in _JUNK_TITLES


def parse_board_html(html: str, company: CompanyRef) -> list[JobLead]:
    """
    Job anchors from a public board page. Link labels such as 'View job' or
    'Apply now' are blanked so hydration fills the real title; any other
    anchor text is kept as the title.
    """
    soup = BeautifulSoup(html, "html5lib")
    seen: set[str] = set()
    out: list[JobLead] = []
    for a in soup.select("a[href]"):
        href = (a.get("href") or "").strip()
        if not href:
            continue
        abs_url = urljoin(BOARD_BASE + "/", href)
        low = abs_url.lower()
        if "boards.greenhouse.io" not in low or "/jobs/" not in low:
            continue
        job_id = extract_job_id(abs_url)
        if not job_id:
            continue
        source_id = f"greenhouse:{company.slug}:{job_id}"
        if source_id in seen:
            continue
        seen.add(source_id)

        title = clean_text(a.get_text(" "))
        if looks_like_junk_title(title):
            title = ""
        out.append(
            JobLead(
                company=company.display_name,
                title=title,
                url=abs_url,
                ats_job_id=source_id,
                source="greenhouse",
            )
        )
    return out


def hydrate_from_html(lead: JobLead, html: str) -> None:
    """Fill title/location/description/work mode from a job detail page."""
    soup = BeautifulSoup(html, "html5lib")
    if not lead.title:
        h1 = soup.select_one("h1")
        if h1 is not None:
            lead.title = clean_text(h1.get_text(" "))

    loc = find_location(soup)
    if loc:
        lead.location = loc

    content = soup.select_one("#content")
    if content is not None:
        lead.description = content.decode_contents().strip()

    lead.location = normalize_location(lead.location)
    lead.work_mode = infer_work_mode(lead.location, lead.title, lead.description)


@register
class GreenhouseFetcher(BaseFetcher):
    """
    Public Greenhouse boards (boards.greenhouse.io/<slug>).

    Per company: one board page, then one detail page per job for hydration.
    A failed hydration keeps the minimal lead from the board page.
    """

    kind = "greenhouse"
    timeout_sec = 300.0

    def __init__(
        self,
        companies: list[CompanyRef],
        http: HttpClient,
        *,
        workers: int = 8,
        per_company_timeout: float = 60.0,
    ) -> None:
        self.companies = list(companies)
        self.http = http
        self.workers = workers
        self.per_company_timeout = per_company_timeout

    @classmethod
    def from_settings(cls, settings: Settings, limiter: HostLimiter) -> GreenhouseFetcher | None:
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

    # ---- internals ----

    def _fetch_company(self, ctx: FetchContext, company: CompanyRef) -> list[JobLead]:
        html = self.http.get_text(ctx, f"{BOARD_BASE}/{company.slug}")
        jobs = parse_board_html(html, company)

        out: list[JobLead] = []
        hydrating = True
        for lead in jobs:
            if hydrating:
                try:
                    hydrate_from_html(lead, self.http.get_text(ctx, lead.url))
                except requests.RequestException as e:
                    log.debug("[ats:greenhouse] hydrate failed url=%s err=%r", lead.url, e)
                except DeadlineExceeded:
                    log.info("[ats:greenhouse] company=%s hydration cut short by deadline", company.slug)
                    hydrating = False
            if lead.posted_at is None:
                lead.posted_at = now_utc()
            if not lead.title:
                log.debug("[ats:greenhouse] untitled job kept url=%s", lead.url)
            out.append(lead)
        return out
