"""
Workday career sites via the public CXS jobs endpoint.

Board URLs look like https://<tenant>.wd5.myworkdayjobs.com/[en-US/]<site>.
Each company gets its own session so the CALYPSO_CSRF_TOKEN cookie from the
bootstrap GET is replayed on the paginated POSTs. Hosts answering with a
Cloudflare challenge are skipped for the rest of the run.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlsplit

import requests

from ..canonical import hash_string
from ..config import CompanyRef, Settings
from ..context import DeadlineExceeded, FetchContext
from ..http_client import BROWSER_USER_AGENT, HttpClient, HttpStatusError, body_preview, decode_json
from ..location import infer_work_mode, normalize_location
from ..models import JobLead, ScrapeResult
from ..ratelimit import HostLimiter
from ..utils import clean_text, parse_timestamp
from .base import BaseFetcher, PartialFetch, ScraperError, SourceBlocked
from .pool import run_company_pool
from .registry import register

log = logging.getLogger(__name__)

PAGE_LIMIT = 20
MAX_OFFSET = 5000
CSRF_COOKIE = "CALYPSO_CSRF_TOKEN"

_LOCALE_RE = re.compile(r"^[A-Za-z]{2}-[A-Za-z]{2}$")
_CHALLENGE_MARKERS = ("attention required", "checking your browser", "/cdn-cgi/", "just a moment")


# ----------------------------- board URLs -----------------------------

@dataclass(frozen=True)
class WorkdayBoard:
    scheme: str
    host: str
    tenant: str
    site: str
    locale: str = ""

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def jobs_endpoint(self) -> str:
        base = f"{self.origin}/wday/cxs/{self.tenant}/{self.site}/jobs"
        if not self.locale:
            return base
        return f"{base}?locale={quote(self.locale)}"

    def absolute_job_url(self, posting: dict[str, Any]) -> str:
        ext = str(posting.get("externalUrl") or "").strip()
        if ext:
            return ext
        path = str(posting.get("externalPath") or "").strip()
        if not path:
            return ""
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.origin + path


def parse_board_url(raw: str) -> WorkdayBoard:
    """
    Split a Workday board URL into its parts. The tenant is the first host label,
    an optional xx-YY locale segment is normalized, and the site is the last path segment.
    Raises ValueError on anything that doesn't look like a board URL.
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("empty board url")
    if "://" not in raw:
        raw = "https://" + raw
    parts = urlsplit(raw)
    host = parts.netloc.lower()
    if not host:
        raise ValueError(f"missing host in {raw!r}")
    labels = host.split(".")
    if len(labels) < 3:
        raise ValueError(f"unexpected host {host!r}")

    segs = [s for s in parts.path.split("/") if s]
    if not segs:
        raise ValueError(f"unexpected path {parts.path!r}")

    locale = ""
    if len(segs) >= 2 and _LOCALE_RE.match(segs[0]):
        locale = segs[0][:2].lower() + "-" + segs[0][3:].upper()
        segs = segs[1:]

    return WorkdayBoard(
        scheme=(parts.scheme or "https").lower(),
        host=host,
        tenant=labels[0],
        site=segs[-1],
        locale=locale,
    )


# ----------------------------- blocking -----------------------------

class BlockedHosts:
    """Hosts that answered with an anti-bot challenge during this run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hosts: set[str] = set()

    def mark(self, host: str) -> None:
        with self._lock:
            self._hosts.add(host.lower())

    def is_blocked(self, host: str) -> bool:
        with self._lock:
            return host.lower() in self._hosts

    def __len__(self) -> int:
        with self._lock:
            return len(self._hosts)


def looks_like_cloudflare_block(resp: requests.Response) -> bool:
    if resp.status_code in (403, 429):
        return True
    if resp.headers.get("cf-mitigated"):
        return True
    low = body_preview(resp, limit=4096).lower()
    return any(m in low for m in _CHALLENGE_MARKERS)


# ----------------------------- postings -----------------------------

def _job_id(posting: dict[str, Any], url: str) -> str:
    for key in ("jobReqId", "jobRequisitionId", "jobRequisitionID"):
        v = str(posting.get(key) or "").strip()
        if v:
            return v
    bullets = posting.get("bulletFields")
    if isinstance(bullets, list) and bullets and str(bullets[0] or "").strip():
        return str(bullets[0]).strip()
    v = str(posting.get("id") or "").strip()
    if v:
        return v
    return hash_string("url:" + url)


def parse_postings(postings: list[Any], board: WorkdayBoard, company: CompanyRef) -> list[JobLead]:
    out: list[JobLead] = []
    for p in postings:
        if not isinstance(p, dict):
            continue
        title = clean_text(p.get("title"))
        url = board.absolute_job_url(p)
        if not title or not url:
            continue
        loc = normalize_location(p.get("locationsText") or p.get("location") or "")
        out.append(
            JobLead(
                company=company.display_name,
                title=title,
                url=url,
                location=loc,
                work_mode=infer_work_mode(loc, title),
                ats_job_id=f"workday:{board.tenant}:{board.site}:{_job_id(p, url)}",
                posted_at=parse_timestamp(p.get("postedOnDate")),
                source="workday",
            )
        )
    return out


# ----------------------------- connector -----------------------------

@register
class WorkdayFetcher(BaseFetcher):
    kind = "workday"
    timeout_sec = 300.0

    def __init__(
        self,
        companies: list[CompanyRef],
        limiter: HostLimiter | None = None,
        *,
        session_factory: Callable[[], requests.Session] | None = None,
        workers: int = 8,
        per_company_timeout: float = 60.0,
    ) -> None:
        self.companies = list(companies)
        self.limiter = limiter
        self.session_factory = session_factory
        self.workers = workers
        self.per_company_timeout = per_company_timeout
        self.blocked = BlockedHosts()

    @classmethod
    def from_settings(cls, settings: Settings, limiter: HostLimiter) -> WorkdayFetcher | None:
        src = settings.source(cls.kind)
        if not src.active:
            return None
        return cls(list(src.companies), limiter, workers=settings.workers)

    def fetch(self, ctx: FetchContext) -> ScrapeResult:
        leads, errors = run_company_pool(
            ctx,
            self.companies,
            self._fetch_company,
            label=self.kind,
            workers=self.workers,
            per_company_timeout=self.per_company_timeout,
        )
        if len(self.blocked):
            log.warning("[ats:workday] %d host(s) blocked by Cloudflare this run", len(self.blocked))
        return ScrapeResult(source=self.kind, leads=leads, errors=errors)

    # ---- per company ----

    def _client(self) -> HttpClient:
        session = self.session_factory() if self.session_factory is not None else None
        return HttpClient(timeout=30.0, user_agent=BROWSER_USER_AGENT, limiter=self.limiter, session=session)

    def _fetch_company(self, ctx: FetchContext, company: CompanyRef) -> list[JobLead]:
        board = parse_board_url(company.slug)
        if self.blocked.is_blocked(board.host):
            raise SourceBlocked(f"host {board.host} blocked earlier this run")

        log.info("[ats:workday] company=%s endpoint=%s", company.display_name, board.jobs_endpoint)
        http = self._client()
        try:
            return self._paginate(ctx, http, board, company)
        finally:
            http.close()

    def _paginate(self, ctx: FetchContext, http: HttpClient, board: WorkdayBoard, company: CompanyRef) -> list[JobLead]:
        board_url = company.slug.strip().rstrip("/")
        try:
            csrf = self._bootstrap(ctx, http, board, board_url)
        except SourceBlocked:
            raise
        except (requests.RequestException, ScraperError) as e:
            log.info("[ats:workday] company=%s bootstrap failed, trying without token: %s", company.slug, e)
            csrf = ""

        out: list[JobLead] = []
        offset = 0
        retried = False
        while True:
            payload = {"appliedFacets": {}, "limit": PAGE_LIMIT, "offset": offset, "searchText": ""}
            try:
                data, csrf, retried = self._fetch_page(ctx, http, board, board_url, payload, csrf, retried)
            except DeadlineExceeded:
                if not out:
                    raise
                log.info("[ats:workday] company=%s deadline hit at offset=%d; keeping %d", company.slug, offset, len(out))
                return out
            except (requests.RequestException, ScraperError, ValueError) as e:
                if not out:
                    raise
                raise PartialFetch(out, e) from e

            postings = data.get("jobPostings") or []
            if not postings:
                break
            out.extend(parse_postings(postings, board, company))

            offset += PAGE_LIMIT
            try:
                total = int(data.get("total") or 0)
            except (TypeError, ValueError):
                total = 0
            if total > 0 and offset >= total:
                break
            if offset > MAX_OFFSET:
                break
        return out

    def _fetch_page(
        self,
        ctx: FetchContext,
        http: HttpClient,
        board: WorkdayBoard,
        board_url: str,
        payload: dict,
        csrf: str,
        retried: bool,
    ) -> tuple[dict, str, bool]:
        """One jobs POST; the first 4xx/5xx of a company re-bootstraps the CSRF token and retries once."""
        resp = http.post_json(ctx, board.jobs_endpoint, payload, headers=self._headers(board, board_url, csrf))
        self._check_blocked(resp, board)
        if resp.status_code >= 400:
            if retried:
                raise HttpStatusError(resp.status_code, board.jobs_endpoint, body_preview(resp), response=resp)
            retried = True
            csrf = self._bootstrap(ctx, http, board, board_url)
            resp = http.post_json(ctx, board.jobs_endpoint, payload, headers=self._headers(board, board_url, csrf))
            self._check_blocked(resp, board)
            if resp.status_code >= 400:
                raise HttpStatusError(resp.status_code, board.jobs_endpoint, body_preview(resp), response=resp)

        data = decode_json(resp, board.jobs_endpoint)
        if not isinstance(data, dict):
            raise ScraperError(f"workday: unexpected payload type {type(data).__name__}")
        return data, csrf, retried

    def _bootstrap(self, ctx: FetchContext, http: HttpClient, board: WorkdayBoard, board_url: str) -> str:
        """GET the board page and return the CSRF cookie. Raises SourceBlocked / ScraperError."""
        resp = http.get(
            ctx,
            board_url,
            headers={
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": board.locale or "en-US",
            },
        )
        for jar in (resp.cookies, getattr(http.session, "cookies", None)):
            if jar is None:
                continue
            token = jar.get(CSRF_COOKIE)
            if token:
                return token
        self._check_blocked(resp, board)
        raise ScraperError(f"workday bootstrap: missing {CSRF_COOKIE} cookie (status={resp.status_code})")

    def _check_blocked(self, resp: requests.Response, board: WorkdayBoard) -> None:
        if looks_like_cloudflare_block(resp):
            self.blocked.mark(board.host)
            raise SourceBlocked(f"workday host {board.host} blocked (status={resp.status_code})")

    @staticmethod
    def _headers(board: WorkdayBoard, board_url: str, csrf: str) -> dict[str, str]:
        h = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Origin": board.origin,
            "Referer": board_url,
            "Accept-Language": board.locale or "en-US",
        }
        if csrf:
            h["x-calypso-csrf-token"] = csrf
        return h
