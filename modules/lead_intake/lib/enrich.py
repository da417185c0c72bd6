"""
Best-effort company enrichment: company name -> website domain -> favicon -> cached logo.

Nothing in here raises to the caller; every failure degrades to "" and is
cached as such for the rest of the cycle.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import parse_qsl, quote_plus, urlsplit

import requests
from bs4 import BeautifulSoup

from .context import DeadlineExceeded, FetchContext
from .db import JobStore, normalize_company_key
from .http_client import HttpClient
from .utils import clean_text, sha256_hex

log = logging.getLogger(__name__)

DDG_HTML_URL = "https://duckduckgo.com/html/?q="
FAVICON_URL = "https://www.google.com/s2/favicons?domain={domain}&sz=64"
MAX_LOGO_BYTES = 512 * 1024

DOMAIN_BLOCKLIST = (
    "linkedin.com",
    "indeed.com",
    "glassdoor.com",
    "ziprecruiter.com",
    "monster.com",
    "careerbuilder.com",
    "simplyhired.com",
    "builtin.com",
    "levels.fyi",
    "crunchbase.com",
    "wikipedia.org",
    # ATS / job boards
    "greenhouse.io",
    "lever.co",
    "myworkdayjobs.com",
    "workday.com",
    "smartrecruiters.com",
    "icims.com",
    "jobvite.com",
    "applytojob.com",
)

_COMPANY_SUFFIX_RE = re.compile(r",?\s+(?:Inc\.?|LLC|Ltd\.?|Recruiting|Staffing)(?=[\s,]|$)", re.IGNORECASE)

_IMAGE_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"RIFF", "image/webp"),
    (b"<svg", "image/svg+xml"),
)


# ---- domain lookup ----------------------------------------------------------


def sanitize_company_for_search(s: str) -> str:
    return clean_text(_COMPANY_SUFFIX_RE.sub("", s or ""))


def is_blocked_domain(host: str) -> bool:
    host = (host or "").lower()
    return any(host == b or host.endswith("." + b) for b in DOMAIN_BLOCKLIST)


def decode_ddg_redirect(href: str) -> str:
    """DDG wraps results as //duckduckgo.com/l/?uddg=<encoded target>."""
    try:
        q = dict(parse_qsl(urlsplit(href).query))
    except ValueError:
        return href
    return q.get("uddg") or href


def find_company_domain(http: HttpClient, ctx: FetchContext, company: str) -> str:
    """First non-aggregator result host for '<company> official website'; '' on any failure."""
    q = sanitize_company_for_search(company)
    if not q:
        return ""
    url = DDG_HTML_URL + quote_plus(f"{q} official website")
    try:
        html = http.get_text(ctx, url, headers={"User-Agent": "Mozilla/5.0"}, timeout=12)
    except (requests.RequestException, DeadlineExceeded) as e:
        log.info("[domain] lookup failed company=%r err=%r", company, e)
        return ""

    soup = BeautifulSoup(html, "html5lib")
    for a in soup.select("a.result__a"):
        href = (a.get("href") or "").strip()
        if not href:
            continue
        target = decode_ddg_redirect(href)
        if target.startswith("//"):
            target = "https:" + target
        try:
            host = (urlsplit(target).hostname or "").lower()
        except ValueError:
            continue
        if not host:
            continue
        host = host.removeprefix("www.")
        if is_blocked_domain(host):
            continue
        return host
    return ""


# ---- logo cache ---------------------------------------------------------------


def favicon_url_for_domain(domain: str) -> str:
    domain = (domain or "").strip().lower()
    return FAVICON_URL.format(domain=quote_plus(domain)) if domain else ""


def logo_key_for_url(url: str) -> str:
    return sha256_hex(url.strip())


def is_allowed_logo_host(host: str) -> bool:
    host = (host or "").lower()
    return host in ("google.com", "www.google.com") or host.endswith("googleusercontent.com")


def sniff_image_type(data: bytes) -> str:
    head = data[:16].lstrip()
    for magic, ctype in _IMAGE_MAGIC:
        if head.startswith(magic):
            return ctype
    return ""


def cache_logo_from_url(store: JobStore, http: HttpClient, ctx: FetchContext, url: str) -> str:
    """
    Download an allowlisted logo/favicon once and store it under sha256(url).
    Returns the logo key, or '' when the URL is not cacheable or the fetch failed.
    """
    url = (url or "").split("#", 1)[0].strip()
    if not url or "licdn.com" in url.lower():
        return ""
    try:
        parts = urlsplit(url)
    except ValueError:
        return ""
    if parts.scheme not in ("http", "https") or not is_allowed_logo_host(parts.hostname or ""):
        return ""

    key = logo_key_for_url(url)
    if store.has_logo(key):
        return key

    try:
        resp = http.get(
            ctx,
            url,
            headers={"Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"},
            timeout=15,
            stream=True,
        )
    except (requests.RequestException, DeadlineExceeded) as e:
        log.info("[logo-cache] fetch error url=%s err=%r", url, e)
        return ""

    try:
        if not 200 <= resp.status_code < 300:
            log.info("[logo-cache] non-2xx url=%s status=%s", url, resp.status_code)
            return ""
        data = bytearray()
        for chunk in resp.iter_content(16 * 1024):
            data.extend(chunk)
            if len(data) > MAX_LOGO_BYTES:
                log.info("[logo-cache] too large url=%s", url)
                return ""
    except requests.RequestException as e:
        log.info("[logo-cache] read error url=%s err=%r", url, e)
        return ""
    finally:
        resp.close()

    if not data:
        return ""
    ctype = (resp.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
    if not ctype.startswith("image/"):
        ctype = sniff_image_type(bytes(data))
        if not ctype:
            log.info("[logo-cache] not an image url=%s", url)
            return ""

    store.put_logo(key, ctype, bytes(data))
    return key


# ---- per-cycle enricher ---------------------------------------------------------


class Enricher:
    """
    Domain + logo lookups with per-cycle memo caches.

    Negative results ("") are cached too, so one failing company is looked up
    once per cycle, not once per lead. A new Enricher is built for every cycle.
    """

    def __init__(self, store: JobStore, http: HttpClient) -> None:
        self.store = store
        self.http = http
        self._domains: dict[str, str] = {}
        self._logos: dict[str, str] = {}
        self._url_logos: dict[str, str] = {}

    def company_domain(self, ctx: FetchContext, company: str) -> str:
        key = normalize_company_key(company)
        if not key or key == "unknown":
            return ""
        if key in self._domains:
            return self._domains[key]

        domain = self.store.get_company_domain(company) or ""
        if not domain:
            domain = find_company_domain(self.http, ctx, company)
            if domain:
                self.store.upsert_company_domain(company, domain)
        self._domains[key] = domain
        return domain

    def logo_key_for_domain(self, ctx: FetchContext, domain: str) -> str:
        if not domain:
            return ""
        if domain in self._logos:
            return self._logos[domain]
        key = cache_logo_from_url(self.store, self.http, ctx, favicon_url_for_domain(domain))
        self._logos[domain] = key
        return key

    def logo_key_for_url(self, ctx: FetchContext, url: str) -> str:
        url = (url or "").strip()
        if not url:
            return ""
        if url in self._url_logos:
            return self._url_logos[url]
        key = cache_logo_from_url(self.store, self.http, ctx, url)
        self._url_logos[url] = key
        return key

    def logo_key_for_company(self, ctx: FetchContext, company: str) -> str:
        return self.logo_key_for_domain(ctx, self.company_domain(ctx, company))
