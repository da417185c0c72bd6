"""
LinkedIn "job alert" digest parser.

A digest card usually carries several anchors to the same posting (logo,
title, "view job"), so anchors are merged by posting id and the best title
candidate wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup
from bs4.element import Tag

from ..canonical import canonicalize_url, is_obvious_junk_url, linkedin_job_id, unwrap_redirect, url_is_too_generic
from ..utils import clean_text

SALARY_RE = re.compile(r"\$\s?\d[\d,]*(?:K|M)?\s*(?:-\s*\$\s?\d[\d,]*(?:K|M)?)?\s*/\s*year")

COMPANY_LOCATION_SEP = " · "

_BADGES = ("Actively recruiting", "Easy Apply", "Promoted")
_NOT_A_TITLE = ("alumni", "connections", "applicants", "school")
_LINK_LABELS = {"view job", "view jobs", "see all jobs", "apply", "apply now"}

_MIN_TITLE = 4
_MAX_TITLE = 120
_CONCAT_TITLE = 80


@dataclass
class LinkedInJob:
    url: str
    title: str = ""
    company: str = ""
    location: str = ""
    salary: str = ""
    logo_url: str = ""
    source_id: str = ""  # "linkedin:<id>" when the link carries a posting id


def looks_like_job_alert(subject: str, body: str) -> bool:
    s = (subject or "").lower()
    if "job alert" not in s and "linkedin" not in s:
        return False
    b = (body or "").lower()
    return "linkedin.com/comm/jobs/view" in b or "linkedin.com/jobs/view" in b


def strip_bad_title_suffixes(s: str) -> str:
    """Drop LinkedIn badges from a candidate; '' for lines that can never be a title."""
    s = (s or "").strip()
    if not s:
        return ""
    for badge in _BADGES:
        s = s.replace(badge, "").strip()
    low = s.lower()
    if any(w in low for w in _NOT_A_TITLE):
        return ""
    if low in _LINK_LABELS or SALARY_RE.search(s):
        return ""
    return clean_text(s)


def better_title(candidate: str, current: str) -> bool:
    candidate = (candidate or "").strip()
    if not candidate:
        return False
    cl = len(candidate)
    if cl < _MIN_TITLE or cl > _MAX_TITLE:
        return False
    current = (current or "").strip()
    if not current:
        return True
    # concatenated card text
    if len(current) > _CONCAT_TITLE and cl < len(current):
        return True
    return cl < len(current)


def _is_job_link(href: str) -> bool:
    low = href.lower()
    return "linkedin.com" in low and ("/jobs/view/" in low or "/comm/jobs/view/" in low)


def _card_for(a: Tag) -> Tag:
    return a.find_parent("table") or a.find_parent("tr") or a.parent or a


def _first_image(card: Tag) -> str:
    img = card.find("img")
    if img is None:
        return ""
    return (img.get("src") or "").strip() or (img.get("data-src") or "").strip()


def parse_job_alert_html(html: str) -> list[LinkedInJob]:
    """Jobs in document order; only jobs with both a URL and a title are returned."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html5lib")
    by_key: dict[str, LinkedInJob] = {}

    for a in soup.select("a[href]"):
        href = (a.get("href") or "").strip()
        if not href or not _is_job_link(href):
            continue
        url = canonicalize_url(unwrap_redirect(href))
        if not url or is_obvious_junk_url(url) or url_is_too_generic(url):
            continue
        job_id = linkedin_job_id(url)
        source_id = f"linkedin:{job_id}" if job_id else ""
        key = source_id or url

        job = by_key.get(key)
        if job is None:
            job = by_key[key] = LinkedInJob(url=url, source_id=source_id)

        cand = strip_bad_title_suffixes(clean_text(a.get_text(" ")))
        if better_title(cand, job.title):
            job.title = cand

        card = _card_for(a)
        for p in card.find_all("p"):
            t = clean_text(p.get_text(" "))
            if not t:
                continue
            if not job.company and not job.location and COMPANY_LOCATION_SEP in t:
                company, _, location = t.partition(COMPANY_LOCATION_SEP)
                job.company, job.location = company.strip(), location.strip()
            t2 = strip_bad_title_suffixes(t)
            if COMPANY_LOCATION_SEP not in t2 and better_title(t2, job.title):
                job.title = t2

        if not job.logo_url:
            job.logo_url = _first_image(card)

        if not job.salary:
            m = SALARY_RE.search(clean_text(card.get_text(" ")))
            if m:
                job.salary = m.group(0).strip()

    return [j for j in by_key.values() if j.url.strip() and j.title.strip()]
