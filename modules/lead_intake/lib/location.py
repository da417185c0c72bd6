from __future__ import annotations

import re

from bs4 import BeautifulSoup

from .models import WorkMode
from .utils import clean_text

_LABEL_RE = re.compile(r"^\s*(?:job\s+)?locations?\s*:\s*", re.IGNORECASE)
_LABELED_RE = re.compile(r"(?:job\s+location|locations?)\s*:\s*", re.IGNORECASE)
_LABEL_STOPS = ("\n", " | ", " · ")
_MAX_LABELED_LEN = 80

LOCATION_SELECTORS = (
    ".location",
    ".job__location",
    ".job-location",
    "[data-testid='job-location']",
    "[data-qa='location']",
    "[itemprop='jobLocation']",
    ".posting-categories .location",
    ".posting-categories li",
)


def normalize_location(s: str | None) -> str:
    """
    Strip 'Location:' style labels and dedupe comma-separated segments
    (case-insensitive, first-seen order kept).

        "Location: Austin, TX, austin"  ->  "Austin, TX"
    """
    s = clean_text(s)
    if not s:
        return ""
    s = _LABEL_RE.sub("", s)
    seen: set[str] = set()
    parts: list[str] = []
    for seg in s.split(","):
        seg = seg.strip()
        if not seg:
            continue
        key = seg.lower()
        if key in seen:
            continue
        seen.add(key)
        parts.append(seg)
    return ", ".join(parts)


def infer_work_mode(*texts: str | None) -> WorkMode:
    """Keyword rule over the blended haystack: remote > hybrid > on-site > unknown."""
    hay = " ".join(t for t in texts if t).lower()
    if "remote" in hay:
        return WorkMode.REMOTE
    if "hybrid" in hay:
        return WorkMode.HYBRID
    if "on-site" in hay or "onsite" in hay or "on site" in hay:
        return WorkMode.ONSITE
    return WorkMode.UNKNOWN


def extract_labeled_location(text: str | None) -> str:
    """Text after a 'Location:' label, up to the next line/separator, capped at 80 chars."""
    if not text:
        return ""
    m = _LABELED_RE.search(text)
    if not m:
        return ""
    rest = text[m.end():]
    for stop in _LABEL_STOPS:
        idx = rest.find(stop)
        if idx >= 0:
            rest = rest[:idx]
    rest = clean_text(rest)
    if len(rest) > _MAX_LABELED_LEN:
        rest = rest[:_MAX_LABELED_LEN].rstrip()
    return rest


def find_location(soup: BeautifulSoup) -> str:
    """Best-effort location from a job page: CSS candidates, then og:description, then labeled text."""
    for sel in LOCATION_SELECTORS:
        el = soup.select_one(sel)
        if el is None:
            continue
        t = normalize_location(el.get_text(" ", strip=True))
        if t:
            return t

    og = soup.select_one("meta[property='og:description']")
    if og is not None:
        t = extract_labeled_location(og.get("content") or "")
        if t:
            return normalize_location(t)

    body = soup.body or soup
    return normalize_location(extract_labeled_location(body.get_text("\n")))
