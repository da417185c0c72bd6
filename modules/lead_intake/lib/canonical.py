"""
URL canonicalization and stable lead identity (source_id).

The same posting reaches us through many wrappers (email redirects, tracking
params, LinkedIn search links). Everything that becomes a dedupe key goes
through canonicalize_url first.
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .models import JobLead
from .utils import sha1_hex

# compared lower-cased; utm_* is matched by prefix
_TRACKING_KEYS = frozenset({
    "gclid",
    "fbclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "mkt_tok",
    # linkedin mail
    "trk",
    "trkinfo",
    "trackingid",
    "refid",
    "lipi",
    "midtoken",
    "midsig",
    "eid",
    "otptoken",
})

_REDIRECT_KEYS = ("url", "redirect", "dest")

_LI_VIEW_RE = re.compile(r"/jobs/view/(?:[^/?#]*?-)?(\d+)", re.IGNORECASE)
_DIGITS_RE = re.compile(r"^\d+$")

LINKEDIN_VIEW_PREFIX = "https://www.linkedin.com/jobs/view/"


# ---- Public API -------------------------------------------------------------


def canonicalize_url(raw: str) -> str:
    """
    Lower-case scheme/host, drop fragment and tracking params, sort the query.
    LinkedIn job links (including redirect wrappers and currentJobId search links)
    collapse to https://www.linkedin.com/jobs/view/<id>.
    Idempotent.
    """
    raw = (raw or "").strip()
    if not raw:
        return ""

    # Unwrap nested redirects (bounded; real mail rarely nests more than twice).
    current = raw
    for _ in range(5):
        unwrapped = unwrap_redirect(current, linkedin_only=True)
        if unwrapped == current:
            break
        current = unwrapped

    try:
        parts = urlsplit(current)
    except ValueError:
        return raw

    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()

    if "linkedin.com" in netloc:
        job_id = linkedin_job_id(current)
        if job_id:
            return LINKEDIN_VIEW_PREFIX + job_id

    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking_key(k)]
    if "linkedin.com" in netloc:
        query = [(k, v) for k, v in query if k == "currentJobId"]
    query.sort()

    return urlunsplit((scheme, netloc, parts.path, urlencode(query), ""))


def unwrap_redirect(href: str, *, linkedin_only: bool = False) -> str:
    """
    Follow one level of redirect wrapping:
      - ?url= / ?redirect= / ?dest= pointing at an absolute URL
      - Google /url?q=<target>
    With linkedin_only=True, only wrappers that are on, or point to, LinkedIn are unwrapped.
    Returns href unchanged when there is nothing to unwrap.
    """
    href = (href or "").strip()
    try:
        parts = urlsplit(href)
    except ValueError:
        return href
    host = (parts.hostname or "").lower()
    qs = dict(parse_qsl(parts.query, keep_blank_values=False))

    if "google." in host and parts.path.startswith("/url"):
        target = qs.get("q") or qs.get("url") or ""
        if _is_absolute(target) and (not linkedin_only or "linkedin.com" in target.lower()):
            return target.strip()

    for key in _REDIRECT_KEYS:
        target = qs.get(key) or ""
        if not _is_absolute(target):
            continue
        if linkedin_only and "linkedin.com" not in host and "linkedin.com" not in target.lower():
            continue
        return target.strip()

    return href


def linkedin_job_id(url: str) -> str:
    """Numeric LinkedIn posting id from /jobs/view/<id> (or slug-<id>) or currentJobId; '' if none."""
    try:
        parts = urlsplit((url or "").strip())
    except ValueError:
        return ""
    if "linkedin.com" not in (parts.netloc or "").lower():
        return ""
    m = _LI_VIEW_RE.search(parts.path or "")
    if m:
        return m.group(1)
    for k, v in parse_qsl(parts.query):
        if k == "currentJobId" and _DIGITS_RE.match(v.strip()):
            return v.strip()
    return ""


def hash_string(s: str) -> str:
    return sha1_hex(s)


def compute_source_id(lead: JobLead) -> str:
    """
    Stable dedupe key, by priority:
      1) connector-supplied ATS id
      2) email leads: hash(message-id + canonical URL), else hash(sender + subject + canonical URL)
      3) hash of the canonical URL
    """
    ats_id = (lead.ats_job_id or "").strip()
    if ats_id:
        return ats_id

    canon = canonicalize_url(lead.url)
    if lead.source == "email":
        msg_id = (lead.message_id or "").strip()
        if msg_id:
            return hash_string(f"email:{msg_id}|{canon}")
        return hash_string(f"email:{lead.sender.strip()}|{lead.subject.strip()}|{canon}")

    return hash_string("url:" + canon)


# ---- URL heuristics for mail bodies -------------------------------------------

_JUNK_MARKERS = (
    "unsubscribe",
    "preferences",
    "manage-preferences",
    "email-preferences",
    "privacy",
    "terms",
    "view-in-browser",
    "viewaswebpage",
    "tracking",
    "pixel",
    "beacon",
    "/alerts",
    "/settings",
    "/help",
    "/legal",
)


def score_url(u: str) -> int:
    """Rough 'is this a job page' score; higher is better."""
    lu = (u or "").lower()
    score = 0
    if "/jobs/view/" in lu:
        score += 100
    if "greenhouse.io" in lu or "lever.co" in lu or "myworkdayjobs" in lu:
        score += 80
    if "apply" in lu:
        score += 40
    if "/job" in lu or "/careers" in lu:
        score += 20
    if "/alerts" in lu or "/settings" in lu:
        score -= 100
    if "linkedin.com/comm/" in lu:
        score -= 10
    return score


def is_obvious_junk_url(u: str) -> bool:
    lu = (u or "").lower()
    return any(j in lu for j in _JUNK_MARKERS)


def url_is_too_generic(u: str) -> bool:
    """Bare homepages and LinkedIn search pages are not postings."""
    try:
        parts = urlsplit(u)
    except ValueError:
        return True
    path = (parts.path or "").strip("/")
    if not path:
        return True
    host = (parts.netloc or "").lower()
    if "linkedin.com" in host and not linkedin_job_id(u):
        return True
    return False


# ---- Internal helpers ------------------------------------------------------------


def _is_tracking_key(k: str) -> bool:
    lk = k.lower()
    return lk.startswith("utm_") or lk in _TRACKING_KEYS


def _is_absolute(u: str) -> bool:
    try:
        p = urlsplit((u or "").strip())
    except ValueError:
        return False
    return bool(p.scheme in ("http", "https") and p.netloc)
