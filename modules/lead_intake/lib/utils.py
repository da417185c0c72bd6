from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

_WS_RE = re.compile(r"\s+")


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs/YAML.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return now_utc().isoformat().replace("+00:00", "Z")


def to_rfc3339(dt: datetime) -> str:
    """Seconds-precision RFC3339; naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def sha1_hex(s: str) -> str:
    return hashlib.sha1(s.encode("utf-8")).hexdigest()


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def clean_text(s: str | None) -> str:
    """NBSP -> space, collapse runs of whitespace, trim."""
    if not s:
        return ""
    return _WS_RE.sub(" ", s.replace("\u00a0", " ")).strip()


def contains_any_ci(haystack: str, terms: Iterable[str]) -> bool:
    """Case-insensitive substring match; blank terms never match."""
    h = (haystack or "").lower()
    for t in terms:
        t = (t or "").strip().lower()
        if t and t in h:
            return True
    return False


def parse_timestamp(value: Any) -> datetime | None:
    """RFC3339, plain YYYY-MM-DD, or epoch seconds/milliseconds. None when unparseable."""
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    if s.isdigit():
        n = int(s)
        # >= 1e12 can only be milliseconds for any plausible date
        if n >= 1_000_000_000_000:
            return datetime.fromtimestamp(n / 1000.0, tz=timezone.utc)
        return datetime.fromtimestamp(n, tz=timezone.utc)
    return None
