"""
Structured JSONL records for lead_intake, written through service.logging_utils.

Every record should carry "component" (e.g. "lead_intake.engine") and "op".
Top-level secrets are masked here; the writer does a deep pass as well.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from service import logging_utils as _backend

_MASK = "***REDACTED***"

_SECRET_KEYS = frozenset({"password", "imap_password", "token", "secret", "authorization", "cookie", "cookies"})
_SECRET_SUFFIXES = ("_password", "_token", "_secret", "_csrf")


def _is_secret(key: Any) -> bool:
    k = str(key).lower()
    return k in _SECRET_KEYS or k.endswith(_SECRET_SUFFIXES) or "csrf" in k


def _masked(record: dict[str, Any]) -> dict[str, Any]:
    return {k: (_MASK if _is_secret(k) else v) for k, v in record.items()}


def _emit(write: Callable[[dict[str, Any]], None], fallback: logging.Logger, level: int, record: dict[str, Any]) -> None:
    payload = _masked(record)
    try:
        write(payload)
    except (OSError, TypeError, ValueError):
        # log dir unwritable or a value json can't take; keep the record on stderr
        fallback.log(level, "%s", payload)


def activity(record: dict[str, Any]) -> None:
    _emit(_backend.write_activity_log, logging.getLogger("lead_intake.activity"), logging.INFO, record)


def error(record: dict[str, Any]) -> None:
    _emit(_backend.write_error_log, logging.getLogger("lead_intake.error"), logging.ERROR, record)
