from __future__ import annotations

import contextlib
import json
import os
import sqlite3
import threading
from typing import Any

from .canonical import hash_string
from .logging_bridge import error as log_error
from .models import JobRow, WorkMode
from .utils import clean_text, now_iso, now_utc, to_rfc3339

# ---- Public API -------------------------------------------------------------


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file (and WAL side files) entirely, for pytest fixtures.
    Safe if it doesn't exist.
    """
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


def normalize_company_key(company: str) -> str:
    return clean_text(company).lower()


class JobStore:
    """
    Single logical writer over one sqlite3 connection.

    Connector threads never touch the DB; the processor and enrichment do, and
    every statement goes through self._lock. busy_timeout covers other processes
    (e.g. scripts/print_latest_jobs.py) holding the file briefly.
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        _ensure_dir(sqlite_path)
        self._conn = _connect(sqlite_path, check_same_thread=False)
        self._lock = threading.RLock()
        _apply_pragmas(self._conn)
        _ensure_schema(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> JobStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ---- jobs ----
    def insert_job_if_new(self, row: JobRow) -> bool:
        """
        INSERT OR IGNORE against the partial unique index on source_id.

        Returns True only when a new row was written. On conflict the existing
        row is left alone, except that an empty logo_key is backfilled.
        Raises ValueError when the row has no URL.
        """
        url = (row.url or "").strip()
        if not url:
            raise ValueError("missing url")

        company = clean_text(row.company) or "Unknown"
        title = clean_text(row.title) or "Job Posting"
        location = clean_text(row.location) or "Unknown"
        work_mode = (row.work_mode.value if isinstance(row.work_mode, WorkMode) else str(row.work_mode or "")).strip()
        work_mode = work_mode or WorkMode.UNKNOWN.value
        received = to_rfc3339(row.received_at or now_utc())
        source_id = (row.source_id or "").strip() or hash_string("url:" + url)
        tags_json = json.dumps(list(row.tags or []))
        logo_key = (row.logo_key or "").strip()

        try:
            with self._lock:
                cur = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO jobs
                      (company, title, location, work_mode, url, score, tags, date, source_id, seen_from_source, logo_key)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        company,
                        title,
                        location,
                        work_mode,
                        url,
                        int(row.score or 0),
                        tags_json,
                        received,
                        source_id,
                        row.seen_from_source or "",
                        logo_key,
                    ),
                )
                inserted = cur.rowcount == 1
                if not inserted and logo_key:
                    self._conn.execute(
                        """
                        UPDATE jobs SET logo_key = ?
                        WHERE source_id = ? AND (logo_key = '' OR logo_key IS NULL)
                        """,
                        (logo_key, source_id),
                    )
        except sqlite3.Error as e:
            log_error({
                "component": "lead_intake.db",
                "op": "insert_job_if_new",
                "sqlite_path": self.sqlite_path,
                "source_id": source_id,
                "error": repr(e),
            })
            raise
        row.source_id = source_id
        return inserted

    def set_logo_key_if_missing(self, source_id: str, logo_key: str) -> bool:
        if not source_id or not logo_key:
            return False
        with self._lock:
            cur = self._conn.execute(
                "UPDATE jobs SET logo_key = ? WHERE source_id = ? AND (logo_key = '' OR logo_key IS NULL)",
                (logo_key, source_id),
            )
            return cur.rowcount == 1

    def get_job(self, source_id: str) -> dict[str, Any] | None:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT id, company, title, location, work_mode, url, score, tags, date,
                       source_id, seen_from_source, logo_key
                FROM jobs WHERE source_id = ?
                """,
                (source_id,),
            )
            r = cur.fetchone()
        return _job_dict(r) if r else None

    def latest_jobs(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT id, company, title, location, work_mode, url, score, tags, date,
                       source_id, seen_from_source, logo_key
                FROM jobs ORDER BY id DESC LIMIT ?
                """,
                (int(limit),),
            )
            rows = cur.fetchall()
        return [_job_dict(r) for r in rows]

    def count_jobs(self) -> int:
        with self._lock:
            (n,) = self._conn.execute("SELECT COUNT(*) FROM jobs").fetchone()
        return int(n or 0)

    # ---- company domains ----
    def get_company_domain(self, company: str) -> str | None:
        """Cached domain for a company; None when never looked up, '' for a cached miss."""
        key = normalize_company_key(company)
        if not key:
            return None
        with self._lock:
            r = self._conn.execute("SELECT domain FROM company_domains WHERE company = ?", (key,)).fetchone()
        return None if r is None else str(r[0] or "")

    def upsert_company_domain(self, company: str, domain: str) -> None:
        key = normalize_company_key(company)
        if not key:
            return
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO company_domains (company, domain, fetched_at) VALUES (?, ?, ?)
                ON CONFLICT(company) DO UPDATE SET domain = excluded.domain, fetched_at = excluded.fetched_at
                """,
                (key, (domain or "").strip().lower(), now_iso()),
            )

    # ---- logos ----
    def has_logo(self, key: str) -> bool:
        with self._lock:
            r = self._conn.execute("SELECT 1 FROM logos WHERE key = ?", (key,)).fetchone()
        return r is not None

    def put_logo(self, key: str, content_type: str, data: bytes) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO logos (key, content_type, bytes, fetched_at) VALUES (?, ?, ?, ?)",
                (key, content_type, sqlite3.Binary(data), now_iso()),
            )

    def get_logo(self, key: str) -> tuple[str, bytes] | None:
        with self._lock:
            r = self._conn.execute("SELECT content_type, bytes FROM logos WHERE key = ?", (key,)).fetchone()
        return (str(r[0]), bytes(r[1])) if r else None


# ---- Internal utilities -----------------------------------------------------

_JOB_COLUMNS = (
    "id",
    "company",
    "title",
    "location",
    "work_mode",
    "url",
    "score",
    "tags",
    "date",
    "source_id",
    "seen_from_source",
    "logo_key",
)


def _job_dict(r: tuple) -> dict[str, Any]:
    d = dict(zip(_JOB_COLUMNS, r))
    try:
        d["tags"] = json.loads(d.get("tags") or "[]")
    except ValueError:
        d["tags"] = []
    return d


def _ensure_dir(sqlite_path: str) -> None:
    if sqlite_path == ":memory:":
        return
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str, *, check_same_thread: bool = True) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; each statement commits on its own.
    return sqlite3.connect(
        sqlite_path,
        timeout=30.0,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA busy_timeout=5000;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          company TEXT NOT NULL,
          title TEXT NOT NULL,
          location TEXT NOT NULL DEFAULT '',
          work_mode TEXT NOT NULL DEFAULT 'Unknown',
          url TEXT NOT NULL,
          score INTEGER NOT NULL DEFAULT 0,
          tags TEXT NOT NULL DEFAULT '[]',
          date TEXT NOT NULL,
          source_id TEXT NOT NULL DEFAULT '',
          seen_from_source TEXT NOT NULL DEFAULT '',
          logo_key TEXT NOT NULL DEFAULT ''
        );
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_source_id
          ON jobs (source_id) WHERE source_id != '';
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS company_domains (
          company TEXT PRIMARY KEY,
          domain TEXT NOT NULL DEFAULT '',
          fetched_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS logos (
          key TEXT PRIMARY KEY,
          content_type TEXT NOT NULL,
          bytes BLOB NOT NULL,
          fetched_at TEXT NOT NULL
        );
        """
    )
