from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .context import FetchContext


class WorkMode(str, Enum):
    REMOTE = "Remote"
    HYBRID = "Hybrid"
    ONSITE = "Onsite"
    UNKNOWN = "Unknown"


@dataclass
class JobLead:
    """
    A single posting as produced by a connector (pre-filter, pre-dedupe).
    Connectors fill what they know; identity is derived later by canonical.compute_source_id.
    """

    company: str
    title: str
    url: str
    location: str = ""
    work_mode: WorkMode = WorkMode.UNKNOWN
    ats_job_id: str = ""  # e.g. "lever:acme:1234"; empty when the source has no stable id
    req_id: str = ""
    description: str = ""
    posted_at: datetime | None = None
    source: str = ""  # "greenhouse", "lever", "workday", "smartrecruiters", "email"
    logo_url: str = ""

    # email-only identity hints
    message_id: str = ""
    sender: str = ""
    subject: str = ""


@dataclass
class JobRow:
    """A row of the `jobs` table, ready for insert_job_if_new."""

    company: str
    title: str
    url: str
    location: str = ""
    work_mode: str = ""
    score: int = 0
    tags: list[str] = field(default_factory=list)
    received_at: datetime | None = None
    source_id: str = ""
    seen_from_source: str = ""
    logo_key: str = ""


@dataclass
class ScrapeResult:
    """
    Result bundle produced by one connector for one cycle.
    - leads: everything the connector found (NOT filtered, NOT deduped).
    - errors: non-fatal issues (one company failed, deadline hit mid-run, ...).
    - finalize: optional post-processing hook, called after this source's leads are processed.
    """

    source: str
    leads: list[JobLead] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    finalize: Callable[[FetchContext], None] | None = None


@dataclass(frozen=True)
class ScrapeStatus:
    running: bool = False
    last_run_at: datetime | None = None
    last_ok_at: datetime | None = None
    last_error: str = ""
    last_added: int = 0

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for k in ("last_run_at", "last_ok_at"):
            v = out[k]
            out[k] = v.isoformat() if v else None
        return out


@dataclass(frozen=True)
class NewJobEvent:
    source_id: str
    company: str
    title: str
    url: str
    score: int = 0
    type: str = "job_created"
