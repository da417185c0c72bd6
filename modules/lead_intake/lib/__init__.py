# modules/lead_intake/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .engine import run_once
from .models import JobLead, ScrapeResult, ScrapeStatus, WorkMode

# Ensure built-in connectors register themselves
from .mail import fetcher as _email  # noqa: F401
from .scrapers import greenhouse as _greenhouse  # noqa: F401
from .scrapers import lever as _lever  # noqa: F401
from .scrapers import smartrecruiters as _smartrecruiters  # noqa: F401
from .scrapers import workday as _workday  # noqa: F401

__all__ = [
    "ConfigError",
    "JobLead",
    "ScrapeResult",
    "ScrapeStatus",
    "Settings",
    "WorkMode",
    "run_once",
]
