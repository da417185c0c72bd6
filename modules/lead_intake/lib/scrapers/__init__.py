# lead_intake/scrapers/__init__.py
from __future__ import annotations

from .base import BaseFetcher, ScraperError, SourceBlocked, SourceUnavailable
from .greenhouse import GreenhouseFetcher
from .lever import LeverFetcher
from .registry import all_kinds, get, register
from .smartrecruiters import SmartRecruitersFetcher
from .workday import WorkdayFetcher

__all__ = [
    "BaseFetcher",
    "GreenhouseFetcher",
    "LeverFetcher",
    "ScraperError",
    "SmartRecruitersFetcher",
    "SourceBlocked",
    "SourceUnavailable",
    "WorkdayFetcher",
    "all_kinds",
    "get",
    "register",
]
