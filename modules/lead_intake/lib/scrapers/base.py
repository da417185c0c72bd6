from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from ..config import Settings
from ..context import FetchContext
from ..models import ScrapeResult
from ..ratelimit import HostLimiter


class ScraperError(Exception):
    """Base exception for connector failures."""


class SourceUnavailable(ScraperError):
    """The upstream can't be reached or authenticated with; the whole source is skipped this cycle."""


class SourceBlocked(ScraperError):
    """Anti-bot defenses (Cloudflare challenge, 403/429) answered instead of the API."""


class PartialFetch(ScraperError):
    """A company fetch failed after some leads were collected; carries those leads."""

    def __init__(self, leads: list, cause: BaseException) -> None:
        super().__init__(f"{cause!r} after {len(leads)} lead(s)")
        self.leads = list(leads)
        self.cause = cause


class BaseFetcher(ABC):
    """
    Uniform connector interface.

    Contract:
      - fetch(ctx) returns ONE ScrapeResult with every lead found (dedupe happens downstream).
      - On deadline, stop issuing requests and return partial leads plus an error string.
      - Raise (SourceUnavailable or anything else) only when the whole source is unusable.
      - Do NOT write to the DB, send notifications, or mutate global state.
    """

    # Concrete subclasses MUST set this to a stable registry key, e.g. "lever"
    kind: ClassVar[str] = ""
    # Default per-source fetch budget in seconds (Settings.timeouts may override)
    timeout_sec: ClassVar[float] = 120.0

    @property
    def name(self) -> str:
        return self.kind

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings, limiter: HostLimiter) -> BaseFetcher | None:
        """Build the connector for this cycle, or None when the source is disabled/empty."""
        raise NotImplementedError

    @abstractmethod
    def fetch(self, ctx: FetchContext) -> ScrapeResult:
        raise NotImplementedError

    def close(self) -> None:
        """Release connector-owned resources (sessions); called by the orchestrator."""
        return None
