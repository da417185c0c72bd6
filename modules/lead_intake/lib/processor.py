from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

import requests

from . import logging_bridge
from .canonical import compute_source_id
from .config import Settings
from .context import DeadlineExceeded, FetchContext
from .db import JobStore
from .enrich import Enricher
from .events import Notifier, NullNotifier
from .models import JobLead, JobRow, NewJobEvent
from .rules import LeadScorer, should_keep_job
from .utils import now_utc

log = logging.getLogger(__name__)


def build_job_row(lead: JobLead, scorer: LeadScorer) -> JobRow:
    score, tags = scorer.score(lead)
    return JobRow(
        company=lead.company,
        title=lead.title,
        url=lead.url,
        location=lead.location,
        work_mode=lead.work_mode.value,
        score=score,
        tags=tags,
        received_at=lead.posted_at or now_utc(),
        source_id=compute_source_id(lead),
        seen_from_source=lead.source,
    )


class LeadProcessor:
    """
    filter -> score -> insert-if-new -> enrich (best effort) -> notify.

    One instance per cycle: its Enricher caches must not outlive the cycle.
    """

    def __init__(
        self,
        store: JobStore,
        settings: Settings,
        notifier: Notifier | None = None,
        enricher: Enricher | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.notifier = notifier or NullNotifier()
        self.enricher = enricher
        self.scorer = LeadScorer(settings.scoring)
        self.skipped: dict[str, int] = {}
        # False after a process() call that left leads unhandled
        self.complete = True

    def process(self, ctx: FetchContext, leads: Iterable[JobLead]) -> int:
        """
        Handle one source's leads and return how many new rows were written.

        Sets self.complete to False when the deadline stopped the loop early or
        a lead could not be written because of a database error; callers use it
        to hold back source-side acknowledgements (e.g. marking mail seen).
        """
        added = 0
        self.complete = True
        for lead in leads:
            if ctx.expired():
                log.warning("[process] insert phase deadline hit; remaining leads dropped")
                self.complete = False
                break

            keep, reason = should_keep_job(self.settings, lead)
            if not keep:
                self.skipped[reason] = self.skipped.get(reason, 0) + 1
                log.debug("[process] skip reason=%s title=%r company=%r", reason, lead.title, lead.company)
                continue

            row = build_job_row(lead, self.scorer)
            row.logo_key = self._lead_logo_key(ctx, lead)
            try:
                is_new = self.store.insert_job_if_new(row)
            except ValueError as e:
                log.warning("[process] insert failed source_id=%s url=%r err=%r", row.source_id, lead.url, e)
                continue
            except sqlite3.Error as e:
                log.warning("[process] insert failed source_id=%s url=%r err=%r", row.source_id, lead.url, e)
                self.complete = False
                continue
            if not is_new:
                continue

            added += 1
            if not row.logo_key:
                self._enrich(ctx, row)
            self._publish(row)
        return added

    def _lead_logo_key(self, ctx: FetchContext, lead: JobLead) -> str:
        """Cached key for the lead's own logo URL; '' when there is none."""
        if self.enricher is None or not lead.logo_url:
            return ""
        try:
            return self.enricher.logo_key_for_url(ctx, lead.logo_url)
        except (requests.RequestException, DeadlineExceeded, sqlite3.Error) as e:
            logging_bridge.error({
                "component": "lead_intake.processor",
                "op": "logo",
                "source_id": compute_source_id(lead),
                "url": lead.logo_url,
                "error": repr(e),
            })
            return ""

    def _enrich(self, ctx: FetchContext, row: JobRow) -> None:
        if self.enricher is None:
            return
        try:
            key = self.enricher.logo_key_for_company(ctx, row.company)
            if key and self.store.set_logo_key_if_missing(row.source_id, key):
                row.logo_key = key
        except (requests.RequestException, DeadlineExceeded, sqlite3.Error) as e:
            logging_bridge.error({
                "component": "lead_intake.processor",
                "op": "enrich",
                "company": row.company,
                "source_id": row.source_id,
                "error": repr(e),
            })

    def _publish(self, row: JobRow) -> None:
        event = NewJobEvent(
            source_id=row.source_id,
            company=row.company,
            title=row.title,
            url=row.url,
            score=row.score,
        )
        try:
            self.notifier.publish(event)
        except Exception as e:
            # the row is stored; a broken subscriber must not stop the batch
            logging_bridge.error({
                "component": "lead_intake.processor",
                "op": "publish",
                "source_id": row.source_id,
                "error": repr(e),
            })
