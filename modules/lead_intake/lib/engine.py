"""
One ingestion cycle: fetch every enabled source concurrently, then push the
leads through filter / dedupe / enrichment / notification.

Features:
  - One thread and one deadline per source; a stuck source is cancelled and abandoned
  - Results handed over in completion order through a bounded queue
  - A failing source is logged and left out; the others still land
  - Dependency injection for testability (`get_fetchers`, `store`, `enrich`)
  - Structured summary via `logging_bridge`
"""

from __future__ import annotations

import logging
import queue
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from . import logging_bridge
from .config import Settings
from .context import FetchContext
from .db import JobStore
from .enrich import Enricher
from .events import Notifier
from .http_client import BROWSER_USER_AGENT, HttpClient
from .models import ScrapeResult
from .processor import LeadProcessor
from .ratelimit import HostLimiter
from .scrapers.base import BaseFetcher

log = logging.getLogger(__name__)

# Extra wait past the longest source deadline before a source is abandoned.
ABANDON_GRACE_SEC = 5.0

FetcherFactory = Callable[[Settings, HostLimiter], list[BaseFetcher]]


@dataclass
class _Outcome:
    kind: str
    result: ScrapeResult | None = None
    error: BaseException | None = None
    duration_ms: int = 0
    timed_out: bool = False


# =============================================================================
# DEFAULT CONNECTOR LOOKUP (PRODUCTION)
# =============================================================================
def _default_get_fetchers(settings: Settings, limiter: HostLimiter) -> list[BaseFetcher]:
    from .scrapers.registry import build_enabled

    return build_enabled(settings, limiter)


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    notifier: Notifier | None = None,
    *,
    store: JobStore | None = None,
    get_fetchers: FetcherFactory | None = None,
    limiter: HostLimiter | None = None,
    enrich: bool = True,
) -> int:
    """
    Run one complete fetch + insert cycle.

    Args:
        settings: validated Settings snapshot for this cycle.
        notifier: receives one NewJobEvent per newly stored job.
        store: JobStore to write to (opened from settings.sqlite_path when omitted).
        get_fetchers: override connector construction (tests).
        limiter: shared per-host limiter (a fresh one per cycle when omitted).
        enrich: look up company domains/logos for new jobs.

    Returns:
        Number of new jobs stored. Source failures never raise.
    """
    start_ns = time.perf_counter_ns()
    limiter = limiter or HostLimiter(settings.rate_per_sec, settings.burst)
    fetchers = (get_fetchers or _default_get_fetchers)(settings, limiter)

    outcomes = _fetch_all(settings, fetchers)

    # -------------------------------------------------------------------------
    # PER-SOURCE BOOKKEEPING
    # -------------------------------------------------------------------------
    found_by_source: dict[str, int] = {}
    errors_by_source: dict[str, list[str]] = {}
    durations_ms: dict[str, int] = {}
    for o in outcomes:
        durations_ms[o.kind] = o.duration_ms
        if o.result is None:
            msg = "abandoned after deadline" if o.timed_out else repr(o.error)
            errors_by_source[o.kind] = [msg]
            logging_bridge.error({
                "component": "lead_intake.engine",
                "op": "fetch",
                "kind": o.kind,
                "error": msg,
                "duration_ms": o.duration_ms,
            })
            continue
        found_by_source[o.kind] = len(o.result.leads)
        if o.result.errors:
            errors_by_source[o.kind] = list(o.result.errors)
            for err in o.result.errors:
                log.warning("[poll] source=%s err=%s", o.kind, err)
        log.info("[poll] got source=%s leads=%d errors=%d", o.kind, len(o.result.leads), len(o.result.errors))

    # -------------------------------------------------------------------------
    # INSERT PHASE (own deadline, sources in completion order)
    # -------------------------------------------------------------------------
    own_store = store is None
    if store is None:
        store = JobStore(settings.sqlite_path)
    http: HttpClient | None = None
    added_by_source: dict[str, int] = {}
    skipped: dict[str, int] = {}
    try:
        enricher = None
        if enrich:
            http = HttpClient(timeout=10.0, user_agent=BROWSER_USER_AGENT, limiter=limiter)
            enricher = Enricher(store, http)
        processor = LeadProcessor(store, settings, notifier, enricher)
        insert_ctx = FetchContext.with_timeout(settings.insert_timeout_sec)

        for o in outcomes:
            if o.result is None:
                continue
            added_by_source[o.kind] = processor.process(insert_ctx, o.result.leads)
            if o.result.finalize is None:
                continue
            if not processor.complete:
                # unhandled leads must be offered again next cycle
                log.warning("[poll] source=%s insert incomplete; finalize skipped", o.kind)
                logging_bridge.error({
                    "component": "lead_intake.engine",
                    "op": "finalize_skipped",
                    "kind": o.kind,
                    "error": "insert phase incomplete",
                })
                continue
            try:
                o.result.finalize(insert_ctx)
            except Exception as e:
                logging_bridge.error({
                    "component": "lead_intake.engine",
                    "op": "finalize",
                    "kind": o.kind,
                    "error": repr(e),
                })
        insert_ctx.cancel()
        skipped = dict(processor.skipped)
    finally:
        if http is not None:
            http.close()
        if own_store:
            store.close()

    # -------------------------------------------------------------------------
    # SUMMARY LOG (always emitted)
    # -------------------------------------------------------------------------
    total_added = sum(added_by_source.values())
    logging_bridge.activity({
        "component": "lead_intake.engine",
        "op": "summary",
        "sources": [f.kind for f in fetchers],
        "found_by_source": found_by_source,
        "added_by_source": added_by_source,
        "errors_by_source": errors_by_source,
        "skipped": skipped,
        "durations_ms": durations_ms,
        "total_added": total_added,
        "total_ms": int((time.perf_counter_ns() - start_ns) // 1_000_000),
    })
    return total_added


# =============================================================================
# FETCH PHASE
# =============================================================================
def _fetch_all(settings: Settings, fetchers: list[BaseFetcher]) -> list[_Outcome]:
    """
    Run every connector in its own thread with its own deadline.
    Returns outcomes in completion order; connectors still running after
    their deadline + grace are cancelled and reported as timed out.
    """
    if not fetchers:
        return []

    budgets = {f.kind: settings.timeout_for(f.kind, f.timeout_sec) for f in fetchers}
    contexts = {f.kind: FetchContext.with_timeout(budgets[f.kind]) for f in fetchers}
    done: queue.Queue[_Outcome] = queue.Queue(maxsize=len(fetchers))

    def _run(fetcher: BaseFetcher) -> None:
        t0 = time.perf_counter_ns()
        outcome = _Outcome(kind=fetcher.kind)
        try:
            outcome.result = fetcher.fetch(contexts[fetcher.kind])
        except Exception as e:
            outcome.error = e
        finally:
            outcome.duration_ms = int((time.perf_counter_ns() - t0) // 1_000_000)
            try:
                fetcher.close()
            except Exception:
                log.debug("[poll] close failed source=%s", fetcher.kind, exc_info=True)
            done.put(outcome)

    pool = ThreadPoolExecutor(max_workers=len(fetchers), thread_name_prefix="fetch")
    outcomes: list[_Outcome] = []
    pending = {f.kind for f in fetchers}
    give_up_at = time.monotonic() + max(budgets.values()) + ABANDON_GRACE_SEC
    try:
        for f in fetchers:
            pool.submit(_run, f)
        while pending:
            left = give_up_at - time.monotonic()
            if left <= 0:
                break
            try:
                o = done.get(timeout=left)
            except queue.Empty:
                break
            pending.discard(o.kind)
            outcomes.append(o)
    finally:
        for kind in pending:
            contexts[kind].cancel()
            outcomes.append(_Outcome(kind=kind, timed_out=True, duration_ms=int(budgets[kind] * 1000)))
        for kind, ctx in contexts.items():
            if kind not in pending:
                ctx.cancel()
        pool.shutdown(wait=False, cancel_futures=True)
    return outcomes
