"""
Bounded per-company worker pool shared by the ATS connectors.

Workers pull companies off a queue (so one slow company doesn't serialize the
rest), each company gets a child context with its own budget, and the pool
stops handing out work once the connector's context expires.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait

from ..config import CompanyRef
from ..context import DeadlineExceeded, FetchContext
from ..models import JobLead
from .base import PartialFetch

log = logging.getLogger(__name__)

CompanyWorker = Callable[[FetchContext, CompanyRef], list[JobLead]]

# Extra time allowed past the deadline for in-flight requests to return.
_JOIN_GRACE_SEC = 5.0


def run_company_pool(
    ctx: FetchContext,
    companies: Sequence[CompanyRef],
    worker: CompanyWorker,
    *,
    label: str,
    workers: int = 8,
    per_company_timeout: float | None = None,
) -> tuple[list[JobLead], list[str]]:
    """
    Run `worker` for every company with at most `workers` in flight.
    Returns (leads in completion order, error strings). Never raises for a single company.
    """
    if not companies:
        return [], []

    work: queue.Queue[CompanyRef] = queue.Queue()
    for c in companies:
        work.put(c)

    leads: list[JobLead] = []
    errors: list[str] = []
    lock = threading.Lock()

    def _drain() -> None:
        while not ctx.expired():
            try:
                company = work.get_nowait()
            except queue.Empty:
                return
            cctx = ctx.child(per_company_timeout)
            try:
                found = worker(cctx, company)
            except DeadlineExceeded as e:
                with lock:
                    errors.append(f"{label} company={company.slug}: {e}")
                continue
            except PartialFetch as e:
                log.warning("[ats:%s] company=%s kept=%d err=%r", label, company.slug, len(e.leads), e.cause)
                with lock:
                    leads.extend(e.leads)
                    errors.append(f"{label} company={company.slug}: {e}")
                continue
            except Exception as e:
                log.warning("[ats:%s] company=%s err=%r", label, company.slug, e)
                with lock:
                    errors.append(f"{label} company={company.slug}: {e!r}")
                continue
            finally:
                cctx.cancel()
            log.info("[ats:%s] company=%s jobs=%d", label, company.slug, len(found))
            with lock:
                leads.extend(found)

    n = max(1, min(int(workers), len(companies)))
    pool = ThreadPoolExecutor(max_workers=n, thread_name_prefix=f"ats-{label}")
    try:
        futures = [pool.submit(_drain) for _ in range(n)]
        rem = ctx.remaining()
        _done, pending = wait(futures, timeout=None if rem is None else rem + _JOIN_GRACE_SEC)
        if pending:
            ctx.cancel()
            with lock:
                errors.append(f"{label}: {len(pending)} worker(s) still running at deadline")
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    left = work.qsize()
    with lock:
        if left:
            errors.append(f"{label}: deadline exceeded with {left} company(ies) not fetched")
        return list(leads), list(errors)
