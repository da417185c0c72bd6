# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from datetime import datetime, time, timedelta
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from modules.lead_intake import main as lead_main
from modules.lead_intake.lib.config import Settings, load_settings
from modules.lead_intake.lib.events import Notifier
from modules.lead_intake.lib.status import StatusRegister

from .logging_utils import write_activity_log, write_error_log

LOG = logging.getLogger(__name__)

JOB_ID = "lead_intake"


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the CLI can manage lifecycle cleanly.
    """

    def __init__(self, scheduler: BackgroundScheduler, status: StatusRegister) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()
        self.status = status

    def stop(self) -> None:
        """
        Promptly shut down APScheduler. A cycle already in flight is allowed to finish.
        """
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())

    def next_run_time(self) -> datetime | None:
        job = self._scheduler.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job else None


# ---- Module API -------------------------------------------------------------


def start(
    settings_path: str,
    interval_seconds: int | None = None,
    notifier: Notifier | None = None,
    status: StatusRegister | None = None,
    *,
    run_immediately: bool = True,
) -> SchedulerController:
    """
    Load settings once (to fail fast on a bad file and pick the trigger),
    schedule the ingestion cycle and start the background scheduler.

    Trigger precedence:
      1. `interval_seconds` argument
      2. the `schedule` block of the settings file (interval/cron/daily_time)
      3. `poll_interval_sec` from the settings file (default 1800)

    Each cycle re-reads the settings file, so config edits apply on the next run.
    """
    settings = load_settings(settings_path)
    tz = _resolve_timezone(settings.timezone)
    status = status or StatusRegister()

    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(1)},
        jobstores={"default": MemoryJobStore()},
    )

    trigger = _trigger_for(settings, interval_seconds, tz)
    job_kwargs: dict[str, Any] = {}
    if run_immediately:
        job_kwargs["next_run_time"] = datetime.now(tz)

    scheduler.add_job(
        func=run_cycle,
        trigger=trigger,
        id=JOB_ID,
        kwargs={"settings_path": settings_path, "notifier": notifier, "status": status},
        max_instances=1,
        coalesce=True,
        replace_existing=True,
        **job_kwargs,
    )

    if os.getenv("SCHEDULER_PREVIEW", None) == "1":
        preview = _preview_trigger(trigger, tz, count=int(os.getenv("SCHEDULER_PREVIEW_COUNT", "6")))
        print(f"PREVIEW[{JOB_ID}]:", ", ".join(t.isoformat() for t in preview) if preview else "(none)")

    scheduler.start()
    job = scheduler.get_job(JOB_ID)
    nrt = getattr(job, "next_run_time", None) if job else None
    LOG.info("Scheduler started trigger=%s next_run_time=%s", trigger, nrt.isoformat() if nrt else None)

    return SchedulerController(scheduler, status)


def run_cycle(
    settings_path: str,
    notifier: Notifier | None = None,
    status: StatusRegister | None = None,
) -> int | None:
    """
    One scheduled ingestion cycle, guarded by the status register.
    Returns the number of new jobs, or None when skipped or failed.
    """
    status = status or StatusRegister()
    if not status.try_begin():
        LOG.warning("Job[%s] skipped: previous cycle still running", JOB_ID)
        return None

    started = _time.monotonic()
    LOG.info("Job[%s] starting", JOB_ID)
    try:
        added = lead_main.run(notifier=notifier, config_path=settings_path)
    except Exception as e:
        LOG.exception("Job[%s] raised an exception.", JOB_ID)
        status.finish(0, error=repr(e))
        _write_record(write_error_log, status="error", duration_s=_time.monotonic() - started, error=repr(e))
        return None

    duration = _time.monotonic() - started
    status.finish(added)
    LOG.info("Job[%s] finished in %.3fs added=%d", JOB_ID, duration, added)
    _write_record(write_activity_log, status="ok", duration_s=duration, added=added)
    return added


# ---- Helpers ----------------------------------------------------------------


def _trigger_for(settings: Settings, interval_seconds: int | None, tz) -> Any:
    if interval_seconds:
        if int(interval_seconds) <= 0:
            raise ValueError("interval_seconds must be > 0")
        return IntervalTrigger(seconds=int(interval_seconds), timezone=tz)
    if settings.schedule:
        return _build_trigger(settings.schedule, tz)
    return IntervalTrigger(seconds=settings.poll_interval_sec, timezone=tz)


def _preview_trigger(trigger, tz, count: int = 6, start=None):
    """
    Return next `count` fire times for visibility in logs/prints.
    Seeds previous_fire_time = now = `start` (or "now" in tz), then advances
    `now` by 1µs after each hit so the next lookup moves forward.
    """
    now = start or datetime.now(tz=tz)
    prev = now
    times = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def _resolve_timezone(name: str | None = None):
    """
    APScheduler 3.x expects a pytz timezone. Order: explicit name, env TZ, UTC.
    """
    tz_name = name or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid or missing tz '%s')", tz_name)
        return pytz.UTC


def _build_trigger(trig_def: dict[str, Any], tz) -> Any:
    """
    Build an APScheduler trigger from the `schedule` block.

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     {second?, minute?, hour?, day?, day_of_week?, month?, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     "*/15 * * * *"}  # crontab, scheduler tz
      {"daily_time": {"time": "HH:MM[:SS]" | ["..."], "day_of_week"?: "...", "timezone"?: "..."}}

    A block's own 'timezone' wins over the scheduler tz.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    def _tz(z):
        if not z:
            return None
        if isinstance(z, str):
            return pytz.timezone(z)
        return z

    default_tz = _tz(tz)

    present = [k for k in ("interval", "cron", "daily_time") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron','daily_time'} must be provided")
    kind = present[0]

    # ---------- INTERVAL ----------
    if kind == "interval":
        spec = trig_def["interval"]
        if not isinstance(spec, dict):
            raise ValueError("interval must be an object with time fields")

        allowed = {"weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date"}
        unknown = set(spec.keys()) - allowed
        if unknown:
            raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

        def _as_int_ge0(name: str) -> int:
            if name not in spec:
                return 0
            try:
                v = int(spec[name])
            except (TypeError, ValueError) as err:
                raise ValueError(f"interval.{name} must be an integer") from err
            if v < 0:
                raise ValueError(f"interval.{name} must be >= 0")
            return v

        iv = {k: _as_int_ge0(k) for k in ("weeks", "days", "hours", "minutes", "seconds")}
        if sum(iv.values()) == 0:
            raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")

        kwargs: dict[str, Any] = {k: v for k, v in iv.items() if v}
        jitter = _as_int_ge0("jitter")
        if jitter:
            kwargs["jitter"] = jitter
        for k in ("start_date", "end_date"):
            if k in spec:
                kwargs[k] = spec[k]

        return IntervalTrigger(timezone=_tz(spec.get("timezone")) or default_tz, **kwargs)

    # ---------- CRON ----------
    if kind == "cron":
        cron_spec = trig_def["cron"]
        if isinstance(cron_spec, str):
            fields = cron_spec.strip().split()
            if len(fields) != 5:
                raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {cron_spec!r}")
            return CronTrigger.from_crontab(cron_spec, timezone=default_tz)
        if isinstance(cron_spec, dict):
            allowed = {
                "second",
                "minute",
                "hour",
                "day",
                "day_of_week",
                "month",
                "timezone",
                "start_date",
                "end_date",
                "jitter",
            }
            unknown = set(cron_spec.keys()) - allowed
            if unknown:
                raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")

            return CronTrigger(
                second=cron_spec.get("second", 0),
                minute=cron_spec.get("minute", 0),
                hour=cron_spec.get("hour"),
                day=cron_spec.get("day"),
                day_of_week=cron_spec.get("day_of_week"),
                month=cron_spec.get("month"),
                start_date=cron_spec.get("start_date"),
                end_date=cron_spec.get("end_date"),
                jitter=cron_spec.get("jitter"),
                timezone=_tz(cron_spec.get("timezone")) or default_tz,
            )
        raise ValueError("cron must be a crontab string or an object")

    # ---------- DAILY TIME ----------
    dtdef = trig_def["daily_time"]
    if not isinstance(dtdef, dict):
        raise ValueError("daily_time must be an object")

    allowed = {"time", "day_of_week", "timezone"}
    unknown = set(dtdef.keys()) - allowed
    if unknown:
        raise ValueError(f"daily_time has unknown field(s): {sorted(unknown)}")

    tzinfo = _tz(dtdef.get("timezone")) or default_tz

    def _parse_time(s: str) -> tuple[int, int, int]:
        parts = s.split(":")
        if len(parts) not in (2, 3):
            raise ValueError(f"daily_time.time must be 'HH:MM' or 'HH:MM:SS', got {s!r}")
        try:
            hh = int(parts[0])
            mm = int(parts[1])
            ss = int(parts[2]) if len(parts) == 3 else 0
        except ValueError as err:
            raise ValueError(f"daily_time.time must contain integers: {s!r}") from err
        time(hh, mm, ss)  # validates ranges
        return hh, mm, ss

    times = dtdef.get("time")
    if times is None:
        raise ValueError("daily_time requires 'time'")
    if isinstance(times, str):
        times = [times]
    if not isinstance(times, (list, tuple)):
        raise ValueError("daily_time.time must be a string or list of strings")

    per_time = [
        CronTrigger(second=s, minute=m, hour=h, day_of_week=dtdef.get("day_of_week"), timezone=tzinfo)
        for h, m, s in sorted({_parse_time(str(t)) for t in times})
    ]
    return per_time[0] if len(per_time) == 1 else OrTrigger(per_time)


def _write_record(writer, status: str, duration_s: float, **fields: Any) -> None:
    """Best-effort JSONL logging; never fails the job."""
    try:
        writer({
            "component": "service.scheduler",
            "op": "job_run",
            "job_id": JOB_ID,
            "status": status,
            "duration_ms": int(duration_s * 1000),
            **fields,
        })
    except (OSError, TypeError, ValueError):
        LOG.debug("JSONL write failed for job[%s]", JOB_ID, exc_info=True)
