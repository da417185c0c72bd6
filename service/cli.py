# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the APScheduler polling loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

run [--kwargs k=v ...]
    - Executes one ingestion cycle via modules.lead_intake.main.run(...)
    - Prints the number of newly stored jobs

status [--run]
    - Prints the status register snapshot plus DB counters as JSON
    - With --run, runs one guarded cycle first so the snapshot is populated

validate-config
    - Loads/validates the settings file and returns nonzero on error

The settings file comes from --config, else env LEAD_INTAKE_CONFIG.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from types import SimpleNamespace
from typing import Any

from modules.lead_intake import main as lead_main
from modules.lead_intake.lib.config import ConfigError, load_settings
from modules.lead_intake.lib.db import JobStore
from modules.lead_intake.lib.events import LogNotifier
from modules.lead_intake.lib.status import StatusRegister
from service import logging_utils as L
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    L.configure_console_logging()


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    - Values that look like JSON (true/false/null/number/object/array) are parsed.
    - Otherwise keep as raw strings.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _config_path(args: argparse.Namespace) -> str:
    path = (args.config or os.getenv("LEAD_INTAKE_CONFIG") or "").strip()
    if not path:
        raise ConfigError("no settings file: pass --config or set LEAD_INTAKE_CONFIG")
    return path


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(_config_path(args))
    except ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    print(f"OK: configuration is valid. sources={','.join(settings.enabled_kinds()) or '(none)'}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    kwargs = _parse_kv_pairs(args.kwargs or [])
    try:
        kwargs.setdefault("config_path", _config_path(args))
        added = lead_main.run(**kwargs)
    except KeyboardInterrupt:
        return 130
    except ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "component": "service.cli",
            "op": "run",
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return 1

    L.write_activity_log({
        "component": "service.cli",
        "op": "run",
        "trigger_type": "adhoc",
        "added": added,
        "duration_ms": int((time.monotonic() - start_time) * 1000),
    })
    print(f"DONE: {added} new job(s) stored.")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    try:
        path = _config_path(args)
        settings = load_settings(path)
    except ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1

    status = StatusRegister()
    if args.run:
        _scheduler.run_cycle(path, status=status)

    with JobStore(settings.sqlite_path) as store:
        latest = store.latest_jobs(limit=1)
        out = {
            "status": status.snapshot(),
            "jobs_in_db": store.count_jobs(),
            "latest_job": latest[0] if latest else None,
        }
    print(json.dumps(out, indent=2, default=str))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the scheduler loop in a daemon-like fashion until a termination
    signal is received.
    """
    L.write_activity_log({"component": "service.cli", "op": "serve_start"})

    stop_event = threading.Event()
    running = SimpleNamespace(sched=None)

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()
        _safe_stop("scheduler", running.sched)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        running.sched = _scheduler.start(
            _config_path(args),
            interval_seconds=args.interval,
            notifier=LogNotifier(),
        )
        LOG.info("Scheduler started: %r", running.sched)

        while not stop_event.is_set():
            time.sleep(0.3)

        _safe_stop("scheduler", running.sched)
        L.write_activity_log({"component": "service.cli", "op": "serve_stop"})
        return 0

    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
        return 130
    except ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        _graceful_shutdown("UnhandledException")
        return 1


def _safe_stop(name: str, handle: Any) -> None:
    """Best-effort stop & join for a scheduler controller."""
    if handle is None:
        return
    try:
        handle.stop()
        handle.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping %s", name)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job-lead intake service tools",
    )
    p.add_argument(
        "--config",
        help="Path to the settings file (falls back to LEAD_INTAKE_CONFIG env).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # serve
    sp = sub.add_parser("serve", help="Run the polling scheduler until signalled.")
    sp.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Poll interval in seconds (overrides the settings file).",
    )
    sp.set_defaults(func=cmd_serve)

    # run
    sp = sub.add_parser("run", help="Execute one ingestion cycle now.")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Extra keyword arguments for the module, e.g. sqlite_path=/tmp/x.db (JSON values supported).",
    )
    sp.set_defaults(func=cmd_run)

    # status
    sp = sub.add_parser("status", help="Print the scrape status snapshot as JSON.")
    sp.add_argument("--run", action="store_true", help="Run one cycle first.")
    sp.set_defaults(func=cmd_status)

    # validate-config
    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
