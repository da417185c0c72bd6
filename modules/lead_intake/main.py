from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.events import Notifier
from .lib.logging_bridge import activity as log_activity


def run(notifier: Notifier | None = None, **kwargs: Any) -> int:
    """
    Entry point for the 'lead_intake' module.

    Accepts kwargs (from scheduler/CLI), including:
      config_path: str             # YAML/JSON config; falls back to env LEAD_INTAKE_CONFIG
      config: dict                 # inline config mapping (tests)
      sqlite_path: str             # override the configured DB path

    Returns:
      number of new jobs stored this cycle.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "lead_intake.main",
        "op": "start",
        "sources": settings.enabled_kinds(),
        "sqlite_path": settings.sqlite_path,
    })

    return _run_engine(settings, notifier)
