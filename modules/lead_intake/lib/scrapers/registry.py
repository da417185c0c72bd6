from __future__ import annotations

from typing import TYPE_CHECKING

from .. import logging_bridge
from .base import BaseFetcher

if TYPE_CHECKING:
    from ..config import Settings
    from ..ratelimit import HostLimiter

# kind -> connector class, filled by @register at import time
_REGISTRY: dict[str, type[BaseFetcher]] = {}


def _key(kind: str) -> str:
    return (kind or "").strip().lower()


def register(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Class decorator: make a connector discoverable by its `kind`."""
    key = _key(getattr(cls, "kind", "") or "")
    if not key:
        raise ValueError(f"connector {cls.__name__} has no 'kind'")
    prev = _REGISTRY.get(key)
    if prev is not None and prev is not cls:
        raise ValueError(f"kind {key!r} is already taken by {prev.__name__}")
    _REGISTRY[key] = cls
    return cls


def get(kind: str) -> type[BaseFetcher]:
    """Connector class for `kind` (case-insensitive); KeyError if none."""
    try:
        return _REGISTRY[_key(kind)]
    except KeyError:
        raise KeyError(f"no connector registered for {kind!r}") from None


def all_kinds() -> dict[str, type[BaseFetcher]]:
    return dict(_REGISTRY)


def build_enabled(settings: Settings, limiter: HostLimiter) -> list[BaseFetcher]:
    """
    One connector per source that `settings` enables, in settings order.
    A kind with no registered class is logged and skipped; a class whose
    from_settings() returns None (nothing to do) is left out silently.
    """
    out: list[BaseFetcher] = []
    for kind in settings.enabled_kinds():
        try:
            cls = get(kind)
        except KeyError as e:
            logging_bridge.error({
                "component": "lead_intake.registry",
                "op": "resolve_fetcher",
                "kind": kind,
                "error": str(e),
            })
            continue
        fetcher = cls.from_settings(settings, limiter)
        if fetcher is not None:
            out.append(fetcher)
    return out
