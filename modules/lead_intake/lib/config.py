from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

from .utils import truthy

ATS_KINDS = ("greenhouse", "lever", "workday", "smartrecruiters")


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when a config mapping/file cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class CompanyRef:
    """
    One company on one ATS.
    - slug: board identifier (greenhouse/lever/smartrecruiters) or the full board URL (workday)
    - name: display name; defaults to slug
    """

    slug: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.slug


@dataclass(frozen=True)
class SourceSettings:
    enabled: bool = False
    companies: tuple[CompanyRef, ...] = ()

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.companies)


@dataclass(frozen=True)
class EmailSettings:
    enabled: bool = False
    imap_host: str = ""
    imap_port: int = 993
    username: str = ""
    mailbox: str = "INBOX"
    password_env: str = "LEAD_INTAKE_IMAP_PASSWORD"  # name of the env var holding the app password
    search_subject_any: tuple[str, ...] = ()
    max_messages: int = 30
    since_days: int = 90
    generic_links: bool = False  # non-digest mail: scrape job-looking links instead of skipping


@dataclass(frozen=True)
class FilterSettings:
    remote_ok: bool = True
    locations_allow: tuple[str, ...] = ()
    locations_block: tuple[str, ...] = ()


@dataclass(frozen=True)
class Rule:
    tag: str
    weight: int
    any: tuple[str, ...] = ()


@dataclass(frozen=True)
class Penalty:
    reason: str
    weight: int
    any: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScoringSettings:
    title_rules: tuple[Rule, ...] = ()
    keyword_rules: tuple[Rule, ...] = ()
    penalties: tuple[Penalty, ...] = ()

    @property
    def all_rules(self) -> tuple[Rule, ...]:
        return self.title_rules + self.keyword_rules


@dataclass
class Settings:
    """
    Resolved, read-only snapshot of everything one ingestion cycle needs.

    Shape of the YAML/JSON file (all sections optional):

        sqlite_path: ./local/state/leads.db
        poll_interval_sec: 1800
        schedule: {cron: "*/30 7-22 * * *"}   # optional; replaces the poll interval
        timezone: America/Chicago
        rate_limit: {per_sec: 1.0, burst: 2}
        timeouts: {greenhouse: 300, lever: 300, workday: 300, smartrecruiters: 180, email: 120, insert: 120}
        filters: {remote_ok: true, locations_allow: [...], locations_block: [...]}
        scoring:
          title_rules:   [{tag, weight, any: [...]}]
          keyword_rules: [{tag, weight, any: [...]}]
          penalties:     [{reason, weight, any: [...]}]
        email: {enabled, imap_host, imap_port, username, mailbox, password_env, search_subject_any, generic_links}
        sources:
          greenhouse: {enabled: true, companies: [{slug, name}]}
          lever: ...
          workday: {enabled: true, companies: [{slug: "https://acme.wd5.myworkdayjobs.com/en-US/Careers", name: Acme}]}
          smartrecruiters: ...
    """

    sources: dict[str, SourceSettings] = field(default_factory=dict)
    email: EmailSettings = field(default_factory=EmailSettings)
    filters: FilterSettings = field(default_factory=FilterSettings)
    scoring: ScoringSettings = field(default_factory=ScoringSettings)

    sqlite_path: str = "/app/local/state/leads.db"
    rate_per_sec: float = 1.0
    burst: int = 2
    workers: int = 8
    poll_interval_sec: int = 1800
    schedule: dict[str, Any] = field(default_factory=dict)
    timezone: str = ""
    timeouts: dict[str, float] = field(default_factory=dict)
    insert_timeout_sec: float = 120.0

    # ------------- convenience -------------
    def source(self, kind: str) -> SourceSettings:
        return self.sources.get(kind) or SourceSettings()

    def timeout_for(self, kind: str, default: float) -> float:
        v = self.timeouts.get(kind)
        return float(v) if v else float(default)

    def enabled_kinds(self) -> list[str]:
        kinds = [k for k in ATS_KINDS if self.source(k).active]
        if self.email.enabled:
            kinds.append("email")
        return kinds

    # ------------- constructors -------------
    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> Settings:
        if not isinstance(data or {}, Mapping):
            raise ConfigError("config root must be a mapping")
        d = dict(data or {})

        rate = _section(d, "rate_limit")
        timeouts_raw = _section(d, "timeouts")
        timeouts: dict[str, float] = {}
        for k, v in timeouts_raw.items():
            try:
                timeouts[str(k)] = float(v)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"timeouts.{k} must be a number") from e
        insert_timeout = timeouts.pop("insert", 120.0)

        settings = cls(
            sources=_parse_sources(_section(d, "sources")),
            email=_parse_email(_section(d, "email")),
            filters=_parse_filters(_section(d, "filters")),
            scoring=_parse_scoring(_section(d, "scoring")),
            sqlite_path=str(d.get("sqlite_path") or "/app/local/state/leads.db"),
            rate_per_sec=_num(rate.get("per_sec", 1.0), "rate_limit.per_sec", float),
            burst=_num(rate.get("burst", 2), "rate_limit.burst", int),
            workers=_num(d.get("workers", 8), "workers", int),
            poll_interval_sec=_num(d.get("poll_interval_sec", 1800), "poll_interval_sec", int),
            schedule=_section(d, "schedule"),
            timezone=str(d.get("timezone") or "").strip(),
            timeouts=timeouts,
            insert_timeout_sec=insert_timeout,
        )
        _validate_settings(settings)
        return settings

    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from module kwargs (scheduler/CLI):

            config_path: str       # YAML/JSON file; falls back to env LEAD_INTAKE_CONFIG
            config: dict           # inline mapping (tests)
            sqlite_path: str       # optional override of the file value
        """
        kw = dict(kwargs or {})
        if isinstance(kw.get("config"), Mapping):
            settings = cls.from_mapping(kw["config"])
        else:
            path = str(kw.get("config_path") or os.getenv("LEAD_INTAKE_CONFIG") or "").strip()
            if not path:
                raise ConfigError("Missing config. Provide 'config_path' (or env LEAD_INTAKE_CONFIG) or 'config'.")
            settings = load_settings(path)

        if kw.get("sqlite_path"):
            settings.sqlite_path = str(kw["sqlite_path"])
            _validate_settings(settings)
        return settings


def load_settings(path: str) -> Settings:
    """Read a .yaml/.yml (PyYAML) or .json file into Settings."""
    try:
        with open(path, encoding="utf-8") as f:
            if path.lower().endswith((".yaml", ".yml")):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"config file is invalid: {path}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"config root must be a mapping: {path}")
    return Settings.from_mapping(data)


# -----------------------------
# Helpers
# -----------------------------
def _section(d: Mapping[str, Any], key: str) -> dict[str, Any]:
    v = d.get(key)
    if v is None:
        return {}
    if not isinstance(v, Mapping):
        raise ConfigError(f"'{key}' must be a mapping.")
    return dict(v)


def _num(v: Any, name: str, typ: type) -> Any:
    try:
        return typ(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' must be a number (got {v!r}).") from e


def _str_list(v: Any, name: str) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        v = [v]
    if not isinstance(v, (list, tuple)):
        raise ConfigError(f"'{name}' must be a list of strings.")
    return tuple(s for s in (str(x).strip() for x in v if x is not None) if s)


def _parse_companies(value: Any, name: str) -> tuple[CompanyRef, ...]:
    """
    Accepts: [{"slug": "acme", "name": "Acme"}, "other-slug", ...]
    Blank slugs are dropped.
    """
    if not value:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list.")
    out: list[CompanyRef] = []
    for i, item in enumerate(value):
        if isinstance(item, str):
            slug, cname = item.strip(), ""
        elif isinstance(item, Mapping):
            slug = str(item.get("slug") or item.get("url") or "").strip()
            cname = str(item.get("name") or "").strip()
        else:
            raise ConfigError(f"{name}[{i}] must be a string or an object.")
        if slug:
            out.append(CompanyRef(slug=slug, name=cname))
    return tuple(out)


def _parse_sources(raw: Mapping[str, Any]) -> dict[str, SourceSettings]:
    out: dict[str, SourceSettings] = {}
    for kind, sec in raw.items():
        if sec is None:
            continue
        if not isinstance(sec, Mapping):
            raise ConfigError(f"sources.{kind} must be a mapping.")
        out[str(kind).strip().lower()] = SourceSettings(
            enabled=truthy(sec.get("enabled")),
            companies=_parse_companies(sec.get("companies"), f"sources.{kind}.companies"),
        )
    return out


def _parse_email(raw: Mapping[str, Any]) -> EmailSettings:
    defaults = EmailSettings()
    return EmailSettings(
        enabled=truthy(raw.get("enabled")),
        imap_host=str(raw.get("imap_host") or "").strip(),
        imap_port=_num(raw.get("imap_port") or defaults.imap_port, "email.imap_port", int),
        username=str(raw.get("username") or "").strip(),
        mailbox=str(raw.get("mailbox") or defaults.mailbox).strip(),
        password_env=str(raw.get("password_env") or defaults.password_env).strip(),
        search_subject_any=_str_list(raw.get("search_subject_any"), "email.search_subject_any"),
        max_messages=_num(raw.get("max_messages") or defaults.max_messages, "email.max_messages", int),
        since_days=_num(raw.get("since_days") or defaults.since_days, "email.since_days", int),
        generic_links=truthy(raw.get("generic_links")),
    )


def _parse_filters(raw: Mapping[str, Any]) -> FilterSettings:
    return FilterSettings(
        remote_ok=truthy(raw.get("remote_ok", True)),
        locations_allow=_str_list(raw.get("locations_allow"), "filters.locations_allow"),
        locations_block=_str_list(raw.get("locations_block"), "filters.locations_block"),
    )


def _parse_rules(value: Any, name: str) -> tuple[Rule, ...]:
    if not value:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list.")
    out: list[Rule] = []
    for i, item in enumerate(value):
        if not isinstance(item, Mapping):
            raise ConfigError(f"{name}[{i}] must be an object.")
        out.append(
            Rule(
                tag=str(item.get("tag") or "").strip(),
                weight=_num(item.get("weight", 0), f"{name}[{i}].weight", int),
                any=_str_list(item.get("any"), f"{name}[{i}].any"),
            )
        )
    return tuple(out)


def _parse_penalties(value: Any, name: str) -> tuple[Penalty, ...]:
    if not value:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list.")
    out: list[Penalty] = []
    for i, item in enumerate(value):
        if not isinstance(item, Mapping):
            raise ConfigError(f"{name}[{i}] must be an object.")
        out.append(
            Penalty(
                reason=str(item.get("reason") or "").strip(),
                weight=_num(item.get("weight", 0), f"{name}[{i}].weight", int),
                any=_str_list(item.get("any"), f"{name}[{i}].any"),
            )
        )
    return tuple(out)


def _parse_scoring(raw: Mapping[str, Any]) -> ScoringSettings:
    return ScoringSettings(
        title_rules=_parse_rules(raw.get("title_rules"), "scoring.title_rules"),
        keyword_rules=_parse_rules(raw.get("keyword_rules"), "scoring.keyword_rules"),
        penalties=_parse_penalties(raw.get("penalties"), "scoring.penalties"),
    )


def _validate_settings(s: Settings) -> None:
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if s.rate_per_sec <= 0:
        raise ConfigError("'rate_limit.per_sec' must be > 0.")
    if s.burst < 1:
        raise ConfigError("'rate_limit.burst' must be >= 1.")
    if s.workers < 1:
        raise ConfigError("'workers' must be >= 1.")
    if s.poll_interval_sec < 1:
        raise ConfigError("'poll_interval_sec' must be >= 1.")
    for k, v in s.timeouts.items():
        if v <= 0:
            raise ConfigError(f"'timeouts.{k}' must be > 0.")
    if s.insert_timeout_sec <= 0:
        raise ConfigError("'timeouts.insert' must be > 0.")
    if s.email.enabled and (not s.email.imap_host or not s.email.username):
        raise ConfigError("email is enabled but 'email.imap_host' / 'email.username' are missing.")
    if not (0 < s.email.imap_port < 65536):
        raise ConfigError("'email.imap_port' must be a valid TCP port.")
