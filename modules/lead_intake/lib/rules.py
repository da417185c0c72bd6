"""
Admission filter and weighted tag scoring, driven by the `filters` and
`scoring` config sections. All matching is case-insensitive substring.
"""

from __future__ import annotations

from collections.abc import Iterable

from .config import FilterSettings, Penalty, Rule, ScoringSettings, Settings
from .models import JobLead
from .utils import contains_any_ci

REASON_LOCATION = "location"
REASON_NO_KEYWORD = "no_keyword_match"


def should_keep_job(settings: Settings, lead: JobLead) -> tuple[bool, str]:
    """
    Returns (keep, reason). Reason is "" when kept.

    1) blocklist always wins
    2) "remote" anywhere -> keep iff remote_ok (allow-list ignored)
    3) otherwise keep iff allow-list is empty or matches
    4) independently, at least one title/keyword rule must match title + description
    """
    if not passes_location(settings.filters, lead):
        return False, REASON_LOCATION
    if not matches_any_rule(settings.scoring, lead):
        return False, REASON_NO_KEYWORD
    return True, ""


def passes_location(filters: FilterSettings, lead: JobLead) -> bool:
    fields = (lead.location or "", lead.title or "", lead.description or "")

    if any(contains_any_ci(f, filters.locations_block) for f in fields):
        return False

    if any("remote" in f.lower() for f in fields):
        return filters.remote_ok

    if not filters.locations_allow:
        return True
    return any(contains_any_ci(f, filters.locations_allow) for f in fields)


def matches_any_rule(scoring: ScoringSettings, lead: JobLead) -> bool:
    hay = f"{lead.title or ''} {lead.description or ''}"
    return any(contains_any_ci(hay, r.any) for r in scoring.all_rules)


def score_lead(scoring: ScoringSettings, lead: JobLead) -> tuple[int, list[str]]:
    """
    Sum of matching rule weights (each rule at most once) plus matching penalties.
    Tags come from matching rules, deduped in first-seen order; penalties add no tags.
    """
    hay = f"{lead.title or ''} {lead.description or ''}"
    score = 0
    tags: list[str] = []
    seen: set[str] = set()

    for rule in _iter_rules(scoring):
        if not contains_any_ci(hay, rule.any):
            continue
        score += rule.weight
        tag = rule.tag.strip()
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)

    for pen in _iter_penalties(scoring):
        if contains_any_ci(hay, pen.any):
            score += pen.weight

    return score, tags


class LeadScorer:
    """Small stateful wrapper so the processor doesn't carry the config around."""

    def __init__(self, scoring: ScoringSettings) -> None:
        self.scoring = scoring

    def score(self, lead: JobLead) -> tuple[int, list[str]]:
        return score_lead(self.scoring, lead)


def _iter_rules(scoring: ScoringSettings) -> Iterable[Rule]:
    yield from scoring.title_rules
    yield from scoring.keyword_rules


def _iter_penalties(scoring: ScoringSettings) -> Iterable[Penalty]:
    yield from scoring.penalties
