"""
Email connector: UNSEEN job-alert mail -> leads.

LinkedIn digests are parsed card by card. Other messages matching the subject
filter are consumed without producing leads unless `email.generic_links` is
on, in which case their job-looking links become leads. Messages are flagged \\Seen from
the result's finalize hook, after the insert phase handled their leads.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import timedelta

from imapclient.exceptions import IMAPClientError

from .. import logging_bridge
from ..canonical import canonicalize_url, is_obvious_junk_url, score_url, unwrap_redirect, url_is_too_generic
from ..config import EmailSettings, Settings
from ..context import FetchContext
from ..location import infer_work_mode
from ..models import JobLead, ScrapeResult
from ..ratelimit import HostLimiter
from ..scrapers.base import BaseFetcher, SourceUnavailable
from ..scrapers.registry import register
from ..utils import contains_any_ci, now_utc
from .imap import MailboxSession, MailMessage
from .linkedin import COMPANY_LOCATION_SEP, LinkedInJob, looks_like_job_alert, parse_job_alert_html
from .mime import ParsedMessage, extract_links, parse_message

log = logging.getLogger(__name__)

SessionFactory = Callable[[EmailSettings], MailboxSession]

# Cap on leads taken from one non-digest message.
MAX_LINKS_PER_MESSAGE = 10


def default_session_factory(cfg: EmailSettings) -> MailboxSession:
    return MailboxSession(cfg.imap_host, cfg.imap_port)


def lead_from_linkedin(job: LinkedInJob, msg: ParsedMessage, subject: str, sender: str) -> JobLead:
    desc = "\n".join(
        [
            subject,
            sender,
            f"{job.company}{COMPANY_LOCATION_SEP}{job.location}",
            job.salary,
            job.url,
        ]
    )
    return JobLead(
        company=job.company,
        title=job.title,
        url=job.url,
        location=job.location,
        work_mode=infer_work_mode(job.location, subject),
        ats_job_id=job.source_id,
        description=desc,
        posted_at=msg.date,
        source="email",
        logo_url=job.logo_url,
        message_id=msg.message_id,
        sender=sender,
        subject=subject,
    )


def leads_from_links(msg: ParsedMessage, subject: str, sender: str, limit: int = MAX_LINKS_PER_MESSAGE) -> list[JobLead]:
    """
    Job-looking links from a non-digest alert mail, best `score_url` first.
    Junk (unsubscribe, settings, tracking) and bare homepages are dropped; the
    anchor text becomes the title, else the subject.
    """
    urls, contexts = extract_links(msg.html or msg.text)
    seen: set[str] = set()
    picked: list[tuple[int, str, str]] = []
    for href in urls:
        url = canonicalize_url(unwrap_redirect(href))
        if not url or url in seen:
            continue
        seen.add(url)
        if is_obvious_junk_url(url) or url_is_too_generic(url):
            continue
        score = score_url(url)
        if score <= 0:
            continue
        title = contexts.get(canonicalize_url(href)) or contexts.get(url) or subject
        picked.append((score, url, title))

    picked.sort(key=lambda t: t[0], reverse=True)
    out: list[JobLead] = []
    for _score, url, title in picked[:limit]:
        out.append(
            JobLead(
                company="",
                title=title,
                url=url,
                work_mode=infer_work_mode(title, subject),
                description="\n".join([subject, sender, title, url]),
                posted_at=msg.date,
                source="email",
                message_id=msg.message_id,
                sender=sender,
                subject=subject,
            )
        )
    return out


@register
class EmailFetcher(BaseFetcher):
    kind = "email"
    timeout_sec = 120.0

    def __init__(
        self,
        cfg: EmailSettings,
        *,
        session_factory: SessionFactory = default_session_factory,
        password: str | None = None,
    ) -> None:
        self.cfg = cfg
        self.session_factory = session_factory
        self._password = password

    @classmethod
    def from_settings(cls, settings: Settings, limiter: HostLimiter) -> EmailFetcher | None:
        if not settings.email.enabled:
            return None
        return cls(settings.email)

    def password(self) -> str:
        pw = self._password if self._password is not None else os.getenv(self.cfg.password_env, "")
        if not pw:
            raise SourceUnavailable(f"email: app password env var {self.cfg.password_env!r} is not set")
        return pw

    # ---- fetch ----

    def fetch(self, ctx: FetchContext) -> ScrapeResult:
        password = self.password()
        session = self.session_factory(self.cfg)
        unregister = ctx.on_cancel(session.shutdown)
        leads: list[JobLead] = []
        errors: list[str] = []
        processed: list[int] = []
        messages: list[MailMessage] = []
        try:
            try:
                session.open(self.cfg.username, password, self.cfg.mailbox)
                since = (now_utc() - timedelta(days=self.cfg.since_days)).date()
                messages = session.fetch_unseen(self.cfg.max_messages, since)
            except (IMAPClientError, OSError) as e:
                if ctx.expired():
                    raise SourceUnavailable(f"email: deadline exceeded talking to {self.cfg.imap_host}") from e
                raise SourceUnavailable(f"email: imap {self.cfg.imap_host}: {e}") from e

            for i, m in enumerate(messages):
                if ctx.expired():
                    errors.append(f"email: deadline exceeded with {len(messages) - i} message(s) not processed")
                    break
                try:
                    leads.extend(self.leads_from_message(m))
                except (ValueError, LookupError, UnicodeError) as e:
                    log.warning("[email] uid=%s parse failed: %r", m.uid, e)
                processed.append(m.uid)
        finally:
            unregister()
            session.close()

        log.info("[email] messages=%d processed=%d leads=%d", len(messages), len(processed), len(leads))

        def _finalize(fctx: FetchContext) -> None:
            self.mark_seen(fctx, processed)

        return ScrapeResult(
            source=self.kind,
            leads=leads,
            errors=errors,
            finalize=_finalize if processed else None,
        )

    def leads_from_message(self, m: MailMessage) -> list[JobLead]:
        parsed = parse_message(m.raw, fallback_subject=m.subject)
        subject = parsed.subject or m.subject
        sender = m.sender or parsed.sender
        if parsed.date is None:
            parsed.date = m.date

        if self.cfg.search_subject_any and not contains_any_ci(subject, self.cfg.search_subject_any):
            log.debug("[email] uid=%s subject not matched: %r", m.uid, subject)
            return []
        if not looks_like_job_alert(subject, parsed.body + "\n" + parsed.html):
            if self.cfg.generic_links:
                leads = leads_from_links(parsed, subject, sender)
                log.info("[email] uid=%s generic links leads=%d subject=%r", m.uid, len(leads), subject)
                return leads
            log.debug("[email] uid=%s not a job alert digest: %r", m.uid, subject)
            return []

        jobs = parse_job_alert_html(parsed.html)
        log.info("[email] uid=%s linkedin digest jobs=%d subject=%r", m.uid, len(jobs), subject)
        return [lead_from_linkedin(j, parsed, subject, sender) for j in jobs]

    def mark_seen(self, ctx: FetchContext, uids: list[int]) -> None:
        """Flag processed messages \\Seen in one batch. Failures are logged, never raised."""
        if not uids:
            return
        session = self.session_factory(self.cfg)
        unregister = ctx.on_cancel(session.shutdown)
        try:
            session.open(self.cfg.username, self.password(), self.cfg.mailbox)
            session.mark_seen(uids)
            log.info("[email] marked seen uids=%d", len(uids))
        except (IMAPClientError, OSError, SourceUnavailable) as e:
            logging_bridge.error({
                "component": "lead_intake.email",
                "op": "mark_seen",
                "uids": len(uids),
                "error": repr(e),
            })
        finally:
            unregister()
            session.close()
