from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email import message_from_bytes
from email.errors import HeaderParseError, MessageError
from email.header import decode_header, make_header
from email.message import Message
from email.policy import default
from email.utils import parsedate_to_datetime

from bs4 import BeautifulSoup

from ..canonical import canonicalize_url
from ..utils import clean_text

log = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s<>\"']+")
_URL_TRAILING = ".,);:]\"'"


@dataclass
class ParsedMessage:
    message_id: str = ""
    subject: str = ""
    sender: str = ""
    date: datetime | None = None
    text: str = ""
    html: str = ""

    @property
    def body(self) -> str:
        """Plain text when present, else the HTML part."""
        return self.text or self.html


def decode_subject(s: str | bytes | None) -> str:
    """Decode RFC 2047 encoded-words ('=?UTF-8?B?...?='); anything undecodable comes back as-is."""
    if s is None:
        return ""
    if isinstance(s, bytes):
        s = s.decode("utf-8", errors="replace")
    s = s.strip()
    if "=?" not in s:
        return s
    try:
        return str(make_header(decode_header(s))).strip()
    except (HeaderParseError, UnicodeError, LookupError):
        return s


def _part_text(part: Message) -> str:
    try:
        return part.get_content()
    except (LookupError, KeyError, ValueError):
        # Unknown charset or broken transfer encoding: decode the bytes leniently.
        payload = part.get_payload(decode=True) or b""
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError:
            return payload.decode("utf-8", errors="replace")


def _message_date(msg: Message) -> datetime | None:
    raw = msg.get("Date")
    if not raw:
        return None
    try:
        dt = parsedate_to_datetime(str(raw))
    except (TypeError, ValueError, IndexError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def parse_message(raw: bytes, fallback_subject: str = "") -> ParsedMessage:
    """
    Decode an RFC 822 message. Walks every (nested) part and keeps the longest
    text/plain and the longest text/html; attachments are ignored. When no text part
    is found the raw payload is returned as text.
    """
    if not raw:
        return ParsedMessage(subject=fallback_subject)

    try:
        msg = message_from_bytes(raw, policy=default)
    except (MessageError, ValueError) as e:
        log.debug("[email] unparseable message, using raw bytes: %r", e)
        return ParsedMessage(subject=fallback_subject, text=raw.decode("utf-8", errors="replace"))

    out = ParsedMessage(
        message_id=str(msg.get("Message-ID") or "").strip(),
        subject=decode_subject(str(msg.get("Subject") or "")) or fallback_subject,
        sender=str(msg.get("From") or "").strip(),
        date=_message_date(msg),
    )

    for part in msg.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        ctype = part.get_content_type()
        if ctype not in ("text/plain", "text/html"):
            continue
        text = _part_text(part)
        if ctype == "text/plain" and len(text) > len(out.text):
            out.text = text
        elif ctype == "text/html" and len(text) > len(out.html):
            out.html = text

    if not out.text and not out.html:
        payload = msg.get_payload(decode=True)
        if isinstance(payload, bytes) and payload:
            out.text = payload.decode("utf-8", errors="replace")
        else:
            _headers, _sep, body = raw.partition(b"\r\n\r\n")
            if not _sep:
                _headers, _sep, body = raw.partition(b"\n\n")
            out.text = body.decode("utf-8", errors="replace")
    return out


def extract_links(body: str) -> tuple[list[str], dict[str, str]]:
    """
    All URLs in a mail body: anchor hrefs (HTML bodies) then bare URLs from the text.
    Also returns the longest anchor text seen for each canonical URL.
    """
    urls: list[str] = []
    contexts: dict[str, str] = {}
    if not body:
        return urls, contexts

    text_version = body
    low = body.lower()
    if "<html" in low or "<a " in low:
        soup = BeautifulSoup(body, "html5lib")
        for a in soup.select("a[href]"):
            href = (a.get("href") or "").strip()
            if not href or href.startswith("#"):
                continue
            urls.append(href)
            txt = clean_text(a.get_text(" "))
            key = canonicalize_url(href)
            if len(txt) > len(contexts.get(key, "")):
                contexts[key] = txt
        text_version = clean_text(soup.get_text(" "))

    for m in _URL_RE.finditer(text_version):
        urls.append(m.group(0).rstrip(_URL_TRAILING))
    return urls, contexts
