from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from imapclient import SEEN, IMAPClient
from imapclient.exceptions import IMAPClientError

from .mime import decode_subject

log = logging.getLogger(__name__)

# BODY.PEEK leaves \Seen alone; the server answers under the BODY[] key.
FETCH_ITEMS = ["BODY.PEEK[]", "ENVELOPE", "INTERNALDATE"]
BODY_KEY = b"BODY[]"


@dataclass
class MailMessage:
    uid: int
    raw: bytes
    subject: str = ""
    sender: str = ""
    date: datetime | None = None


def _b2s(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, bytes):
        return v.decode("utf-8", errors="replace")
    return str(v)


def _envelope_sender(env: Any) -> str:
    addrs = getattr(env, "from_", None) or ()
    out: list[str] = []
    for a in addrs:
        mailbox, host = _b2s(getattr(a, "mailbox", None)), _b2s(getattr(a, "host", None))
        if mailbox and host:
            out.append(f"{mailbox}@{host}")
        elif getattr(a, "name", None):
            out.append(decode_subject(_b2s(a.name)))
    return ", ".join(out)


def _aware(dt: Any) -> datetime | None:
    if not isinstance(dt, datetime):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class MailboxSession:
    """
    One IMAP connection to one folder. Usable as a context manager.

    shutdown() drops the socket without logging out; it is what a cancelled
    FetchContext calls to unblock a thread stuck in a read.
    """

    def __init__(
        self,
        host: str,
        port: int = 993,
        *,
        ssl: bool = True,
        timeout: float = 30.0,
        client_factory: Callable[..., IMAPClient] = IMAPClient,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.ssl = ssl
        self.timeout = timeout
        self._client_factory = client_factory
        self._client: IMAPClient | None = None

    def __enter__(self) -> MailboxSession:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def client(self) -> IMAPClient:
        if self._client is None:
            raise IMAPClientError("mailbox session is not open")
        return self._client

    def open(self, username: str, password: str, mailbox: str = "INBOX") -> None:
        self._client = self._client_factory(self.host, port=self.port, ssl=self.ssl, timeout=self.timeout)
        self._client.login(username, password)
        self._client.select_folder(mailbox, readonly=False)
        log.debug("[email] connected host=%s mailbox=%s", self.host, mailbox)

    def fetch_unseen(self, max_messages: int = 30, since: date | None = None) -> list[MailMessage]:
        """Newest-first unseen messages (by UID), capped at max_messages."""
        criteria: list[Any] = ["UNSEEN"]
        if since is not None:
            criteria += ["SINCE", since]
        uids = sorted(self.client.search(criteria), reverse=True)
        if max_messages > 0:
            uids = uids[:max_messages]
        if not uids:
            return []

        data = self.client.fetch(uids, FETCH_ITEMS)
        out: list[MailMessage] = []
        for uid in uids:
            item = data.get(uid)
            if not item:
                continue
            env = item.get(b"ENVELOPE")
            out.append(
                MailMessage(
                    uid=uid,
                    raw=item.get(BODY_KEY) or b"",
                    subject=decode_subject(_b2s(getattr(env, "subject", None))),
                    sender=_envelope_sender(env),
                    date=_aware(getattr(env, "date", None)) or _aware(item.get(b"INTERNALDATE")),
                )
            )
        return out

    def mark_seen(self, uids: Iterable[int]) -> None:
        uids = list(uids)
        if uids:
            self.client.add_flags(uids, [SEEN], silent=True)

    def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.logout()
        except (IMAPClientError, OSError) as e:
            log.debug("[email] logout failed host=%s err=%r", self.host, e)

    def shutdown(self) -> None:
        client = self._client
        if client is None:
            return
        try:
            client.shutdown()
        except (IMAPClientError, OSError) as e:
            log.debug("[email] shutdown failed host=%s err=%r", self.host, e)
