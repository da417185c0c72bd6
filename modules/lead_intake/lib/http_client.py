# lead_intake/http_client.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .context import FetchContext
from .ratelimit import HostLimiter

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "LeadIntake/0.1 (+https://example.invalid)"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


class HttpStatusError(requests.HTTPError):
    """Non-2xx answer, with a short body preview for the logs."""

    def __init__(self, status: int, url: str, body_preview: str = "", response: requests.Response | None = None):
        self.status = int(status)
        self.url = url
        self.body_preview = body_preview
        super().__init__(f"HTTP {status} for {url!r}: {body_preview}", response=response)


def body_preview(resp: requests.Response, limit: int = 240) -> str:
    try:
        text = resp.text or ""
    except (UnicodeDecodeError, LookupError):
        return ""
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."


def ensure_ok(resp: requests.Response, url: str) -> requests.Response:
    if resp.status_code >= 400:
        raise HttpStatusError(resp.status_code, url, body_preview(resp), response=resp)
    return resp


class HttpClient:
    """
    Shared HTTP client: requests.Session + urllib3 Retry, a per-host rate limiter,
    and a FetchContext on every call so deadlines cap request timeouts.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        *,
        limiter: HostLimiter | None = None,
        session: requests.Session | None = None,
    ):
        self.timeout = float(timeout)
        self.limiter = limiter
        if session is None:
            session = requests.Session()
            # 403/429 are left to callers; Workday treats them as block signals.
            retry = Retry(
                total=2,
                backoff_factor=0.5,
                status_forcelist=(500, 502, 503, 504),
                allowed_methods=frozenset(["GET", "POST", "HEAD"]),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=20)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session
        self.session.headers.update({"User-Agent": user_agent})

    # ---- core ----
    def request(
        self,
        ctx: FetchContext,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Wait for the host's rate-limit token, then send. Raises DeadlineExceeded when out of time."""
        ctx.check()
        if self.limiter is not None:
            self.limiter.wait(ctx, url)
        ctx.check()
        return self.session.request(
            method,
            url,
            params=params,
            headers=headers,
            timeout=ctx.timeout_for(timeout or self.timeout),
            **kwargs,
        )

    def get(self, ctx: FetchContext, url: str, **kwargs: Any) -> requests.Response:
        return self.request(ctx, "GET", url, **kwargs)

    def post(self, ctx: FetchContext, url: str, **kwargs: Any) -> requests.Response:
        return self.request(ctx, "POST", url, **kwargs)

    # ---- convenience ----
    def get_text(
        self,
        ctx: FetchContext,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        encoding: str | None = None,
        **kwargs: Any,
    ) -> str:
        """GET and return decoded text with gentle encoding hints."""
        resp = self.get(ctx, url, params=params, headers=headers, timeout=timeout, **kwargs)
        ensure_ok(resp, url)
        if encoding:
            resp.encoding = encoding
        elif not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def get_json(
        self,
        ctx: FetchContext,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        """GET and parse JSON with clearer errors if decoding fails."""
        resp = self.get(ctx, url, params=params, headers=headers, timeout=timeout, **kwargs)
        ensure_ok(resp, url)
        return decode_json(resp, url)

    def post_json(
        self,
        ctx: FetchContext,
        url: str,
        payload: Any,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """POST a JSON body. The raw response is returned unchecked so callers can inspect status/headers."""
        return self.post(ctx, url, json=payload, headers=headers, timeout=timeout)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)


def decode_json(resp: requests.Response, url: str) -> Any:
    # Prefer requests' decoder; fall back to manual if Content-Type is misleading.
    try:
        return resp.json()
    except ValueError as e:
        try:
            return json.loads(resp.text)
        except ValueError:
            preview = resp.text[:200].replace("\n", " ")
            raise ValueError(f"JSON decode failed for {url!r}; body starts: {preview!r}") from e
