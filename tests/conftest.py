# tests/conftest.py
import copy
import json
import os
import types
from collections.abc import Callable

import pytest
import requests
from freezegun import freeze_time
from requests.structures import CaseInsensitiveDict

from modules.lead_intake.lib.config import Settings
from modules.lead_intake.lib.db import JobStore


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("ACTIVITY_LOG_MAX_BYTES", raising=False)
    monkeypatch.delenv("LEAD_INTAKE_CONFIG", raising=False)
    monkeypatch.delenv("LEAD_INTAKE_IMAP_PASSWORD", raising=False)
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Settings / storage
# ---------------------------------------------------------------------
BASE_CONFIG = {
    "poll_interval_sec": 1800,
    "rate_limit": {"per_sec": 50, "burst": 50},
    "workers": 2,
    "filters": {"remote_ok": True, "locations_allow": [], "locations_block": ["Chicago"]},
    "scoring": {
        "title_rules": [{"tag": "engineer", "weight": 10, "any": ["engineer", "developer"]}],
        "keyword_rules": [{"tag": "python", "weight": 5, "any": ["python", "django"]}],
        "penalties": [{"reason": "too senior", "weight": -8, "any": ["principal", "staff"]}],
    },
    "sources": {},
}


def _deep_merge(base: dict, extra: dict) -> dict:
    out = copy.deepcopy(base)
    for k, v in (extra or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


@pytest.fixture
def base_config(tmp_path) -> dict:
    cfg = copy.deepcopy(BASE_CONFIG)
    cfg["sqlite_path"] = str(tmp_path / "state" / "leads.db")
    return cfg


@pytest.fixture
def make_settings(base_config) -> Callable[..., Settings]:
    """Factory: make_settings({"sources": {...}}) -> Settings over a per-test DB path."""

    def _make(overrides: dict | None = None) -> Settings:
        return Settings.from_mapping(_deep_merge(base_config, overrides or {}))

    return _make


@pytest.fixture
def write_config(tmp_path, base_config):
    """Write a YAML (or JSON) settings file and return its path."""
    import yaml

    def _write(overrides: dict | None = None, name: str = "lead_intake.yaml") -> str:
        data = _deep_merge(base_config, overrides or {})
        p = tmp_path / name
        if name.endswith(".json"):
            p.write_text(json.dumps(data), encoding="utf-8")
        else:
            p.write_text(yaml.safe_dump(data), encoding="utf-8")
        return str(p)

    return _write


@pytest.fixture
def store(tmp_path):
    s = JobStore(str(tmp_path / "store" / "leads.db"))
    yield s
    s.close()


# ---------------------------------------------------------------------
# Fake HTTP: a requests.Session stand-in serving canned responses
# ---------------------------------------------------------------------
def make_response(
    status: int = 200,
    *,
    body: bytes | str = b"",
    json_body=None,
    headers: dict | None = None,
    cookies: dict | None = None,
    url: str = "https://example.test/",
) -> requests.Response:
    headers = dict(headers or {})
    if json_body is not None:
        body = json.dumps(json_body)
        headers.setdefault("Content-Type", "application/json")
    resp = requests.Response()
    resp.status_code = status
    resp._content = body.encode("utf-8") if isinstance(body, str) else body
    resp._content_consumed = True
    resp.headers = CaseInsensitiveDict(headers)
    resp.encoding = "utf-8"
    resp.url = url
    for k, v in (cookies or {}).items():
        resp.cookies.set(k, v)
    return resp


class FakeSession:
    """
    Routes (METHOD, url-substring) to canned responses; the longest matching
    substring wins. A list of responses is served in order and its last entry
    repeats. A callable responder gets the recorded call. Unrouted requests
    raise requests.ConnectionError.
    """

    def __init__(self) -> None:
        self.headers: dict = {}
        self.cookies = requests.cookies.RequestsCookieJar()
        self.calls: list[types.SimpleNamespace] = []
        self.closed = False
        self._routes: dict[tuple[str, str], list] = {}

    def add(self, method: str, needle: str, *responses) -> "FakeSession":
        self._routes[(method.upper(), needle)] = list(responses)
        return self

    def mount(self, prefix, adapter) -> None:
        return None

    def request(self, method, url, params=None, headers=None, timeout=None, **kwargs):
        call = types.SimpleNamespace(
            method=method.upper(),
            url=url,
            params=dict(params or {}),
            headers=dict(headers or {}),
            json=kwargs.get("json"),
            timeout=timeout,
        )
        self.calls.append(call)
        matches = [(needle, r) for (m, needle), r in self._routes.items() if m == call.method and needle in url]
        if not matches:
            raise requests.ConnectionError(f"no route for {call.method} {url}")
        _needle, queue = max(matches, key=lambda t: len(t[0]))
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder):
            responder = responder(call)
        if isinstance(responder, Exception):
            raise responder
        for c in responder.cookies:
            self.cookies.set_cookie(c)
        return responder

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def close(self) -> None:
        self.closed = True

    def calls_to(self, needle: str) -> list[types.SimpleNamespace]:
        return [c for c in self.calls if needle in c.url]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def response() -> Callable[..., requests.Response]:
    return make_response


@pytest.fixture
def fixtures_dir() -> str:
    return os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture
def read_fixture(fixtures_dir) -> Callable[[str], str]:
    def _read(name: str) -> str:
        with open(os.path.join(fixtures_dir, name), encoding="utf-8") as f:
            return f.read()

    return _read
