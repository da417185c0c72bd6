# tests/test_lead_enrich.py
from urllib.parse import quote

import pytest

from modules.lead_intake.lib import enrich
from modules.lead_intake.lib.context import FetchContext
from modules.lead_intake.lib.http_client import HttpClient

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

FAVICON = "https://www.google.com/s2/favicons?domain=acme.com&sz=64"


def _ddg_html(*targets: str) -> str:
    links = "".join(
        f'<div class="result"><a class="result__a" href="//duckduckgo.com/l/?uddg={quote(t, safe="")}&rut=x">r</a></div>'
        for t in targets
    )
    return f"<html><body>{links}</body></html>"


# ----------------------------------------------------------------------
# 1. Pure helpers
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Acme, Inc.", "Acme"),
        ("Acme LLC", "Acme"),
        ("Initech Recruiting", "Initech"),
        ("Incredible Labs", "Incredible Labs"),
    ],
)
def test_sanitize_company_for_search(raw, expected):
    assert enrich.sanitize_company_for_search(raw) == expected


def test_blocked_domains():
    assert enrich.is_blocked_domain("linkedin.com")
    assert enrich.is_blocked_domain("boards.greenhouse.io")
    assert not enrich.is_blocked_domain("acme.com")
    assert not enrich.is_blocked_domain("notlinkedin.com")


def test_favicon_and_logo_key():
    assert enrich.favicon_url_for_domain("Acme.com") == FAVICON
    assert enrich.favicon_url_for_domain("") == ""
    assert enrich.logo_key_for_url(FAVICON) == enrich.logo_key_for_url("  " + FAVICON + " ")
    assert len(enrich.logo_key_for_url(FAVICON)) == 64


def test_sniff_image_type():
    assert enrich.sniff_image_type(PNG) == "image/png"
    assert enrich.sniff_image_type(b"GIF89a....") == "image/gif"
    assert enrich.sniff_image_type(b"<html>") == ""


# ----------------------------------------------------------------------
# 2. Domain lookup + logo cache over a fake session
# ----------------------------------------------------------------------
def test_enricher_resolves_domain_and_caches_logo(store, fake_session, response):
    fake_session.add(
        "GET",
        "duckduckgo.com/html",
        response(body=_ddg_html("https://www.linkedin.com/company/acme", "https://www.acme.com/about")),
    )
    fake_session.add("GET", "google.com/s2/favicons", response(body=PNG, headers={"Content-Type": "image/png"}))
    http = HttpClient(session=fake_session)
    ctx = FetchContext.with_timeout(5)

    e = enrich.Enricher(store, http)
    key = e.logo_key_for_company(ctx, "Acme, Inc.")

    assert key == enrich.logo_key_for_url(FAVICON)
    assert store.get_company_domain("Acme, Inc.") == "acme.com"
    assert store.get_logo(key) == ("image/png", PNG)

    # memoized for the rest of the cycle
    n = len(fake_session.calls)
    assert e.logo_key_for_company(ctx, "acme, inc.") == key
    assert len(fake_session.calls) == n

    # a new cycle reuses the DB cache: no search, no download
    e2 = enrich.Enricher(store, http)
    assert e2.logo_key_for_company(ctx, "Acme, Inc.") == key
    assert len(fake_session.calls) == n


def test_enricher_degrades_to_empty_on_http_failure(store, fake_session):
    # no routes: every request raises ConnectionError
    e = enrich.Enricher(store, HttpClient(session=fake_session))
    ctx = FetchContext.with_timeout(5)
    assert e.logo_key_for_company(ctx, "Ghost Co") == ""
    assert e.logo_key_for_company(ctx, "Ghost Co") == ""
    assert len(fake_session.calls) == 1
    assert e.company_domain(ctx, "Unknown") == ""


def test_cache_logo_rejects_non_allowlisted_hosts(store, fake_session):
    http = HttpClient(session=fake_session)
    ctx = FetchContext.with_timeout(5)
    assert enrich.cache_logo_from_url(store, http, ctx, "https://media.licdn.com/logo.png") == ""
    assert enrich.cache_logo_from_url(store, http, ctx, "https://evil.example.com/x.png") == ""
    assert fake_session.calls == []


def test_cache_logo_sniffs_type_and_rejects_non_images(store, fake_session, response):
    fake_session.add("GET", "google.com/s2/favicons?domain=a.com", response(body=PNG, headers={"Content-Type": "text/plain"}))
    fake_session.add("GET", "google.com/s2/favicons?domain=b.com", response(body=b"<html>nope</html>"))
    fake_session.add("GET", "google.com/s2/favicons?domain=c.com", response(404, body=b"missing"))
    http = HttpClient(session=fake_session)
    ctx = FetchContext.with_timeout(5)

    key = enrich.cache_logo_from_url(store, http, ctx, enrich.favicon_url_for_domain("a.com"))
    assert store.get_logo(key) == ("image/png", PNG)
    assert enrich.cache_logo_from_url(store, http, ctx, enrich.favicon_url_for_domain("b.com")) == ""
    assert enrich.cache_logo_from_url(store, http, ctx, enrich.favicon_url_for_domain("c.com")) == ""
