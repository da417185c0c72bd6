# tests/test_lead_config.py
import pytest

from modules.lead_intake.lib.config import CompanyRef, ConfigError, Settings, load_settings


# ----------------------------------------------------------------------
# 1. Loading YAML / JSON files
# ----------------------------------------------------------------------
@pytest.mark.parametrize("name", ["lead_intake.yaml", "lead_intake.yml", "lead_intake.json"])
def test_load_settings_yaml_and_json(write_config, name):
    path = write_config(
        {
            "sources": {"greenhouse": {"enabled": True, "companies": [{"slug": "acme", "name": "Acme"}, "globex"]}},
            "timeouts": {"greenhouse": 30, "insert": 15},
        },
        name=name,
    )
    s = load_settings(path)

    assert s.rate_per_sec == 50.0 and s.burst == 50 and s.workers == 2
    assert s.source("greenhouse").companies == (CompanyRef("acme", "Acme"), CompanyRef("globex", ""))
    assert s.source("greenhouse").companies[1].display_name == "globex"
    assert s.timeout_for("greenhouse", 300) == 30.0
    assert s.timeout_for("lever", 300) == 300.0
    assert s.insert_timeout_sec == 15.0
    assert "insert" not in s.timeouts
    assert s.filters.locations_block == ("Chicago",)
    assert [r.tag for r in s.scoring.all_rules] == ["engineer", "python"]
    assert s.scoring.penalties[0].weight == -8


def test_empty_file_gives_defaults(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    s = load_settings(str(p))
    assert s.enabled_kinds() == []
    assert s.poll_interval_sec == 1800
    assert s.email.imap_port == 993


def test_enabled_kinds_need_companies_and_email_host(make_settings):
    s = make_settings({
        "sources": {
            "lever": {"enabled": "yes", "companies": ["acme"]},
            "workday": {"enabled": True, "companies": []},
            "smartrecruiters": {"enabled": False, "companies": ["AcmeCorp"]},
            "greenhouse": None,
        },
        "email": {"enabled": True, "imap_host": "imap.example.com", "username": "me"},
    })
    assert s.enabled_kinds() == ["lever", "email"]


def test_email_section_parsing(make_settings):
    s = make_settings({
        "email": {
            "enabled": "on",
            "imap_host": " imap.example.com ",
            "username": "me@example.com",
            "search_subject_any": "job alert",
            "generic_links": "true",
        }
    })
    assert s.email.imap_host == "imap.example.com"
    assert s.email.search_subject_any == ("job alert",)
    assert s.email.generic_links is True
    assert s.email.mailbox == "INBOX"
    assert s.email.password_env == "LEAD_INTAKE_IMAP_PASSWORD"


def test_schedule_and_timezone_are_kept(make_settings):
    s = make_settings({"schedule": {"cron": "*/30 7-22 * * *"}, "timezone": " America/Chicago "})
    assert s.schedule == {"cron": "*/30 7-22 * * *"}
    assert s.timezone == "America/Chicago"


# ----------------------------------------------------------------------
# 2. Validation failures
# ----------------------------------------------------------------------
def test_missing_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_settings(str(tmp_path / "nope.yaml"))


def test_bad_yaml_is_config_error(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("sources: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid"):
        load_settings(str(p))


def test_non_mapping_root_is_config_error(tmp_path):
    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_settings(str(p))


@pytest.mark.parametrize(
    "overrides",
    [
        {"rate_limit": {"per_sec": 0}},
        {"rate_limit": {"burst": 0}},
        {"rate_limit": {"per_sec": "fast"}},
        {"workers": 0},
        {"poll_interval_sec": 0},
        {"timeouts": {"lever": -1}},
        {"timeouts": {"lever": "soon"}},
        {"timeouts": {"insert": 0}},
        {"email": {"enabled": True, "username": "me"}},
        {"email": {"imap_port": 70000}},
        {"sources": {"lever": ["acme"]}},
        {"sources": {"lever": {"enabled": True, "companies": "acme"}}},
        {"sources": {"lever": {"enabled": True, "companies": [42]}}},
        {"scoring": {"title_rules": ["engineer"]}},
        {"filters": {"locations_block": {"a": 1}}},
        {"schedule": "hourly"},
    ],
)
def test_invalid_values_raise(make_settings, overrides):
    with pytest.raises(ConfigError):
        make_settings(overrides)


# ----------------------------------------------------------------------
# 3. Module kwargs: inline config, config_path, env fallback, overrides
# ----------------------------------------------------------------------
def test_from_env_and_kwargs_inline_config(base_config, tmp_path):
    override = str(tmp_path / "other.db")
    s = Settings.from_env_and_kwargs({"config": base_config, "sqlite_path": override})
    assert s.sqlite_path == override


def test_from_env_and_kwargs_uses_env_path(write_config, monkeypatch):
    path = write_config({"workers": 3})
    monkeypatch.setenv("LEAD_INTAKE_CONFIG", path)
    assert Settings.from_env_and_kwargs({}).workers == 3


def test_from_env_and_kwargs_prefers_explicit_path(write_config, monkeypatch):
    env_path = write_config({"workers": 3}, name="env.yaml")
    arg_path = write_config({"workers": 5}, name="arg.yaml")
    monkeypatch.setenv("LEAD_INTAKE_CONFIG", env_path)
    assert Settings.from_env_and_kwargs({"config_path": arg_path}).workers == 5


def test_from_env_and_kwargs_without_any_source():
    with pytest.raises(ConfigError, match="Missing config"):
        Settings.from_env_and_kwargs(None)
