# tests/test_cli.py
import argparse
import json

import pytest

from modules.lead_intake.lib.db import JobStore
from modules.lead_intake.lib.models import JobRow
from service import cli


# ----------------------------------------------------------------------
# 1. validate-config
# ----------------------------------------------------------------------
def test_validate_config_ok(write_config, capsys):
    path = write_config({"sources": {"lever": {"enabled": True, "companies": ["acme"]}}})
    assert cli.main(["--config", path, "validate-config"]) == 0
    assert "OK: configuration is valid. sources=lever" in capsys.readouterr().out


def test_validate_config_reads_env(write_config, monkeypatch, capsys):
    monkeypatch.setenv("LEAD_INTAKE_CONFIG", write_config())
    assert cli.main(["validate-config"]) == 0
    assert "sources=(none)" in capsys.readouterr().out


def test_validate_config_invalid(write_config, capsys):
    path = write_config({"workers": 0})
    assert cli.main(["--config", path, "validate-config"]) == 1
    assert "ERROR: configuration invalid" in capsys.readouterr().err


def test_validate_config_without_path(capsys):
    assert cli.main(["validate-config"]) == 1
    assert "LEAD_INTAKE_CONFIG" in capsys.readouterr().err


# ----------------------------------------------------------------------
# 2. run
# ----------------------------------------------------------------------
def test_run_passes_config_and_kwargs(write_config, monkeypatch, capsys):
    seen = {}

    def fake_run(**kwargs):
        seen.update(kwargs)
        return 3

    monkeypatch.setattr(cli.lead_main, "run", fake_run)
    path = write_config()

    rc = cli.main(["--config", path, "run", "--kwargs", "sqlite_path=/tmp/x.db", "debug=true"])

    assert rc == 0
    assert seen == {"sqlite_path": "/tmp/x.db", "debug": True, "config_path": path}
    assert "DONE: 3 new job(s) stored." in capsys.readouterr().out


def test_run_failure_is_reported(write_config, monkeypatch, capsys):
    def boom(**kwargs):
        raise RuntimeError("db locked")

    monkeypatch.setattr(cli.lead_main, "run", boom)

    assert cli.main(["--config", write_config(), "run"]) == 1
    assert "FAILURE: db locked" in capsys.readouterr().err


def test_run_end_to_end_with_no_sources(write_config, capsys):
    assert cli.main(["--config", write_config(), "run"]) == 0
    assert "DONE: 0 new job(s) stored." in capsys.readouterr().out


# ----------------------------------------------------------------------
# 3. status
# ----------------------------------------------------------------------
def test_status_reports_db_counters(write_config, base_config, capsys):
    with JobStore(base_config["sqlite_path"]) as store:
        store.insert_job_if_new(
            JobRow(
                source_id="lever:acme:1",
                company="Acme",
                title="Python Engineer",
                url="https://jobs.lever.co/acme/1",
            )
        )

    assert cli.main(["--config", write_config(), "status"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["jobs_in_db"] == 1
    assert out["latest_job"]["source_id"] == "lever:acme:1"
    assert out["status"]["running"] is False
    assert out["status"]["last_run_at"] is None


def test_status_run_populates_snapshot(write_config, capsys):
    assert cli.main(["--config", write_config(), "status", "--run"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["jobs_in_db"] == 0
    assert out["latest_job"] is None
    assert out["status"]["last_run_at"] is not None
    assert out["status"]["last_error"] == ""


# ----------------------------------------------------------------------
# 4. --kwargs parsing
# ----------------------------------------------------------------------
def test_parse_kv_pairs_json_values():
    assert cli._parse_kv_pairs(["a=1", "b=true", "c=[1,2]", "d=plain", "e= x=y "]) == {
        "a": 1,
        "b": True,
        "c": [1, 2],
        "d": "plain",
        "e": "x=y",
    }


@pytest.mark.parametrize("bad", ["novalue", "=x"])
def test_parse_kv_pairs_rejects_bad_items(bad):
    with pytest.raises(argparse.ArgumentTypeError):
        cli._parse_kv_pairs([bad])
