import json

import pytest
from typer.testing import CliRunner

from scangate.cli import app


DIGEST = "sha256:" + "d" * 64

runner = CliRunner()


@pytest.fixture(autouse=True)
def fake_client(monkeypatch, scan_client):
    monkeypatch.setattr("scangate.cli.ScanReportClient", lambda settings: scan_client)
    return scan_client


def test_check_allowed(engine):
    engine.add_image("app:1", DIGEST)

    result = runner.invoke(app, ["check", "app:1"])

    assert result.exit_code == 0
    assert "allowed" in result.stdout


def test_check_denied(engine):
    engine.add_image("app:1", DIGEST, status="fail")

    result = runner.invoke(app, ["check", "app:1"])

    assert result.exit_code == 1
    assert "denied: Image app:1: Scan result is FAILED (status: fail)" in result.stdout


def test_report_prints_json(engine):
    engine.add_image("app:1", DIGEST, status="warn")

    result = runner.invoke(app, ["report", "app:1"])

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report["digest"] == DIGEST
    assert report["status"] == "warn"


def test_report_missing_image():
    result = runner.invoke(app, ["report", "ghost:1"])

    assert result.exit_code == 1
