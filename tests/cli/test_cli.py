"""
Tests for the fanzone command line.
"""
import json

import pytest
from typer.testing import CliRunner

from cli.main import app
from config import reset_config
from observability.logging import shutdown_logging


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setenv("REPOSITORY_RETRY_DELAY", "0")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.delenv("PLATFORM_USER", raising=False)
    reset_config()
    yield CliRunner()
    reset_config()
    shutdown_logging()


class TestCli:
    def test_status(self, runner):
        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Configuration" in result.output

    def test_bootstrap(self, runner):
        result = runner.invoke(app, ["bootstrap", "--user-id", "7", "--username", "fan"])

        assert result.exit_code == 0, result.output
        assert "All services healthy" in result.output
        assert "Signed in as fan (100 points)" in result.output

    def test_bootstrap_offline(self, runner):
        result = runner.invoke(app, ["bootstrap", "--user-id", "7", "--offline-repo"])

        assert result.exit_code == 0, result.output
        assert "Degraded services" in result.output
        assert "repository" in result.output

    def test_bootstrap_without_user_fails(self, runner):
        result = runner.invoke(app, ["bootstrap"])

        assert result.exit_code == 1
        assert "critical_services_init" in result.output

    def test_errors_export(self, runner, tmp_path):
        result = runner.invoke(app, ["errors", "--offline-repo", "--user-id", "7", "--output", str(tmp_path)])

        assert result.exit_code == 0, result.output
        exported = list(tmp_path.glob("fanzone-errors-*.json"))
        assert len(exported) == 1
        entries = json.loads(exported[0].read_text())
        assert entries[0]["context"] == "repository.init"
        assert entries[0]["category"] == "database"
