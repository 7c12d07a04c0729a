"""
Tests for CLI commands.
"""

import pytest
from typer.testing import CliRunner

from jsonoracle.cli import app
from jsonoracle.config import get_settings

# Disable Rich formatting in tests using NO_COLOR environment variable
runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb", "COLUMNS": "200"})


@pytest.fixture(autouse=True)
def cli_environment(tmp_path, monkeypatch):
    """Point the process settings at a throwaway SQLite file."""
    monkeypatch.setenv("DATABASE_URL_OVERRIDE", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("API_KEY_NAMESPACE", "jo_test_")
    monkeypatch.setenv("WATCH_ROOT", str(tmp_path))
    monkeypatch.setenv("LOG_CONSOLE_ENABLED", "false")
    monkeypatch.setenv("LOG_FILE_ENABLED", "false")
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def register(*extra: str):
    return runner.invoke(
        app,
        ["register", "auth0|cli", "CLI Integration", "--transport", "polling", *extra],
    )


class TestInitDb:
    def test_creates_tables(self):
        result = runner.invoke(app, ["init-db"])

        assert result.exit_code == 0
        assert "Database tables created" in result.stdout


class TestRegisterCommand:
    def test_prints_key_once(self):
        result = register("--domain", "finance", "--model", "llama2", "--model", "mistral")

        assert result.exit_code == 0
        assert "Integration registered" in result.stdout
        assert "API key: jo_test_" in result.stdout

    def test_invalid_transport(self):
        result = runner.invoke(
            app, ["register", "auth0|cli", "Broken", "--transport", "carrier_pigeon"]
        )

        assert result.exit_code == 1
        assert "Unknown transport kind" in result.stdout

    def test_webhook_requires_url(self):
        result = runner.invoke(app, ["register", "auth0|cli", "No URL"])

        assert result.exit_code == 1
        assert "requires a webhook URL" in result.stdout


class TestIntegrationsCommand:
    def test_lists_registered(self):
        register()

        result = runner.invoke(app, ["integrations", "auth0|cli"])

        assert result.exit_code == 0
        assert "Integrations of auth0|cli" in result.stdout

    def test_empty(self):
        runner.invoke(app, ["init-db"])

        result = runner.invoke(app, ["integrations", "auth0|nobody"])

        assert result.exit_code == 0
        assert "No integrations found" in result.stdout


class TestAnalyzeCommand:
    def test_requires_path(self):
        result = runner.invoke(app, ["analyze"])

        assert result.exit_code != 0

    def test_unreadable_file(self, tmp_path):
        result = runner.invoke(
            app, ["analyze", str(tmp_path / "missing.json"), "--api-key", "jo_test_x"]
        )

        assert result.exit_code == 1
        assert "Cannot read" in result.stdout

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        result = runner.invoke(app, ["analyze", str(path), "--api-key", "jo_test_x"])

        assert result.exit_code == 1
        assert "Cannot read" in result.stdout

    def test_rejects_unknown_key(self, tmp_path):
        runner.invoke(app, ["init-db"])
        path = tmp_path / "data.json"
        path.write_text('{"a": 1}')

        result = runner.invoke(
            app, ["analyze", str(path), "--api-key", "jo_test_unknownunknownunknown"]
        )

        assert result.exit_code == 1
        assert "Invalid API key" in result.stdout
