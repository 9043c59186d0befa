"""
Tests for the CLI interface.
"""
import os
import tempfile

import pytest
from rich.console import Console
from typer.testing import CliRunner

from ai_quota_router.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL

runner = CliRunner()

CONFIG = """
backends:
  llama-3.3-70b-versatile:
    daily_token_limit: 100000
    daily_request_limit: 1000
    priority: 1
  openai/gpt-oss-120b:
    daily_token_limit: 200000
    daily_request_limit: 1000
    priority: 2
  groq/compound:
    daily_token_limit: null
    daily_request_limit: 250
    priority: 3
fast_priority:
  - groq/compound
"""


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep tables from wrapping in captured output."""
    monkeypatch.setattr("ai_quota_router.cli.main.console", Console(width=200))


@pytest.fixture
def workspace():
    """Temp config and initialized database."""
    temp_dir = tempfile.mkdtemp()
    config_path = os.path.join(temp_dir, "router.yaml")
    db_path = os.path.join(temp_dir, "test.db")
    with open(config_path, 'w', encoding='utf-8') as f:
        f.write(CONFIG)

    result = runner.invoke(app, ["init", "--config", config_path, "--db", db_path])
    assert result.exit_code == EXIT_CODE_PASS

    yield ["--config", config_path, "--db", db_path]

    import shutil
    shutil.rmtree(temp_dir, ignore_errors=True)


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])

        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output

    def test_init_creates_database(self, tmp_path):
        db_path = str(tmp_path / "fresh.db")

        result = runner.invoke(app, ["init", "--db", db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage ledger initialized" in result.output
        assert os.path.exists(db_path)

    def test_invalid_config(self, tmp_path):
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("backends: {}\n")

        result = runner.invoke(app, ["status", "--config", str(config_path)])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_missing_config(self, tmp_path):
        result = runner.invoke(app, ["select", "--config", str(tmp_path / "nope.yaml")])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_status(self, workspace):
        runner.invoke(app, ["record", "llama-3.3-70b-versatile", "--tokens", "50000"] + workspace)

        result = runner.invoke(app, ["status"] + workspace)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Backend Usage" in result.output
        assert "50.0%" in result.output
        assert "unlimited" in result.output

    def test_select_top_priority(self, workspace):
        result = runner.invoke(app, ["select"] + workspace)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Selected: llama-3.3-70b-versatile" in result.output
        assert "Usage: 0.0%" in result.output

    def test_select_fast(self, workspace):
        result = runner.invoke(app, ["select", "--fast"] + workspace)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Selected: groq/compound" in result.output

    def test_select_after_rate_limit(self, workspace):
        runner.invoke(app, [
            "record", "llama-3.3-70b-versatile", "--tokens", "0", "--outcome", "rate_limited"
        ] + workspace)

        result = runner.invoke(app, ["select"] + workspace)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Selected: openai/gpt-oss-120b" in result.output

    def test_select_nothing_available(self, workspace):
        for backend in ("llama-3.3-70b-versatile", "openai/gpt-oss-120b", "groq/compound"):
            runner.invoke(app, [
                "record", backend, "--tokens", "0", "--outcome", "rate_limited"
            ] + workspace)

        result = runner.invoke(app, ["select"] + workspace)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "No backend available" in result.output

    def test_capacity(self, workspace):
        runner.invoke(app, ["record", "openai/gpt-oss-120b", "--tokens", "30000"] + workspace)

        result = runner.invoke(app, ["capacity"] + workspace)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Fleet Capacity" in result.output
        assert "30,000 / 300,000" in result.output
        assert "Backends: 3 (0 excluded)" in result.output

    def test_history_empty(self, workspace):
        result = runner.invoke(app, ["history", "--days", "3"] + workspace)

        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage recorded in the last 3 days" in result.output

    def test_history(self, workspace):
        runner.invoke(app, ["record", "openai/gpt-oss-120b", "--tokens", "1234"] + workspace)

        result = runner.invoke(app, ["history"] + workspace)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage History" in result.output
        assert "1,234" in result.output

    def test_record(self, workspace):
        runner.invoke(app, ["record", "openai/gpt-oss-120b", "--tokens", "100"] + workspace)

        result = runner.invoke(
            app, ["record", "openai/gpt-oss-120b", "-t", "50", "-r", "2"] + workspace
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "150 tokens, 3 requests today" in result.output

    def test_record_unknown_backend(self, workspace):
        result = runner.invoke(app, ["record", "gpt-7", "--tokens", "1"] + workspace)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error:" in result.output

    def test_record_unknown_outcome(self, workspace):
        result = runner.invoke(app, [
            "record", "openai/gpt-oss-120b", "--tokens", "1", "--outcome", "timeout"
        ] + workspace)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error:" in result.output

    def test_record_without_schema(self, tmp_path):
        result = runner.invoke(app, [
            "record", "openai/gpt-oss-120b", "--tokens", "1", "--db", str(tmp_path / "none.db")
        ])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error recording usage" in result.output
