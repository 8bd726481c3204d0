"""
Tests for the CLI interface.
"""
import json

import pytest
from typer.testing import CliRunner

from prompt_ledger.cli import main as cli_main
from prompt_ledger.cli.main import EXIT_CODE_CALLER_ERROR, EXIT_CODE_IO_ERROR, EXIT_CODE_OK, app
from prompt_ledger.service import Workspace
from prompt_ledger.storage.ledger import SQLiteUsageLedger

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep long paths and messages on one line."""
    monkeypatch.setattr(cli_main.console, "width", 200)


@pytest.fixture
def workspace(tmp_path):
    """Initialized workspace directory."""
    root = tmp_path / "easyai"
    result = runner.invoke(app, ["--workspace", str(root), "init"])
    assert result.exit_code == EXIT_CODE_OK
    return root


def invoke(workspace, *args):
    return runner.invoke(app, ["--workspace", str(workspace), *args])


class TestInit:
    """Test workspace initialization."""

    def test_init_creates_workspace(self, tmp_path):
        """Test init creates the workspace layout."""
        root = tmp_path / "fresh"
        result = runner.invoke(app, ["--workspace", str(root), "init"])

        assert result.exit_code == EXIT_CODE_OK
        assert "Workspace created" in result.output
        assert (root / "prompts" / "examples" / "code-review.md").exists()
        assert (root / "config" / "settings.yaml").exists()

    def test_init_twice_fails(self, workspace):
        """Test re-running init without --force is rejected."""
        result = invoke(workspace, "init")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "already initialized" in result.output

    def test_init_with_key_updates_existing(self, workspace):
        """Test --api-key on an existing workspace stores the key."""
        result = invoke(workspace, "init", "--api-key", "sk-test-123")

        assert result.exit_code == EXIT_CODE_OK
        assert "API key updated" in result.output
        assert Workspace(workspace).config_store().raw_secrets()["OPENAI_API_KEY"] == "sk-test-123"

    def test_commands_require_workspace(self, tmp_path):
        """Test commands explain how to initialize a missing workspace."""
        result = runner.invoke(app, ["--workspace", str(tmp_path / "missing"), "logs"])
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "prompt-ledger init" in result.output


class TestPrompts:
    """Test template commands."""

    def test_list_shows_examples(self, workspace):
        """Test seeded templates are listed."""
        result = invoke(workspace, "prompts", "list")
        assert result.exit_code == EXIT_CODE_OK
        assert "code-review" in result.output
        assert "bug-fix" in result.output

    def test_list_filters(self, workspace):
        """Test --category and --search narrow the listing."""
        invoke(workspace, "prompts", "save", "custom", "hello", "--content", "Hi there")

        result = invoke(workspace, "prompts", "list", "--category", "custom")
        assert result.exit_code == EXIT_CODE_OK
        assert "hello" in result.output
        assert "code-review" not in result.output

        result = invoke(workspace, "prompts", "list", "--search", "bug")
        assert "bug-fix" in result.output
        assert "hello" not in result.output

        result = invoke(workspace, "prompts", "list", "--search", "no-such-text")
        assert "No prompts found" in result.output

    def test_save_show_delete(self, workspace):
        """Test a template round trip through the CLI."""
        result = invoke(workspace, "prompts", "save", "custom", "hello", "--content", "Hi [b]{{name}}[/b]")
        assert result.exit_code == EXIT_CODE_OK
        assert "Saved custom/hello" in result.output

        result = invoke(workspace, "prompts", "show", "custom", "hello")
        assert result.exit_code == EXIT_CODE_OK
        assert "Hi [b]{{name}}[/b]" in result.output

        result = invoke(workspace, "prompts", "delete", "custom", "hello")
        assert result.exit_code == EXIT_CODE_OK

        result = invoke(workspace, "prompts", "show", "custom", "hello")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Not found" in result.output

    def test_save_from_file(self, workspace, tmp_path):
        """Test template content can be read from a file."""
        source = tmp_path / "body.md"
        source.write_text("From file", encoding="utf-8")

        result = invoke(workspace, "prompts", "save", "custom", "filed", "--file", str(source))
        assert result.exit_code == EXIT_CODE_OK
        assert (workspace / "prompts" / "custom" / "filed.md").read_text(encoding="utf-8") == "From file"

    def test_save_requires_one_source(self, workspace):
        """Test save rejects missing content."""
        result = invoke(workspace, "prompts", "save", "custom", "empty")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "exactly one" in result.output

    def test_save_invalid_name(self, workspace):
        """Test path-like names are rejected."""
        result = invoke(workspace, "prompts", "save", "custom", ".hidden", "--content", "x")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR

    def test_render_keeps_unbound_placeholders(self, workspace):
        """Test render binds variables and leaves others intact."""
        invoke(workspace, "prompts", "save", "custom", "pair", "--content", "{{a}} and {{b}}")

        result = invoke(workspace, "render", "custom", "pair", "--var", "a=1")
        assert result.exit_code == EXIT_CODE_OK
        assert "1 and {{b}}" in result.output

    def test_render_rejects_malformed_var(self, workspace):
        """Test --var requires name=value."""
        result = invoke(workspace, "render", "custom", "pair", "--var", "oops")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Invalid variable" in result.output


class TestRun:
    """Test running prompts."""

    def test_offline_run_records_call(self, workspace):
        """Test an offline run prints the rendered prompt and logs it."""
        result = invoke(workspace, "run", "code-review", "--offline", "--input", "print(1)", "--var", "language=python")

        assert result.exit_code == EXIT_CODE_OK
        assert "Response:" in result.output
        assert "print(1)" in result.output

        records = SQLiteUsageLedger(str(workspace / "logs" / "ledger.db")).records()
        assert len(records) == 1
        assert records[0].prompt_ref == "code-review"
        assert records[0].model == "gpt-4"
        assert records[0].success is True

    def test_run_without_key_records_failure(self, workspace):
        """Test a provider failure is reported and still logged."""
        result = invoke(workspace, "run", "code-review", "--model", "gpt-4")

        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Call failed" in result.output

        records = SQLiteUsageLedger(str(workspace / "logs" / "ledger.db")).records()
        assert len(records) == 1
        assert records[0].success is False

    def test_playground_compares_models(self, workspace):
        """Test one prompt is run and logged once per model."""
        result = invoke(workspace, "playground", "Hello {{who}}", "--models", "gpt-4,claude-3-haiku",
                        "--var", "who=team", "--offline")

        assert result.exit_code == EXIT_CODE_OK
        assert "claude-3-haiku" in result.output
        assert "Hello team" in result.output

        records = SQLiteUsageLedger(str(workspace / "logs" / "ledger.db")).records()
        assert sorted(r.model for r in records) == ["claude-3-haiku", "gpt-4"]
        assert {r.prompt_ref for r in records} == {"playground-test"}

    def test_playground_all_failed(self, workspace):
        """Test the exit code when every model fails."""
        result = invoke(workspace, "playground", "Hi", "--models", "gpt-4,claude-3-haiku")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "not configured" in result.output

    def test_run_missing_prompt(self, workspace):
        """Test an unknown prompt name."""
        result = invoke(workspace, "run", "nope", "--offline")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert 'Prompt "nope" not found' in result.output


class TestLogsAndAnalytics:
    """Test ledger views."""

    def test_logs_empty(self, workspace):
        """Test logs with no calls."""
        result = invoke(workspace, "logs")
        assert result.exit_code == EXIT_CODE_OK
        assert "No API calls logged yet" in result.output

    def test_logs_status_filter(self, workspace):
        """Test the status filter excludes successful calls."""
        invoke(workspace, "run", "bug-fix", "--offline")

        result = invoke(workspace, "logs", "--status", "error")
        assert "No API calls logged yet" in result.output

        result = invoke(workspace, "logs", "--status", "success")
        assert result.exit_code == EXIT_CODE_OK
        assert "bug-fix" in result.output

    def test_logs_invalid_status(self, workspace):
        """Test unknown status values are rejected."""
        result = invoke(workspace, "logs", "--status", "maybe")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR

    def test_analytics_empty(self, workspace):
        """Test analytics with no calls."""
        result = invoke(workspace, "analytics")
        assert result.exit_code == EXIT_CODE_OK
        assert "No API call logs found" in result.output

    def test_analytics_summary(self, workspace):
        """Test totals after two runs."""
        invoke(workspace, "run", "bug-fix", "--offline")
        invoke(workspace, "run", "code-review", "--offline")

        result = invoke(workspace, "analytics", "--days", "3", "--detailed")
        assert result.exit_code == EXIT_CODE_OK
        assert "Total API Calls: 2" in result.output
        assert "Success Rate: 100%" in result.output

    def test_analytics_export_json(self, workspace):
        """Test JSON export lands in the exports folder."""
        invoke(workspace, "run", "bug-fix", "--offline")

        result = invoke(workspace, "analytics", "--export", "json")
        assert result.exit_code == EXIT_CODE_OK
        exported = list((workspace / "exports").glob("analytics-*.json"))
        assert len(exported) == 1
        payload = json.loads(exported[0].read_text(encoding="utf-8"))
        assert payload["totalCalls"] == 1
        assert payload["modelUsage"] == {"gpt-4": 1}

    def test_analytics_export_unknown_format(self, workspace):
        """Test unsupported export formats are rejected."""
        result = invoke(workspace, "analytics", "--export", "xml")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Unsupported export format" in result.output

    def test_analytics_invalid_days(self, workspace):
        """Test a non-positive window is rejected."""
        result = invoke(workspace, "analytics", "--days", "0")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR


class TestConfigCommand:
    """Test the config command."""

    def test_get_default(self, workspace):
        """Test reading a default setting."""
        result = invoke(workspace, "config", "--get", "ui.theme")
        assert result.exit_code == EXIT_CODE_OK
        assert "dark" in result.output

    def test_set_then_get(self, workspace):
        """Test updating a setting."""
        result = invoke(workspace, "config", "--set", "ui.theme=light")
        assert result.exit_code == EXIT_CODE_OK

        result = invoke(workspace, "config", "--get", "ui.theme")
        assert "light" in result.output

    def test_secret_is_masked(self, workspace):
        """Test secrets never print in clear."""
        invoke(workspace, "config", "--set", "OPENAI_API_KEY=sk-very-secret")

        result = invoke(workspace, "config", "--list")
        assert result.exit_code == EXIT_CODE_OK
        assert "sk-very-secret" not in result.output
        assert "***configured***" in result.output

    def test_set_empty_secret_clears_it(self, workspace):
        """Test KEY= clears a stored secret."""
        invoke(workspace, "config", "--set", "OPENAI_API_KEY=sk-old")

        result = invoke(workspace, "config", "--set", "OPENAI_API_KEY=")
        assert result.exit_code == EXIT_CODE_OK
        assert Workspace(workspace).config_store().raw_secrets()["OPENAI_API_KEY"] == ""

    def test_set_empty_setting_rejected(self, workspace):
        """Test settings still require a value."""
        result = invoke(workspace, "config", "--set", "ui.theme=")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Invalid format" in result.output

    def test_unknown_key_rejected(self, workspace):
        """Test unknown keys are rejected."""
        result = invoke(workspace, "config", "--set", "plugins.enabled=true")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Unknown configuration key" in result.output

    def test_get_missing_key(self, workspace):
        """Test missing keys report not found."""
        result = invoke(workspace, "config", "--get", "ui.nope")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Not found" in result.output

    def test_malformed_config_is_io_error(self, workspace):
        """Test an unreadable settings file maps to the I/O exit code."""
        (workspace / "config" / "settings.yaml").write_text("ui: [broken\n", encoding="utf-8")
        result = invoke(workspace, "config", "--list")
        assert result.exit_code == EXIT_CODE_IO_ERROR


class TestPrune:
    """Test the prune command."""

    def test_prune_nothing(self, workspace):
        """Test pruning an empty ledger."""
        result = invoke(workspace, "prune")
        assert result.exit_code == EXIT_CODE_OK
        assert "Pruned 0 record(s)" in result.output


class TestExportCommand:
    """Test the export command."""

    def test_export_logs_default_location(self, workspace):
        """Test logs land in the exports folder."""
        invoke(workspace, "run", "bug-fix", "--offline")

        result = invoke(workspace, "export", "--type", "logs", "--format", "jsonl")
        assert result.exit_code == EXIT_CODE_OK
        assert "Exported 1 logs item(s)" in result.output
        exported = list((workspace / "exports").glob("logs-export-*.jsonl"))
        assert len(exported) == 1
        assert json.loads(exported[0].read_text(encoding="utf-8"))["promptRef"] == "bug-fix"

    def test_export_prompts_to_named_file(self, workspace):
        """Test --output gains the format extension."""
        result = invoke(workspace, "export", "--type", "prompts", "--format", "csv", "--output", "all-prompts")
        assert result.exit_code == EXIT_CODE_OK
        content = (workspace / "exports" / "all-prompts.csv").read_text(encoding="utf-8")
        assert content.startswith("Name,Category,Description,Content")
        assert "code-review" in content

    def test_export_config_absolute_output(self, workspace, tmp_path):
        """Test an absolute --output path is used as given."""
        invoke(workspace, "config", "--set", "OPENAI_API_KEY=sk-hidden")
        target = tmp_path / "settings-backup.json"

        result = invoke(workspace, "export", "--type", "config", "--output", str(target))
        assert result.exit_code == EXIT_CODE_OK
        text = target.read_text(encoding="utf-8")
        assert "sk-hidden" not in text
        assert json.loads(text)["config"]["ui"]["theme"] == "dark"

    def test_export_without_logs(self, workspace):
        """Test exporting an empty ledger reports not found."""
        result = invoke(workspace, "export")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Not found" in result.output

    def test_export_bad_format(self, workspace):
        """Test unsupported formats are rejected."""
        result = invoke(workspace, "export", "--type", "config", "--format", "xml")
        assert result.exit_code == EXIT_CODE_CALLER_ERROR
        assert "Unsupported export format" in result.output
