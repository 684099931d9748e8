"""Tests for the command-line interface."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from tidyinbox.cli import cli


@pytest.fixture
def runner(set_config_env: None, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    # The sample config points the database at a relative path
    monkeypatch.chdir(tmp_path)
    return CliRunner()


class TestValidateConfig:
    def test_valid(self, config_file: Path) -> None:
        result = CliRunner().invoke(cli, ["validate-config", "-c", str(config_file)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output

    def test_missing(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["validate-config", "-c", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "Load error" in result.output


class TestRuleCommands:
    def test_add_and_list(self, runner: CliRunner) -> None:
        result = runner.invoke(
            cli,
            ["add-rule", "--owner", "alice", "--type", "weekly", "--time", "09:00", "--day-of-week", "1"],
        )
        assert result.exit_code == 0, result.output
        assert "Created rule 1" in result.output
        assert "Asia/Manila" in result.output

        result = runner.invoke(cli, ["rules"])
        assert result.exit_code == 0
        assert "alice" in result.output

    def test_invalid_rule_exits_with_error(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["add-rule", "--owner", "alice", "--type", "weekly", "--time", "09:00"])
        assert result.exit_code == 1
        assert "Invalid rule" in result.output

    def test_set_active_unknown_rule(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["set-active", "99", "off"])
        assert result.exit_code == 1
        assert "No rule with id 99" in result.output

    def test_delete_rule(self, runner: CliRunner) -> None:
        runner.invoke(cli, ["add-rule", "--owner", "alice", "--type", "daily", "--time", "07:30"])
        result = runner.invoke(cli, ["delete-rule", "1", "--yes"])
        assert result.exit_code == 0
        assert "Deleted rule 1" in result.output

    def test_empty_history(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["history"])
        assert result.exit_code == 0
        assert "No runs recorded yet" in result.output


class TestRun:
    def test_run_without_gateway(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["run", "--once"])
        assert result.exit_code == 1
        assert "No mail gateway configured" in result.output
