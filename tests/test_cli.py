"""Tests for CalcMark CLI commands."""

import json

import pytest
from click.testing import CliRunner

from calcmark.cli.main import cli


@pytest.fixture
def runner():
    return CliRunner()


class TestEval:
    def test_expression(self, runner):
        result = runner.invoke(cli, ["eval", "2 + 3 * 4"])
        assert result.exit_code == 0
        assert result.output.strip() == "14"

    def test_multiline_expression(self, runner):
        result = runner.invoke(cli, ["eval", "rent = $1,500\nrent * 12"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["$1,500.00", "$18,000.00"]

    def test_units(self, runner):
        result = runner.invoke(cli, ["eval", "10 TB at 2 TB per disk"])
        assert result.output.strip() == "5 disk"

    def test_file(self, runner, tmp_path):
        doc = tmp_path / "costs.cm"
        doc.write_text(
            "---\nexchange:\n  USD_EUR: 0.5\n---\ncost = $10\ncost in EUR\n",
            encoding="utf-8",
        )

        result = runner.invoke(cli, ["eval", "--file", str(doc)])

        assert result.exit_code == 0
        assert result.output.splitlines() == ["$10.00", "€5.00"]

    def test_error_exits_with_status_1(self, runner):
        result = runner.invoke(cli, ["eval", "$100 + 5 kg"])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_syntax_error_reports_location(self, runner):
        result = runner.invoke(cli, ["eval", "1 +"])
        assert result.exit_code == 1
        assert "line 1" in result.output

    def test_time_out_of_range_is_reported(self, runner):
        result = runner.invoke(cli, ["eval", "10:30 + 10000 years"])
        assert result.exit_code == 1
        assert "Time out of range" in result.output

    def test_logical_expression(self, runner):
        result = runner.invoke(cli, ["eval", "5 > 3 and not (2 > 4)"])
        assert result.output.strip() == "true"

    def test_requires_expression_or_file(self, runner):
        result = runner.invoke(cli, ["eval"])
        assert result.exit_code == 2

    def test_rejects_both(self, runner, tmp_path):
        doc = tmp_path / "doc.cm"
        doc.write_text("1", encoding="utf-8")

        result = runner.invoke(cli, ["eval", "1", "--file", str(doc)])

        assert result.exit_code == 2

    def test_limits_from_environment(self, runner):
        result = runner.invoke(
            cli,
            ["eval", "((1))"],
            env={"CALCMARK_MAX_NESTING_DEPTH": "1"},
        )
        assert result.exit_code == 1
        assert "nesting depth" in result.output

    def test_invalid_environment(self, runner):
        result = runner.invoke(
            cli,
            ["eval", "1"],
            env={"CALCMARK_MAX_TOKEN_COUNT": "many"},
        )
        assert result.exit_code == 1
        assert "CALCMARK_MAX_TOKEN_COUNT" in result.output


class TestFunctions:
    def test_lists_categories(self, runner):
        result = runner.invoke(cli, ["functions"])
        assert result.exit_code == 0
        assert "Capacity" in result.output
        assert "downtime(availability, unit)" in result.output

    def test_json(self, runner):
        result = runner.invoke(cli, ["functions", "--json"])
        assert result.exit_code == 0

        docs = json.loads(result.output)
        assert set(docs["byCategory"]) == {
            "math",
            "rate",
            "capacity",
            "reliability",
            "network",
            "storage",
            "compression",
        }


class TestHelp:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "eval" in result.output
        assert "functions" in result.output
