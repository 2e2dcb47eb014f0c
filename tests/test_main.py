"""Tests for the command-line entry point."""
import io
import json
from pathlib import Path
import sys
import pytest
from loguru import logger
import expression_rule.config as config_module
from expression_rule.main import check_expression, main, replay
from expression_rule.rules.simple_expression import SimpleExpressionRule


def reasons_from(output: str):
    """Reason documents printed to stdout (log lines are skipped)."""
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Each test starts without a cached config instance and restores log sinks after."""
    monkeypatch.setattr(config_module, '_config_instance', None)
    yield
    logger.remove()
    logger.add(sys.stderr)


class TestCheckExpression:
    """Tests for --check."""

    def test_check_ok(self):
        assert check_expression("if(humidity > 50, 1, 0)", ["humidity"]) is True

    def test_check_unknown_symbol(self):
        assert check_expression("pressure > 1", ["humidity"]) is False

    def test_check_syntax_error(self):
        assert check_expression("humidity >>", ["humidity"]) is False

    def test_main_check_exit_codes(self, test_config_yaml: Path):
        assert main(["--config", str(test_config_yaml), "--check", "--log-level", "ERROR"]) == 0
        assert main([
            "--config", str(test_config_yaml), "--check",
            "--expression", "pressure > 1", "--log-level", "ERROR"
        ]) == 1


class TestReplay:
    """Tests for replaying recorded cycles."""

    def test_replay_stream(self, humidity_rule, capsys):
        stream = io.StringIO(
            '{"tempSensor": {"humidity": 70}}\n'
            '{"tempSensor": {"humidity": 10}}\n'
        )
        assert replay(humidity_rule, stream) == 2

        reasons = reasons_from(capsys.readouterr().out)
        assert [r["reason"] for r in reasons] == ["triggered", "cleared"]
        assert [r["result"] for r in reasons] == [True, False]

    def test_main_replay_file(self, test_config_yaml: Path, replay_file: Path, capsys):
        code = main([
            "--config", str(test_config_yaml),
            "--replay", str(replay_file),
            "--log-level", "ERROR",
        ])
        assert code == 0

        reasons = reasons_from(capsys.readouterr().out)
        assert [r["cycle"] for r in reasons] == [1, 3, 5]
        assert [r["reason"] for r in reasons] == ["triggered", "cleared", "cleared"]

    def test_main_overrides(self, test_config_yaml: Path, replay_file: Path, capsys):
        """--expression replaces the configured expression."""
        main([
            "--config", str(test_config_yaml),
            "--expression", "humidity > 80",
            "--replay", str(replay_file),
            "--log-level", "ERROR",
        ])
        reasons = reasons_from(capsys.readouterr().out)
        assert [r["result"] for r in reasons] == [False, False, False]

    def test_main_missing_config(self, tmp_path: Path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "--log-level", "ERROR"]) == 2

    def test_main_missing_config_with_overrides(self, tmp_path: Path, replay_file: Path, capsys):
        """Asset and expression on the command line are enough."""
        code = main([
            "--config", str(tmp_path / "missing.yaml"),
            "--asset", "tempSensor",
            "--expression", "humidity > 50",
            "--replay", str(replay_file),
            "--log-level", "ERROR",
        ])
        assert code == 0
        assert len(reasons_from(capsys.readouterr().out)) == 3

    def test_main_reads_stdin_without_replay(self, test_config_yaml: Path, monkeypatch, capsys):
        """Without --replay, cycles come from stdin and that is announced."""
        monkeypatch.setattr(sys, "stdin", io.StringIO('{"tempSensor": {"humidity": 70}}\n'))
        code = main(["--config", str(test_config_yaml), "--log-level", "INFO"])
        assert code == 0

        out = capsys.readouterr().out
        assert "Reading cycles from stdin" in out
        assert [r["reason"] for r in reasons_from(out)] == ["triggered"]

    def test_replay_uses_fresh_rule(self):
        """Replay on an inert rule clears every cycle."""
        rule = SimpleExpressionRule()
        assert replay(rule, io.StringIO('{"A": {"x": 1}}\n')) == 1
        assert not rule.state.is_triggered()
