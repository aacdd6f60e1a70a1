"""Smoke tests for the runnel CLI entry point."""

from __future__ import annotations

import json
from pathlib import Path

from runnel import __version__
from runnel.cli.main import _extract_global_options, get_registered_cli_commands


def test_help_lists_commands(run_runnel) -> None:
    result = run_runnel(["--help"])

    assert result.returncode == 0
    for expected in ["exec", "pipe", "config"]:
        assert expected in result.stdout


def test_version_flag(run_runnel) -> None:
    result = run_runnel(["--version"])

    assert result.returncode == 0
    assert __version__ in result.stdout


def test_registered_commands() -> None:
    assert get_registered_cli_commands() == {"exec", "pipe", "config.show"}


def test_global_flags_stop_at_separator() -> None:
    cleaned, options = _extract_global_options(["-v", "exec", "--json", "--", "echo", "--json"])

    assert cleaned == ["exec", "--", "echo", "--json"]
    assert options.output.format == "json"
    assert options.verbosity == 1


def test_exec_passes_child_output_through(run_runnel) -> None:
    result = run_runnel(["exec", "--", "sh", "-c", "echo out; echo err >&2"])

    assert result.returncode == 0
    assert result.stdout == "out\n"
    assert "err" in result.stderr


def test_exec_mirrors_child_exit_status(run_runnel) -> None:
    result = run_runnel(["exec", "--", "sh", "-c", "exit 3"])

    assert result.returncode == 3


def test_exec_json_report(run_runnel) -> None:
    result = run_runnel(["--json", "exec", "--", "echo", "--json"])

    assert result.returncode == 0
    payload = json.loads(result.stdout)
    assert payload["argv"] == ["echo", "--json"]
    assert payload["exit_code"] == 0
    assert payload["stdout"] == "--json\n"
    assert payload["signaled"] is False
    assert payload["pid"] > 0


def test_exec_timeout_exits_124(run_runnel) -> None:
    result = run_runnel(["exec", "--timeout", "0.2", "--", "sleep", "30"])

    assert result.returncode == 124
    assert "timed out" in result.stderr


def test_exec_environment_options(run_runnel) -> None:
    result = run_runnel(["exec", "--clear-env", "--env", "ONLY=1", "--", "env"])

    assert result.returncode == 0
    assert result.stdout == "ONLY=1\n"


def test_exec_rejects_malformed_env_entry(run_runnel) -> None:
    result = run_runnel(["exec", "--env", "MISSING_SEPARATOR", "--", "true"])

    assert result.returncode == 1
    assert "KEY=VALUE" in result.stderr


def test_exec_reports_spawn_failure(run_runnel) -> None:
    result = run_runnel(["exec", "--", "runnel-definitely-missing-binary"])

    assert result.returncode == 1
    assert "runnel-definitely-missing-binary" in result.stderr


def test_pipe_json_report(run_runnel) -> None:
    result = run_runnel(["--format", "json", "pipe", "printf 'a\\nb\\nab\\n'", "grep b"])

    assert result.returncode == 0
    payload = json.loads(result.stdout)
    assert payload["stdout"] == "b\nab\n"
    assert payload["stages"] == [["printf", "a\\nb\\nab\\n"], ["grep", "b"]]
    assert payload["upstream_exit_codes"] == [0]


def test_pipe_failure_mirrors_last_stage(run_runnel) -> None:
    result = run_runnel(["pipe", "echo x", "grep nothing"])

    assert result.returncode == 1
    assert result.stdout == ""


def test_config_show_reports_resolved_values(run_runnel, tmp_path: Path) -> None:
    (tmp_path / "runnel.toml").write_text("[timeouts]\ncommand_seconds = 9\n", encoding="utf-8")

    result = run_runnel(["config", "show", "--json"], cwd=tmp_path)

    assert result.returncode == 0
    payload = json.loads(result.stdout)
    assert payload["exists"] is True
    assert payload["values"]["command_timeout_seconds"] == 9.0
    assert payload["values"]["max_drain_bytes"] == 1024 * 1024


def test_config_show_text_mode(run_runnel, tmp_path: Path) -> None:
    result = run_runnel(["config", "show"], cwd=tmp_path)

    assert result.returncode == 0
    assert "not found, using defaults" in result.stdout
    assert "kill_grace_seconds = 2.0" in result.stdout
