"""Command convenience API tests for single commands."""

from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

from runnel.lib.config import RunnelConfig
from runnel.lib.process import (
    Command,
    CommandFailed,
    DeadlineOverflow,
    PipelineSpawnFailed,
    ProcessBuilder,
    ProcessError,
    ProcessTimeout,
)


def test_echo_output_is_stdout_text() -> None:
    assert Command("echo").arg("hi").output() == "hi\n"
    assert Command("echo", "a", "b").output() == "a b\n"


def test_run_returns_output_on_success() -> None:
    output = Command("sh").args(["-c", "echo out; echo err >&2"]).run()

    assert output.stdout == b"out\n"
    assert output.stderr == b"err\n"
    assert output.exit_code == 0


def test_non_zero_exit_raises_command_failed_with_output() -> None:
    with pytest.raises(CommandFailed) as excinfo:
        Command("sh").args(["-c", "echo nope >&2; exit 3"]).run()

    assert excinfo.value.output.exit_code == 3
    assert excinfo.value.output.stderr == b"nope\n"
    assert "exited with code 3: nope" in str(excinfo.value)


def test_timeout_kills_command() -> None:
    started = time.monotonic()

    with pytest.raises(ProcessTimeout):
        Command("sleep").arg("60").with_timeout(0.1).run()

    assert time.monotonic() - started < 10


def test_negative_timeout_is_rejected_before_spawning(tmp_path: Path) -> None:
    marker = tmp_path / "spawned"
    command = Command("touch", str(marker))

    with pytest.raises(DeadlineOverflow, match=">= 0"):
        command.with_timeout(-1)
    with pytest.raises(ProcessError):
        Command("touch", str(marker), timeout=-0.5)
    with pytest.raises(ProcessError):
        command.pipe(Command("cat")).with_timeout(-1)

    assert not marker.exists()


def test_mutators_return_new_commands() -> None:
    base = Command("echo")

    changed = base.arg("x").with_timeout(None)

    assert base.builder.argv() == ["echo"]
    assert base.timeout == 30.0
    assert changed.builder.argv() == ["echo", "x"]
    assert changed.timeout is None


def test_with_config_adopts_command_timeout() -> None:
    config = RunnelConfig(command_timeout_seconds=5.0, kill_grace_seconds=0.5)

    command = Command("true").pipe(Command("cat")).with_config(config)

    assert command.timeout == 5.0
    assert all(stage.config == config for stage in command.stages())


def test_environment_and_working_directory(tmp_path: Path) -> None:
    command = (
        Command(sys.executable, "-c", "import os; print(os.getcwd()); print(os.environ['K'])")
        .at_path(tmp_path)
        .env("K", "value")
    )

    cwd, value = command.output().splitlines()

    assert Path(cwd).resolve() == tmp_path.resolve()
    assert value == "value"


def test_clear_env_leaves_only_explicit_entries() -> None:
    assert Command("env").clear_env().env("ONLY", "1").output() == "ONLY=1\n"


def test_file_redirects(tmp_path: Path) -> None:
    source = tmp_path / "in.txt"
    source.write_text("payload\n", encoding="utf-8")
    out_path = tmp_path / "out.txt"
    err_path = tmp_path / "err.txt"

    output = (
        Command("sh", "-c", "cat; echo problem >&2")
        .from_file(source)
        .to_file(out_path)
        .error_to_file(err_path)
        .run()
    )
    Command("echo", "more").to_file(out_path, append=True).run()

    assert output.stdout == b""
    assert out_path.read_text(encoding="utf-8") == "payload\nmore\n"
    assert err_path.read_text(encoding="utf-8") == "problem\n"


def test_quiet_discards_both_streams() -> None:
    output = Command("sh", "-c", "echo loud; echo louder >&2").quiet().run()

    assert output.stdout == b""
    assert output.stderr == b""


def test_spawn_returns_live_process_for_single_command() -> None:
    with Command("sleep", "60").spawn() as process:
        assert process.is_running()
        process.kill()
        assert process.wait(timeout=10).signaled


def test_spawn_rejects_pipelines() -> None:
    with pytest.raises(PipelineSpawnFailed, match="pipeline"):
        Command("echo", "x").pipe(Command("cat")).spawn()


def test_from_builder_wraps_configured_builder() -> None:
    builder = ProcessBuilder.command("echo").arg("built")

    command = Command.from_builder(builder, timeout=None)

    assert command.builder is builder
    assert command.output() == "built\n"
