"""CLI command handlers for running commands and pipelines."""

from __future__ import annotations

import shlex
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import IO, TYPE_CHECKING, Annotated, Any

from cyclopts import Parameter

from runnel.lib.config import load_config
from runnel.lib.process import Command, CommandFailed, Output

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cyclopts import App

Emitter = Callable[[Any], None]


@dataclass(frozen=True, slots=True)
class ExecReport:
    argv: tuple[str, ...]
    exit_code: int | None
    pid: int
    signaled: bool
    stdout: bytes
    stderr: bytes

    @classmethod
    def from_output(cls, argv: Sequence[str], output: Output) -> ExecReport:
        return cls(
            argv=tuple(argv),
            exit_code=output.exit_code,
            pid=output.status.pid,
            signaled=output.status.signaled,
            stdout=output.stdout,
            stderr=output.stderr,
        )

    def write_through(self, stdout: IO[bytes], stderr: IO[bytes]) -> None:
        stdout.write(self.stdout)
        stdout.flush()
        stderr.write(self.stderr)
        stderr.flush()


@dataclass(frozen=True, slots=True)
class PipeReport:
    stages: tuple[tuple[str, ...], ...]
    exit_code: int | None
    pid: int
    signaled: bool
    stdout: bytes
    stderr: bytes
    upstream_exit_codes: tuple[int | None, ...]

    @classmethod
    def from_output(cls, stages: Sequence[Sequence[str]], output: Output) -> PipeReport:
        # Upstream stderr is replayed ahead of the last stage's, in stage order.
        stderr = b"".join(stage.stderr for stage in output.upstream) + output.stderr
        return cls(
            stages=tuple(tuple(stage) for stage in stages),
            exit_code=output.exit_code,
            pid=output.status.pid,
            signaled=output.status.signaled,
            stdout=output.stdout,
            stderr=stderr,
            upstream_exit_codes=output.upstream_exit_codes,
        )

    def write_through(self, stdout: IO[bytes], stderr: IO[bytes]) -> None:
        stdout.write(self.stdout)
        stdout.flush()
        stderr.write(self.stderr)
        stderr.flush()


def _parse_env_pairs(pairs: Sequence[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, separator, value = pair.partition("=")
        if not separator or not key.strip():
            raise ValueError(f"Invalid --env value {pair!r}: expected KEY=VALUE.")
        parsed[key.strip()] = value
    return parsed


def _configure(
    command: Command,
    *,
    timeout: float | None,
    cwd: str | None,
    env: Sequence[str],
    clear_env: bool,
) -> Command:
    command = command.with_config(load_config())
    if timeout is not None:
        command = command.with_timeout(timeout)
    if cwd is not None:
        command = command.at_path(cwd)
    if clear_env:
        command = command.clear_env()
    for key, value in _parse_env_pairs(env).items():
        command = command.env(key, value)
    return command


def _run_to_output(command: Command) -> Output:
    try:
        return command.run()
    except CommandFailed as failure:
        return failure.output


def _exit_with(output: Output) -> None:
    exit_code = output.exit_code
    if exit_code:
        raise SystemExit(exit_code)


def _exec(
    emit: Emitter,
    *argv: Annotated[str, Parameter(help="Program and arguments; put them after `--`.")],
    timeout: Annotated[
        float | None,
        Parameter(name="--timeout", help="Seconds before the command is killed."),
    ] = None,
    cwd: Annotated[
        str | None,
        Parameter(name="--cwd", help="Working directory for the command."),
    ] = None,
    env: Annotated[
        tuple[str, ...],
        Parameter(
            name="--env",
            help="Extra KEY=VALUE environment entry (repeatable).",
            negative_iterable=(),
        ),
    ] = (),
    clear_env: Annotated[
        bool,
        Parameter(name="--clear-env", help="Start from an empty environment."),
    ] = False,
) -> None:
    if not argv:
        raise ValueError("exec requires a command; pass it after `--`.")

    command = _configure(
        Command(argv[0], *argv[1:]),
        timeout=timeout,
        cwd=cwd,
        env=env,
        clear_env=clear_env,
    )
    output = _run_to_output(command)
    emit(ExecReport.from_output(argv, output))
    _exit_with(output)


def _pipe(
    emit: Emitter,
    *stages: Annotated[str, Parameter(help="One quoted command per pipeline stage.")],
    timeout: Annotated[
        float | None,
        Parameter(name="--timeout", help="Seconds before every stage is killed."),
    ] = None,
    cwd: Annotated[
        str | None,
        Parameter(name="--cwd", help="Working directory for the first stage."),
    ] = None,
) -> None:
    split_stages = [shlex.split(stage) for stage in stages]
    if not split_stages or any(not stage for stage in split_stages):
        raise ValueError("pipe requires one non-empty command per stage.")

    first, *rest = split_stages
    command = Command(first[0], *first[1:])
    for stage in rest:
        command = command.pipe(Command(stage[0], *stage[1:]))
    command = _configure(command, timeout=timeout, cwd=cwd, env=(), clear_env=False)

    output = _run_to_output(command)
    emit(PipeReport.from_output(split_stages, output))
    _exit_with(output)


def register_exec_commands(app: App, emit: Emitter) -> tuple[set[str], dict[str, str]]:
    commands: dict[str, tuple[Callable[..., None], str]] = {
        "exec": (partial(_exec, emit), "Run one command and mirror its exit status."),
        "pipe": (partial(_pipe, emit), "Run a pipeline of commands, left to right."),
    }
    descriptions: dict[str, str] = {}
    for name, (handler, description) in commands.items():
        handler.__name__ = f"cmd_{name}"  # type: ignore[attr-defined]
        app.command(handler, name=name, help=description)
        descriptions[name] = description
    return set(commands), descriptions
