"""Immutable spawn configuration for one child process."""

from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Iterable, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType

import structlog

from runnel.lib.config.settings import RunnelConfig
from runnel.lib.process.descriptors import ProcessStreams, StreamDescriptor
from runnel.lib.process.errors import InvalidCommand, InvalidWorkingDirectory, ProcessSpawnFailed
from runnel.lib.process.handle import Process

logger = structlog.get_logger(__name__)

_EMPTY_ENV: Mapping[str, str] = MappingProxyType({})


def _freeze_env(entries: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(entries))


@dataclass(frozen=True, slots=True)
class ProcessBuilder:
    """Copy-on-write description of how to start one process.

    Every setter returns a new builder, so a partially configured builder can
    be reused as a template for several spawns.
    """

    program: str
    arguments: tuple[str, ...] = ()
    cwd: Path = field(default_factory=Path.cwd)
    environment: Mapping[str, str] = _EMPTY_ENV
    inherit_environment: bool = True
    process_streams: ProcessStreams = field(default_factory=ProcessStreams.defaults)
    start_new_session: bool = False
    config: RunnelConfig = field(default_factory=RunnelConfig)

    @classmethod
    def command(cls, name: str) -> ProcessBuilder:
        """Start a builder for `name`, defaulting the cwd to the current directory."""

        return cls(program=name, cwd=Path.cwd())

    def arg(self, value: str | os.PathLike[str]) -> ProcessBuilder:
        return replace(self, arguments=(*self.arguments, os.fspath(value)))

    def args(self, values: Iterable[str | os.PathLike[str]]) -> ProcessBuilder:
        return replace(self, arguments=(*self.arguments, *(os.fspath(value) for value in values)))

    def working_directory(self, path: str | os.PathLike[str]) -> ProcessBuilder:
        return replace(self, cwd=Path(path))

    def env(self, key: str, value: str) -> ProcessBuilder:
        return self.envs({key: value})

    def envs(self, entries: Mapping[str, str]) -> ProcessBuilder:
        merged = dict(self.environment)
        merged.update({str(key): str(value) for key, value in entries.items()})
        return replace(self, environment=_freeze_env(merged))

    def inherit_env(self, inherit: bool = True) -> ProcessBuilder:
        return replace(self, inherit_environment=inherit)

    def clear_env(self) -> ProcessBuilder:
        """Drop explicit entries and stop inheriting the parent environment."""

        return replace(self, environment=_EMPTY_ENV, inherit_environment=False)

    def stdin(self, descriptor: StreamDescriptor) -> ProcessBuilder:
        return replace(self, process_streams=self.process_streams.with_stdin(descriptor))

    def stdout(self, descriptor: StreamDescriptor) -> ProcessBuilder:
        return replace(self, process_streams=self.process_streams.with_stdout(descriptor))

    def stderr(self, descriptor: StreamDescriptor) -> ProcessBuilder:
        return replace(self, process_streams=self.process_streams.with_stderr(descriptor))

    def streams(self, streams: ProcessStreams) -> ProcessBuilder:
        return replace(self, process_streams=streams)

    def new_session(self, enabled: bool = True) -> ProcessBuilder:
        return replace(self, start_new_session=enabled)

    def with_config(self, config: RunnelConfig) -> ProcessBuilder:
        return replace(self, config=config)

    def argv(self) -> list[str]:
        return [self.program, *self.arguments]

    def command_line(self) -> str:
        return shlex.join(self.argv())

    def child_env(self) -> dict[str, str]:
        """Environment the child receives: inherited entries overlaid by explicit ones."""

        if not self.inherit_environment:
            return dict(self.environment)
        merged = dict(os.environ)
        merged.update(self.environment)
        return merged

    def spawn(self) -> Process:
        if not self.program.strip():
            raise InvalidCommand()
        if not self.cwd.is_dir():
            raise InvalidWorkingDirectory(self.cwd)

        argv = self.argv()
        # Files opened for FILE slots are closed here once the child holds its copy.
        with ExitStack() as stack:
            popen_arguments = self.process_streams.to_popen_arguments(stack)
            try:
                popen = subprocess.Popen(
                    argv,
                    cwd=self.cwd,
                    env=self.child_env(),
                    start_new_session=self.start_new_session,
                    close_fds=True,
                    bufsize=0,
                    **popen_arguments,
                )
            except (OSError, ValueError, subprocess.SubprocessError) as error:
                raise ProcessSpawnFailed(f"Failed to spawn '{self.program}': {error}") from error

        logger.debug("Spawned process.", argv=argv, pid=popen.pid, cwd=str(self.cwd))
        return Process(
            popen,
            command=self.command_line(),
            new_session=self.start_new_session,
            config=self.config,
        )
