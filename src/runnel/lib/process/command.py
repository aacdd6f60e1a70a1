"""High-level command execution with pipeline support."""

from __future__ import annotations

import os
import signal
from collections.abc import Iterable, Sequence
from typing import IO, Any, Final

import structlog

from runnel.lib.config.settings import RunnelConfig
from runnel.lib.process.builder import ProcessBuilder
from runnel.lib.process.descriptors import STDERR, STDOUT, ProcessStreams, StreamDescriptor
from runnel.lib.process.errors import (
    CommandFailed,
    PipelineSpawnFailed,
    ProcessError,
    ProcessTimeout,
)
from runnel.lib.process.handle import Process, collect_streams
from runnel.lib.process.status import Output
from runnel.lib.process.streams import StreamReader
from runnel.lib.process.timeout import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    Timeout,
    coerce_timeout,
    deadline_after,
    optional_deadline,
)

logger = structlog.get_logger(__name__)

_UNSET: Final[Any] = object()

type StageKey = tuple[int, str]


def _checked_timeout(timeout: Timeout | None) -> Timeout | None:
    """Reject unusable timeouts before anything is spawned."""

    if timeout is not None:
        coerce_timeout(timeout)
    return timeout


class Command:
    """Immutable command, optionally followed by downstream pipeline stages.

    `run()` and `output()` treat a non-zero exit of the final stage as
    failure and raise CommandFailed carrying the captured Output.
    """

    __slots__ = ("_builder", "_downstream", "_timeout")

    _builder: ProcessBuilder
    _timeout: Timeout | None
    _downstream: tuple[ProcessBuilder, ...]

    def __init__(
        self,
        name: str,
        *args: str | os.PathLike[str],
        timeout: Timeout | None = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self._builder = ProcessBuilder.command(name).args(args)
        self._timeout = _checked_timeout(timeout)
        self._downstream = ()

    @classmethod
    def from_builder(
        cls,
        builder: ProcessBuilder,
        *,
        timeout: Timeout | None = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        downstream: Sequence[ProcessBuilder] = (),
    ) -> Command:
        command = cls.__new__(cls)
        command._builder = builder
        command._timeout = _checked_timeout(timeout)
        command._downstream = tuple(downstream)
        return command

    def _evolve(
        self,
        *,
        builder: ProcessBuilder | None = None,
        timeout: Any = _UNSET,
        downstream: Sequence[ProcessBuilder] | None = None,
    ) -> Command:
        return Command.from_builder(
            builder or self._builder,
            timeout=self._timeout if timeout is _UNSET else timeout,
            downstream=self._downstream if downstream is None else downstream,
        )

    def __repr__(self) -> str:
        stages = " | ".join(stage.command_line() for stage in self.stages())
        return f"Command({stages!r}, timeout={self._timeout!r})"

    @property
    def builder(self) -> ProcessBuilder:
        return self._builder

    @property
    def timeout(self) -> Timeout | None:
        return self._timeout

    @property
    def downstream(self) -> tuple[ProcessBuilder, ...]:
        return self._downstream

    def stages(self) -> tuple[ProcessBuilder, ...]:
        return (self._builder, *self._downstream)

    def is_pipeline(self) -> bool:
        return bool(self._downstream)

    # -- configuration ----------------------------------------------------

    def arg(self, value: str | os.PathLike[str]) -> Command:
        return self._evolve(builder=self._builder.arg(value))

    def args(self, values: Iterable[str | os.PathLike[str]]) -> Command:
        return self._evolve(builder=self._builder.args(values))

    def at_path(self, path: str | os.PathLike[str]) -> Command:
        return self._evolve(builder=self._builder.working_directory(path))

    def env(self, key: str, value: str) -> Command:
        return self._evolve(builder=self._builder.env(key, value))

    def clear_env(self) -> Command:
        return self._evolve(builder=self._builder.clear_env())

    def inherit_env(self, inherit: bool = True) -> Command:
        return self._evolve(builder=self._builder.inherit_env(inherit))

    def new_session(self, enabled: bool = True) -> Command:
        return self._evolve(builder=self._builder.new_session(enabled))

    def with_timeout(self, timeout: Timeout | None) -> Command:
        return self._evolve(timeout=timeout)

    def with_config(self, config: RunnelConfig) -> Command:
        """Apply `config` to every stage and adopt its command timeout."""

        return Command.from_builder(
            self._builder.with_config(config),
            timeout=config.command_timeout_seconds,
            downstream=[stage.with_config(config) for stage in self._downstream],
        )

    def with_streams(self, streams: ProcessStreams) -> Command:
        return self._evolve(builder=self._builder.streams(streams))

    def from_file(self, path: str | os.PathLike[str]) -> Command:
        return self._evolve(builder=self._builder.stdin(StreamDescriptor.file(path, "r")))

    def to_file(self, path: str | os.PathLike[str], *, append: bool = False) -> Command:
        descriptor = StreamDescriptor.file(path, "w", append=append)
        return self._evolve(builder=self._builder.stdout(descriptor))

    def error_to_file(self, path: str | os.PathLike[str], *, append: bool = False) -> Command:
        descriptor = StreamDescriptor.file(path, "w", append=append)
        return self._evolve(builder=self._builder.stderr(descriptor))

    def quiet(self) -> Command:
        builder = self._builder.stdout(StreamDescriptor.null()).stderr(StreamDescriptor.null())
        return self._evolve(builder=builder)

    def pipe(self, other: Command | ProcessBuilder) -> Command:
        """Append `other` (and any stages it already pipes into) downstream."""

        added = other.stages() if isinstance(other, Command) else (other,)
        return self._evolve(downstream=(*self._downstream, *added))

    # -- execution --------------------------------------------------------

    def spawn(self) -> Process:
        if self._downstream:
            raise PipelineSpawnFailed()
        return self._builder.spawn()

    def run(self) -> Output:
        output = self._run_pipeline() if self._downstream else self._run_single()
        if output.is_failure():
            raise CommandFailed(output)
        return output

    def output(self) -> str:
        """Run and return the final stage's stdout as text."""

        return self.run().stdout_text

    def _run_single(self) -> Output:
        with self._builder.spawn() as process:
            return process.output(self._timeout)

    def _spawn_stages(self) -> list[Process]:
        builders = self.stages()
        last_index = len(builders) - 1
        processes: list[Process] = []
        upstream_stdout: IO[bytes] | None = None
        try:
            for index, builder in enumerate(builders):
                if upstream_stdout is not None:
                    builder = builder.stdin(StreamDescriptor.from_handle(upstream_stdout))
                if index < last_index:
                    stdout = builder.process_streams.get(STDOUT)
                    # Respect explicit redirects such as to_file().
                    if stdout is None or stdout.is_pipe():
                        builder = builder.stdout(StreamDescriptor.pipe("w"))

                try:
                    process = builder.spawn()
                finally:
                    # The child holds its own copy; the parent's read end must go
                    # so the writer sees SIGPIPE once the reader exits.
                    if upstream_stdout is not None:
                        upstream_stdout.close()
                        upstream_stdout = None

                processes.append(process)
                logger.debug(
                    "Spawned pipeline stage.",
                    stage=index,
                    pid=process.pid(),
                    command=process.command,
                )
                if index < last_index:
                    upstream_stdout = process.detach_pipe(STDOUT)
        except ProcessError:
            self._abort(processes)
            raise

        # The parent never feeds a pipeline; stages whose stdin was not spliced
        # would otherwise wait on it forever.
        for process in processes:
            process.close_stdin()
        return processes

    def _run_pipeline(self) -> Output:
        config = self._builder.config
        processes = self._spawn_stages()
        last = processes[-1]
        upstream = processes[:-1]

        readers: dict[StageKey, StreamReader] = {}
        for index, process in enumerate(processes):
            slots = (STDOUT, STDERR) if process is last else (STDERR,)
            for slot in slots:
                if process.pipe(slot) is not None:
                    readers[(index, slot.name)] = process.reader(slot)

        deadline = optional_deadline(self._timeout)
        try:
            captured = collect_streams(
                readers,
                is_finished=lambda: not last.is_running(),
                deadline=deadline,
                tick_seconds=config.select_tick_seconds,
                max_drain_bytes=config.max_drain_bytes,
            )
        except ProcessTimeout:
            logger.warning(
                "Pipeline exceeded its deadline; killing every stage.",
                stages=len(processes),
                timeout_seconds=deadline.timeout_seconds if deadline else None,
            )
            self._abort(processes)
            raise
        except ProcessError:
            self._abort(processes)
            raise

        try:
            self._settle_upstream(upstream, config)
            upstream_outputs = tuple(
                Output.of(b"", captured.get((index, STDERR.name), b""), process.status())
                for index, process in enumerate(upstream)
            )
            last_index = len(processes) - 1
            return Output(
                stdout=captured.get((last_index, STDOUT.name), b""),
                stderr=captured.get((last_index, STDERR.name), b""),
                status=last.status(),
                upstream=upstream_outputs,
            )
        finally:
            for process in processes:
                process.close()

    def _settle_upstream(self, upstream: Sequence[Process], config: RunnelConfig) -> None:
        """Give upstream stages the kill grace to exit, then kill the stragglers."""

        grace = deadline_after(config.kill_grace_seconds)
        for process in upstream:
            try:
                process.wait(grace.remaining())
            except ProcessTimeout:
                logger.info("Killing upstream pipeline stage.", command=process.command)
                process.kill(signal.SIGKILL, group=process.started_new_session)
                self._reap(process, config)

    @staticmethod
    def _reap(process: Process, config: RunnelConfig) -> None:
        try:
            process.wait(config.kill_grace_seconds)
        except ProcessTimeout:
            logger.warning("Killed pipeline stage did not exit.", command=process.command)

    def _abort(self, processes: Sequence[Process]) -> None:
        """Kill every started stage that is still running and close all of them."""

        config = self._builder.config
        for process in processes:
            if process.closed:
                continue
            if process.is_running():
                process.kill(signal.SIGKILL, group=process.started_new_session)
                self._reap(process, config)
            process.close()
        if processes:
            logger.debug("Cleaned up pipeline stages.", stages=len(processes))
