"""Point-in-time process status snapshots and captured run output."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from runnel.lib.process.handle import Process


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class Status:
    """OS-reported state of one spawned process at the moment it was taken.

    `exit_code` is None while the process runs. A child terminated by signal N
    reports `128 + N`, with `term_signal` holding N.
    """

    command: str
    pid: int
    running: bool
    signaled: bool = False
    stopped: bool = False
    exit_code: int | None = None
    term_signal: int = 0
    stop_signal: int = 0

    @classmethod
    def of(cls, process: Process) -> Status:
        return process.status()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Status:
        exit_code = data.get("exit_code")
        return cls(
            command=str(data["command"]),
            pid=int(data["pid"]),
            running=bool(data["running"]),
            signaled=bool(data.get("signaled", False)),
            stopped=bool(data.get("stopped", False)),
            exit_code=None if exit_code is None else int(exit_code),
            term_signal=int(data.get("term_signal", 0)),
            stop_signal=int(data.get("stop_signal", 0)),
        )

    def is_running(self) -> bool:
        return self.running

    def is_signaled(self) -> bool:
        return self.signaled

    def is_stopped(self) -> bool:
        return self.stopped

    def is_success(self) -> bool:
        return self.exit_code == 0

    def is_failure(self) -> bool:
        return not self.is_success()


@dataclass(frozen=True, slots=True)
class Output:
    """Captured stdout/stderr plus the terminal status of a finished run.

    For pipelines the streams belong to the last stage; `upstream` keeps each
    earlier stage's captured stderr and status for diagnostics.
    """

    stdout: bytes
    stderr: bytes
    status: Status
    upstream: tuple[Output, ...] = ()

    @classmethod
    def of(cls, stdout: bytes, stderr: bytes, status: Status) -> Output:
        return cls(stdout=stdout, stderr=stderr, status=status)

    @property
    def exit_code(self) -> int | None:
        return self.status.exit_code

    @property
    def stdout_text(self) -> str:
        return _decode(self.stdout)

    @property
    def stderr_text(self) -> str:
        return _decode(self.stderr)

    @property
    def upstream_exit_codes(self) -> tuple[int | None, ...]:
        return tuple(stage.exit_code for stage in self.upstream)

    def is_success(self) -> bool:
        return self.status.is_success()

    def is_failure(self) -> bool:
        return self.status.is_failure()

    def text(self) -> str:
        """Return the most relevant stream: stdout on success, stderr otherwise."""

        return self.stdout_text if self.is_success() else self.stderr_text

    def __str__(self) -> str:
        return self.text()
