"""Process execution error taxonomy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from runnel.lib.process.status import Output


class ProcessError(Exception):
    """Base class for every failure raised by the process subsystem."""


class InvalidCommand(ProcessError, ValueError):
    """Raised before spawning when the command is empty or malformed."""

    def __init__(self, message: str = "Command cannot be empty") -> None:
        super().__init__(message)


class InvalidWorkingDirectory(ProcessError, ValueError):
    """Raised before spawning when the working directory is unusable."""

    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"Working directory does not exist or is not a directory: {path}")


class ProcessSpawnFailed(ProcessError):
    """Raised when the OS refuses to start the child process."""


class ProcessTimeout(ProcessError, TimeoutError):
    """Raised when a wait, read, or collection deadline passes."""

    def __init__(self, timeout_seconds: float | None, action: str = "Process execution") -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is None:
            super().__init__(f"{action} timed out")
        else:
            super().__init__(f"{action} timed out after {timeout_seconds:.3f}s")


class DeadlineOverflow(ProcessError, OverflowError):
    """Raised when a timeout cannot be turned into a representable deadline."""


class ProcessSignalFailed(ProcessError):
    """Raised when a signal cannot be delivered to a running process."""


class StreamReadFailed(ProcessError):
    """Raised when reading from a child stream fails."""


class StreamWriteFailed(ProcessError):
    """Raised when writing to a child stream fails."""


class StreamFlushFailed(ProcessError):
    """Raised when flushing a child stream fails."""


class InvalidPid(ProcessError):
    """Raised when the OS reports no usable pid for the process."""


class ProcessClosed(ProcessError, ValueError):
    """Raised when a closed process handle is used for status or IO."""

    def __init__(self, message: str = "Process handle is closed") -> None:
        super().__init__(message)


class PipelineSpawnFailed(ProcessError):
    """Raised when a piped command is asked for a single live handle."""

    def __init__(
        self,
        message: str = "Cannot spawn a pipeline command; use run() or output() instead",
    ) -> None:
        super().__init__(message)


class CommandFailed(ProcessError):
    """Raised when a command ran to completion with a non-zero exit code."""

    def __init__(self, output: Output) -> None:
        self.output = output
        detail = output.stderr_text.strip()
        message = f"Command exited with code {output.exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
