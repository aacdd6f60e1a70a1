"""Declarative stream wiring for child file-descriptor slots.

Nothing in this module touches the OS until `ProcessStreams.to_popen_arguments`
is called by `ProcessBuilder.spawn`; every value here is immutable and safe to
share between threads.
"""

from __future__ import annotations

import subprocess
from collections.abc import Mapping
from contextlib import ExitStack
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import IO, Any

from runnel.lib.process.errors import ProcessSpawnFailed

StreamHandle = IO[Any] | int

_STANDARD_NAMES = {0: "stdin", 1: "stdout", 2: "stderr"}


class StreamType(StrEnum):
    PIPE = "pipe"
    FILE = "file"
    HANDLE = "handle"
    INHERIT = "inherit"
    NULL = "null"


@dataclass(frozen=True, slots=True, order=True)
class FileDescriptor:
    """Logical slot identity of one child stream, independent of OS numbering."""

    number: int

    def __post_init__(self) -> None:
        if isinstance(self.number, bool) or self.number < 0:
            raise ValueError(f"File descriptor number must be >= 0, got {self.number!r}")

    @classmethod
    def stdin(cls) -> FileDescriptor:
        return cls(0)

    @classmethod
    def stdout(cls) -> FileDescriptor:
        return cls(1)

    @classmethod
    def stderr(cls) -> FileDescriptor:
        return cls(2)

    @classmethod
    def custom(cls, number: int) -> FileDescriptor:
        return cls(number)

    @property
    def name(self) -> str:
        return _STANDARD_NAMES.get(self.number, f"fd{self.number}")

    def is_stdin(self) -> bool:
        return self.number == 0

    def is_stdout(self) -> bool:
        return self.number == 1

    def is_stderr(self) -> bool:
        return self.number == 2

    def is_standard(self) -> bool:
        return self.number in _STANDARD_NAMES

    def __int__(self) -> int:
        return self.number


STDIN = FileDescriptor.stdin()
STDOUT = FileDescriptor.stdout()
STDERR = FileDescriptor.stderr()


def _binary_file_mode(mode: str, *, append: bool) -> str:
    normalized = mode.replace("b", "").replace("t", "") or "r"
    if append and "a" not in normalized:
        normalized = normalized.replace("w", "a") if "w" in normalized else "a"
    return f"{normalized}b"


def _handle_fileno(handle: StreamHandle) -> int:
    if isinstance(handle, int):
        return handle
    return handle.fileno()


@dataclass(frozen=True, slots=True)
class StreamDescriptor:
    """Connection policy for one child stream slot."""

    type: StreamType
    mode: str | None = None
    path: Path | None = None
    handle: StreamHandle | None = None
    append: bool = False

    @classmethod
    def pipe(cls, mode: str = "r") -> StreamDescriptor:
        """Anonymous pipe whose parent end is owned by the spawned Process."""

        return cls(type=StreamType.PIPE, mode=mode)

    @classmethod
    def file(cls, path: str | Path, mode: str = "r", *, append: bool = False) -> StreamDescriptor:
        """Redirect the slot to or from a named file opened at spawn time."""

        return cls(type=StreamType.FILE, mode=mode, path=Path(path), append=append)

    @classmethod
    def from_handle(cls, handle: StreamHandle) -> StreamDescriptor:
        """Bind the slot to an already open file object or raw descriptor.

        The caller keeps ownership of the handle; spawning never closes it.
        """

        return cls(type=StreamType.HANDLE, handle=handle)

    @classmethod
    def inherit(cls) -> StreamDescriptor:
        return cls(type=StreamType.INHERIT)

    @classmethod
    def null(cls) -> StreamDescriptor:
        return cls(type=StreamType.NULL)

    def is_pipe(self) -> bool:
        return self.type is StreamType.PIPE

    def is_file(self) -> bool:
        return self.type is StreamType.FILE

    def is_handle(self) -> bool:
        return self.type is StreamType.HANDLE

    def is_inherit(self) -> bool:
        return self.type is StreamType.INHERIT

    def is_null(self) -> bool:
        return self.type is StreamType.NULL

    def popen_target(self, stack: ExitStack) -> Any:
        """Render into the value `subprocess.Popen` expects for a standard slot.

        FILE targets are opened on `stack`, which the caller closes once the
        child holds its own copy of the descriptor.
        """

        match self.type:
            case StreamType.PIPE:
                return subprocess.PIPE
            case StreamType.FILE:
                if self.path is None:
                    raise ProcessSpawnFailed("File stream descriptor has no path")
                file_mode = _binary_file_mode(self.mode or "r", append=self.append)
                try:
                    return stack.enter_context(self.path.open(file_mode))
                except OSError as error:
                    raise ProcessSpawnFailed(
                        f"Failed to open '{self.path}' with mode '{file_mode}': {error}"
                    ) from error
            case StreamType.HANDLE:
                return self.handle
            case StreamType.INHERIT:
                return None
            case StreamType.NULL:
                return subprocess.DEVNULL


def _freeze(
    descriptors: Mapping[FileDescriptor, StreamDescriptor],
) -> Mapping[FileDescriptor, StreamDescriptor]:
    return MappingProxyType(dict(sorted(descriptors.items())))


@dataclass(frozen=True, slots=True)
class ProcessStreams:
    """Immutable slot → StreamDescriptor table for one child process."""

    descriptors: Mapping[FileDescriptor, StreamDescriptor]

    @classmethod
    def of(cls, descriptors: Mapping[FileDescriptor, StreamDescriptor]) -> ProcessStreams:
        return cls(_freeze(descriptors))

    @classmethod
    def defaults(cls) -> ProcessStreams:
        """Pipe all three standard streams."""

        return cls.of(
            {
                STDIN: StreamDescriptor.pipe("r"),
                STDOUT: StreamDescriptor.pipe("w"),
                STDERR: StreamDescriptor.pipe("w"),
            }
        )

    @classmethod
    def inherit(cls) -> ProcessStreams:
        return cls.of(
            {
                STDIN: StreamDescriptor.inherit(),
                STDOUT: StreamDescriptor.inherit(),
                STDERR: StreamDescriptor.inherit(),
            }
        )

    @classmethod
    def null(cls) -> ProcessStreams:
        return cls.of(
            {
                STDIN: StreamDescriptor.null(),
                STDOUT: StreamDescriptor.null(),
                STDERR: StreamDescriptor.null(),
            }
        )

    def with_descriptor(
        self,
        slot: FileDescriptor,
        descriptor: StreamDescriptor,
    ) -> ProcessStreams:
        updated = dict(self.descriptors)
        updated[slot] = descriptor
        return ProcessStreams.of(updated)

    def with_stdin(self, descriptor: StreamDescriptor) -> ProcessStreams:
        return self.with_descriptor(STDIN, descriptor)

    def with_stdout(self, descriptor: StreamDescriptor) -> ProcessStreams:
        return self.with_descriptor(STDOUT, descriptor)

    def with_stderr(self, descriptor: StreamDescriptor) -> ProcessStreams:
        return self.with_descriptor(STDERR, descriptor)

    def get(self, slot: FileDescriptor) -> StreamDescriptor | None:
        return self.descriptors.get(slot)

    def slots(self) -> tuple[FileDescriptor, ...]:
        return tuple(self.descriptors)

    def piped_slots(self) -> tuple[FileDescriptor, ...]:
        return tuple(slot for slot, descriptor in self.descriptors.items() if descriptor.is_pipe())

    def pipe_to(self, target: ProcessStreams) -> ProcessStreams:
        """Splice this table's piped stdout into `target`'s stdin.

        When stdout is not a pipe there is nothing to splice and `target` is
        returned unchanged.
        """

        stdout = self.get(STDOUT)
        if stdout is None or not stdout.is_pipe():
            return target
        return target.with_stdin(stdout)

    def to_popen_arguments(self, stack: ExitStack) -> dict[str, Any]:
        """Render the table into `subprocess.Popen` keyword arguments.

        Slots missing from the table inherit the parent's stream. Custom slots
        can only carry a HANDLE whose OS descriptor number equals the slot,
        because an argv-array spawn has no way to renumber extra descriptors.
        """

        arguments: dict[str, Any] = {"stdin": None, "stdout": None, "stderr": None}
        pass_fds: list[int] = []
        for slot, descriptor in self.descriptors.items():
            if slot.is_standard():
                arguments[slot.name] = descriptor.popen_target(stack)
                continue

            if not descriptor.is_handle() or descriptor.handle is None:
                raise ProcessSpawnFailed(
                    f"Custom slot {slot.number} supports only an inherited handle, "
                    f"got {descriptor.type.value}"
                )
            fileno = _handle_fileno(descriptor.handle)
            if fileno != slot.number:
                raise ProcessSpawnFailed(
                    f"Custom slot {slot.number} can only inherit a handle already open "
                    f"at descriptor {slot.number}, got descriptor {fileno}"
                )
            pass_fds.append(fileno)

        if pass_fds:
            arguments["pass_fds"] = tuple(pass_fds)
        return arguments
