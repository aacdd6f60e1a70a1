"""Process execution primitives."""

from runnel.lib.process.builder import ProcessBuilder
from runnel.lib.process.command import Command
from runnel.lib.process.descriptors import (
    STDERR,
    STDIN,
    STDOUT,
    FileDescriptor,
    ProcessStreams,
    StreamDescriptor,
    StreamType,
)
from runnel.lib.process.errors import (
    CommandFailed,
    DeadlineOverflow,
    InvalidCommand,
    InvalidPid,
    InvalidWorkingDirectory,
    PipelineSpawnFailed,
    ProcessClosed,
    ProcessError,
    ProcessSignalFailed,
    ProcessSpawnFailed,
    ProcessTimeout,
    StreamFlushFailed,
    StreamReadFailed,
    StreamWriteFailed,
)
from runnel.lib.process.handle import Process
from runnel.lib.process.status import Output, Status
from runnel.lib.process.streams import StreamReader, StreamWriter
from runnel.lib.process.timeout import Deadline, deadline_after

__all__ = [
    "STDERR",
    "STDIN",
    "STDOUT",
    "Command",
    "CommandFailed",
    "Deadline",
    "DeadlineOverflow",
    "FileDescriptor",
    "InvalidCommand",
    "InvalidPid",
    "InvalidWorkingDirectory",
    "Output",
    "PipelineSpawnFailed",
    "Process",
    "ProcessBuilder",
    "ProcessClosed",
    "ProcessError",
    "ProcessSignalFailed",
    "ProcessSpawnFailed",
    "ProcessStreams",
    "ProcessTimeout",
    "Status",
    "StreamDescriptor",
    "StreamFlushFailed",
    "StreamReadFailed",
    "StreamReader",
    "StreamType",
    "StreamWriteFailed",
    "StreamWriter",
    "deadline_after",
]
