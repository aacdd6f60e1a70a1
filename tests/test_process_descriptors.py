"""Stream wiring value-type tests."""

from __future__ import annotations

import os
import subprocess
from contextlib import ExitStack
from pathlib import Path

import pytest

from runnel.lib.process import (
    STDERR,
    STDIN,
    STDOUT,
    FileDescriptor,
    ProcessSpawnFailed,
    ProcessStreams,
    StreamDescriptor,
    StreamType,
)


def test_file_descriptor_names_and_predicates() -> None:
    assert FileDescriptor.stdin() == STDIN
    assert STDOUT.name == "stdout"
    assert STDERR.is_stderr()
    assert FileDescriptor.custom(5).name == "fd5"
    assert not FileDescriptor.custom(5).is_standard()
    assert int(FileDescriptor.custom(7)) == 7


def test_file_descriptor_rejects_negative_numbers() -> None:
    with pytest.raises(ValueError, match=">= 0"):
        FileDescriptor(-1)


def test_stream_descriptor_variants() -> None:
    assert StreamDescriptor.pipe().is_pipe()
    assert StreamDescriptor.null().type is StreamType.NULL
    assert StreamDescriptor.inherit().is_inherit()

    handle = StreamDescriptor.from_handle(3)
    assert handle.is_handle()
    assert handle.handle == 3

    file_descriptor = StreamDescriptor.file("out.log", "w", append=True)
    assert file_descriptor.is_file()
    assert file_descriptor.path == Path("out.log")
    assert file_descriptor.append


def test_defaults_pipe_all_three_standard_streams() -> None:
    streams = ProcessStreams.defaults()

    assert streams.slots() == (STDIN, STDOUT, STDERR)
    assert streams.piped_slots() == (STDIN, STDOUT, STDERR)


def test_with_descriptor_is_copy_on_write() -> None:
    original = ProcessStreams.defaults()

    updated = original.with_stdout(StreamDescriptor.null())

    assert original.get(STDOUT) == StreamDescriptor.pipe("w")
    assert updated.get(STDOUT) == StreamDescriptor.null()
    assert updated.piped_slots() == (STDIN, STDERR)


def test_descriptor_table_is_read_only() -> None:
    streams = ProcessStreams.defaults()

    with pytest.raises(TypeError):
        streams.descriptors[STDOUT] = StreamDescriptor.null()  # type: ignore[index]


def test_pipe_to_splices_piped_stdout_into_target_stdin() -> None:
    source = ProcessStreams.defaults()
    target = ProcessStreams.null()

    spliced = source.pipe_to(target)

    assert spliced.get(STDIN) == source.get(STDOUT)
    assert spliced.get(STDOUT) == StreamDescriptor.null()


def test_pipe_to_without_piped_stdout_returns_target_unchanged() -> None:
    source = ProcessStreams.null()
    target = ProcessStreams.defaults()

    assert source.pipe_to(target) is target


def test_to_popen_arguments_renders_standard_slots(tmp_path: Path) -> None:
    log_path = tmp_path / "out.log"
    streams = (
        ProcessStreams.defaults()
        .with_stdin(StreamDescriptor.null())
        .with_stdout(StreamDescriptor.file(log_path, "w"))
        .with_stderr(StreamDescriptor.inherit())
    )

    with ExitStack() as stack:
        arguments = streams.to_popen_arguments(stack)
        assert arguments["stdin"] is subprocess.DEVNULL
        assert str(arguments["stdout"].name) == str(log_path)
        assert arguments["stdout"].mode == "wb"
        assert arguments["stderr"] is None
        assert "pass_fds" not in arguments
        opened = arguments["stdout"]

    assert opened.closed


def test_to_popen_arguments_opens_append_mode(tmp_path: Path) -> None:
    streams = ProcessStreams.of({STDOUT: StreamDescriptor.file(tmp_path / "x", "w", append=True)})

    with ExitStack() as stack:
        arguments = streams.to_popen_arguments(stack)
        assert arguments["stdout"].mode == "ab"


def test_missing_redirect_file_fails_at_spawn_time(tmp_path: Path) -> None:
    streams = ProcessStreams.of({STDIN: StreamDescriptor.file(tmp_path / "missing.txt")})

    with ExitStack() as stack, pytest.raises(ProcessSpawnFailed, match="missing.txt"):
        streams.to_popen_arguments(stack)


def test_custom_slot_requires_matching_handle() -> None:
    read_fd, write_fd = os.pipe()
    try:
        streams = ProcessStreams.of(
            {FileDescriptor.custom(write_fd): StreamDescriptor.from_handle(write_fd)}
        )
        with ExitStack() as stack:
            arguments = streams.to_popen_arguments(stack)
        assert arguments["pass_fds"] == (write_fd,)

        mismatched = ProcessStreams.of(
            {FileDescriptor.custom(write_fd + 100): StreamDescriptor.from_handle(write_fd)}
        )
        with ExitStack() as stack, pytest.raises(ProcessSpawnFailed, match="can only inherit"):
            mismatched.to_popen_arguments(stack)

        piped = ProcessStreams.of({FileDescriptor.custom(3): StreamDescriptor.pipe()})
        with ExitStack() as stack, pytest.raises(ProcessSpawnFailed, match="supports only"):
            piped.to_popen_arguments(stack)
    finally:
        os.close(read_fd)
        os.close(write_fd)
