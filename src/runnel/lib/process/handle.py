"""Live process handles and the deadline-bounded output collector."""

from __future__ import annotations

import os
import selectors
import signal
import subprocess
import time
from collections.abc import Callable, Hashable, Mapping
from typing import IO, TYPE_CHECKING, Final, TypeVar

import structlog

from runnel.lib.config.settings import RunnelConfig
from runnel.lib.process.descriptors import STDERR, STDIN, STDOUT, FileDescriptor
from runnel.lib.process.errors import (
    InvalidPid,
    ProcessClosed,
    ProcessSignalFailed,
    ProcessTimeout,
    StreamReadFailed,
    StreamWriteFailed,
)
from runnel.lib.process.process_groups import is_group_leader, signal_process_group
from runnel.lib.process.signals import (
    SignalLike,
    exit_code_from_returncode,
    resolve_signal,
    signal_name,
)
from runnel.lib.process.status import Output, Status
from runnel.lib.process.streams import ReadinessSelector, StreamReader, StreamWriter
from runnel.lib.process.timeout import Deadline, Timeout, deadline_after, optional_deadline

if TYPE_CHECKING:
    from types import TracebackType

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)

_HAS_WAITID: Final[bool] = hasattr(os, "waitid")
_STOPPED_CODES: Final[frozenset[int]] = frozenset(
    getattr(os, name) for name in ("CLD_STOPPED", "CLD_TRAPPED") if hasattr(os, name)
)


def _drain(reader: StreamReader, into: bytearray, limit: int) -> None:
    # A forked grandchild may keep the pipe open and write forever, so the
    # post-exit drain stops after `limit` bytes.
    size = 0
    while size < limit:
        chunk = reader.read_available()
        if not chunk:
            return
        into.extend(chunk)
        size += len(chunk)


def collect_streams(
    readers: Mapping[K, StreamReader],
    *,
    is_finished: Callable[[], bool],
    deadline: Deadline | None,
    tick_seconds: float,
    max_drain_bytes: int,
) -> dict[K, bytes]:
    """Multiplex reads over `readers` until `is_finished()` and nothing is ready.

    Every wait is bounded by `tick_seconds` and never extends past `deadline`;
    expiry raises ProcessTimeout and leaves killing to the caller.
    """

    accumulators: dict[K, bytearray] = {key: bytearray() for key in readers}
    with ReadinessSelector() as selector:
        for key, reader in readers.items():
            accumulators[key].extend(reader.read_available())
            if not reader.is_eof():
                selector.register(reader.fileno(), selectors.EVENT_READ, key)

        while True:
            if deadline is not None and deadline.expired():
                raise ProcessTimeout(deadline.timeout_seconds)

            interval = tick_seconds if deadline is None else deadline.clamp(tick_seconds)
            if selector.get_map():
                ready = selector.select(interval)
            elif is_finished():
                break
            else:
                # Every stream hit EOF but the process is still alive.
                time.sleep(interval)
                continue

            for selector_key, _events in ready:
                key: K = selector_key.data
                reader = readers[key]
                accumulators[key].extend(reader.read_available())
                if reader.is_eof():
                    selector.unregister(selector_key.fileobj)

            if not ready and is_finished():
                for key, reader in readers.items():
                    _drain(reader, accumulators[key], max_drain_bytes)
                break

    return {key: bytes(buffer) for key, buffer in accumulators.items()}


class Process:
    """Mutable handle to one live or finished OS process.

    Owns the native handle and the parent ends of every piped slot. Use it as
    a context manager (or call `close()`) to release both; `close()` is
    idempotent and closes pipes before releasing the handle.
    """

    def __init__(
        self,
        popen: subprocess.Popen[bytes],
        *,
        command: str,
        new_session: bool = False,
        config: RunnelConfig | None = None,
    ) -> None:
        self._popen = popen
        self._command = command
        self._new_session = new_session
        self._config = config or RunnelConfig()
        self._pipes: dict[FileDescriptor, IO[bytes]] = {}
        self._readers: dict[FileDescriptor, StreamReader] = {}
        self._started_at = time.monotonic()
        self._closed = False

        for slot, stream in ((STDIN, popen.stdin), (STDOUT, popen.stdout), (STDERR, popen.stderr)):
            if stream is not None:
                self._pipes[slot] = stream

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Process pid={self._popen.pid} command={self._command!r} {state}>"

    def __enter__(self) -> Process:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def command(self) -> str:
        return self._command

    @property
    def started_at(self) -> float:
        """Monotonic instant recorded right after the spawn succeeded."""

        return self._started_at

    @property
    def closed(self) -> bool:
        return self._closed

    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def _require_open(self) -> subprocess.Popen[bytes]:
        if self._closed:
            raise ProcessClosed()
        return self._popen

    # -- status -----------------------------------------------------------

    def _peek_stop_signal(self) -> int | None:
        """Check for a state change without reaping a stopped child.

        An exited child is reaped through Popen so its return code is recorded;
        a stopped child yields its stop signal.
        """

        popen = self._popen
        if not _HAS_WAITID:
            popen.poll()
            return None
        try:
            info = os.waitid(
                os.P_PID,
                popen.pid,
                os.WEXITED | os.WSTOPPED | os.WNOHANG | os.WNOWAIT,
            )
        except ChildProcessError:
            popen.poll()
            return None
        if info is None:
            return None
        if info.si_code in _STOPPED_CODES:
            return info.si_status
        popen.poll()
        return None

    def status(self) -> Status:
        """Take a fresh status snapshot from the OS; never cached."""

        popen = self._require_open()
        if popen.returncode is None:
            stop_signal = self._peek_stop_signal()
            if stop_signal is not None:
                return Status(
                    command=self._command,
                    pid=popen.pid,
                    running=True,
                    stopped=True,
                    stop_signal=stop_signal,
                )

        returncode = popen.returncode
        if returncode is None:
            return Status(command=self._command, pid=popen.pid, running=True)

        signaled = returncode < 0
        return Status(
            command=self._command,
            pid=popen.pid,
            running=False,
            signaled=signaled,
            exit_code=exit_code_from_returncode(returncode),
            term_signal=-returncode if signaled else 0,
        )

    def is_running(self) -> bool:
        return self.status().running

    def pid(self) -> int:
        pid = self.status().pid
        if pid <= 0:
            raise InvalidPid(f"Process has no valid pid (got {pid})")
        return pid

    # -- lifecycle --------------------------------------------------------

    def wait(
        self,
        timeout: Timeout | None = None,
        *,
        poll_interval: float | None = None,
    ) -> Status:
        """Wait for the process to exit and return its final status.

        Without a timeout this blocks in the native child wait. With a timeout
        the status is polled every `poll_interval` seconds and ProcessTimeout is
        raised once the deadline passes; the process is left running.
        """

        popen = self._require_open()
        if timeout is None:
            popen.wait()
            return self.status()

        deadline = deadline_after(timeout)
        interval = poll_interval or self._config.wait_poll_interval_seconds
        while self.is_running():
            if deadline.expired():
                raise ProcessTimeout(deadline.timeout_seconds, "Process wait")
            time.sleep(deadline.clamp(interval))
        return self.status()

    @property
    def started_new_session(self) -> bool:
        return self._new_session

    def kill(self, sig: SignalLike = signal.SIGTERM, *, group: bool = False) -> None:
        """Deliver `sig`; a process that is no longer running is left alone.

        With `group=True` the whole process group is signalled, but only when
        the child leads it. A child sharing the caller's group is signalled
        on its own.
        """

        signum = resolve_signal(sig)
        if not self.is_running():
            return

        pid = self._popen.pid
        try:
            if group and is_group_leader(pid):
                signal_process_group(pid, signum)
            else:
                if group:
                    logger.debug("Process does not lead its group; signalling it alone.", pid=pid)
                    group = False
                os.kill(pid, signum)
        except ProcessLookupError:
            # Exited between the running check and delivery.
            return
        except OSError as error:
            raise ProcessSignalFailed(
                f"Failed to send {signal_name(signum)} to pid {pid}: {error}"
            ) from error
        logger.debug("Sent signal to process.", pid=pid, signal=signal_name(signum), group=group)

    def _kill_after_timeout(self, timeout_seconds: float | None) -> None:
        logger.warning(
            "Process exceeded its deadline; killing.",
            pid=self._popen.pid,
            command=self._command,
            timeout_seconds=timeout_seconds,
        )
        self.kill(signal.SIGKILL, group=self._new_session)
        try:
            self._popen.wait(timeout=self._config.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Killed process did not exit within grace period.", pid=self._popen.pid)

    # -- pipe endpoints ---------------------------------------------------

    def pipe(self, slot: FileDescriptor) -> IO[bytes] | None:
        self._require_open()
        return self._pipes.get(slot)

    def stdin(self) -> IO[bytes] | None:
        return self.pipe(STDIN)

    def stdout(self) -> IO[bytes] | None:
        return self.pipe(STDOUT)

    def stderr(self) -> IO[bytes] | None:
        return self.pipe(STDERR)

    def piped_slots(self) -> tuple[FileDescriptor, ...]:
        return tuple(self._pipes)

    def detach_pipe(self, slot: FileDescriptor) -> IO[bytes] | None:
        """Remove an endpoint from this handle and hand ownership to the caller."""

        self._require_open()
        self._readers.pop(slot, None)
        return self._pipes.pop(slot, None)

    def close_pipe(self, slot: FileDescriptor) -> None:
        """Close one endpoint; closing an absent or closed slot is a no-op."""

        reader = self._readers.pop(slot, None)
        stream = self._pipes.pop(slot, None)
        try:
            if reader is not None:
                reader.close()
            elif stream is not None:
                stream.close()
        except BrokenPipeError:
            # Flushing stdin of a child that already exited.
            pass

    def close_stdin(self) -> None:
        self.close_pipe(STDIN)

    def reader(self, slot: FileDescriptor) -> StreamReader:
        self._require_open()
        existing = self._readers.get(slot)
        if existing is not None:
            return existing
        stream = self._pipes.get(slot)
        if stream is None:
            raise StreamReadFailed(f"Process {slot.name} is not piped")
        created = StreamReader(
            stream,
            self._config.read_buffer_size,
            tick_seconds=self._config.select_tick_seconds,
        )
        self._readers[slot] = created
        return created

    def stdout_reader(self) -> StreamReader:
        return self.reader(STDOUT)

    def stderr_reader(self) -> StreamReader:
        return self.reader(STDERR)

    def stdin_writer(self) -> StreamWriter:
        stdin = self.stdin()
        if stdin is None:
            raise StreamWriteFailed("Process stdin is not piped")
        return StreamWriter.with_auto_flush(stdin).with_line_ending(self._config.line_ending)

    def write_stdin(self, data: str | bytes) -> int:
        return self.stdin_writer().write(data)

    def _read_ready(self, slot: FileDescriptor) -> bytes:
        reader = self.reader(slot)
        chunks: list[bytes] = []
        while chunk := reader.read_available():
            chunks.append(chunk)
        return b"".join(chunks)

    def read_stdout(self) -> bytes:
        """Return everything stdout has ready right now without blocking."""

        return self._read_ready(STDOUT)

    def read_stderr(self) -> bytes:
        return self._read_ready(STDERR)

    # -- collection -------------------------------------------------------

    def output(self, timeout: Timeout | None = None) -> Output:
        """Collect stdout/stderr until the process exits or the deadline passes.

        Stdin is closed first. On timeout the process is killed and
        ProcessTimeout raised. Any exit code is returned as a completed Output.
        """

        self._require_open()
        self.close_stdin()
        deadline = optional_deadline(timeout)
        readers = {slot: self.reader(slot) for slot in (STDOUT, STDERR) if slot in self._pipes}

        try:
            captured = collect_streams(
                readers,
                is_finished=lambda: not self.is_running(),
                deadline=deadline,
                tick_seconds=self._config.select_tick_seconds,
                max_drain_bytes=self._config.max_drain_bytes,
            )
        except ProcessTimeout:
            self._kill_after_timeout(deadline.timeout_seconds if deadline else None)
            raise
        finally:
            for slot in readers:
                self.close_pipe(slot)

        return Output.of(captured.get(STDOUT, b""), captured.get(STDERR, b""), self.status())

    def close(self) -> None:
        """Close every pipe endpoint, then release the native handle."""

        if self._closed:
            return
        for slot in tuple(self._pipes):
            self.close_pipe(slot)
        # Reap an exited child so no zombie outlives the handle.
        self._popen.poll()
        self._closed = True
        logger.debug("Closed process handle.", pid=self._popen.pid, command=self._command)
