"""Non-blocking readers and flush-controlled writers over child stream handles."""

from __future__ import annotations

import os
import selectors
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import IO, Any

from runnel.lib.config.settings import RunnelConfig
from runnel.lib.process.errors import (
    ProcessTimeout,
    StreamFlushFailed,
    StreamReadFailed,
    StreamWriteFailed,
)
from runnel.lib.process.timeout import DEFAULT_SELECT_TICK_SECONDS, Timeout, deadline_after

_DEFAULT_CONFIG = RunnelConfig()
DEFAULT_READ_BUFFER_SIZE = _DEFAULT_CONFIG.read_buffer_size
DEFAULT_WRITE_BUFFER_SIZE = _DEFAULT_CONFIG.write_buffer_size
DEFAULT_LINE_ENDING = _DEFAULT_CONFIG.line_ending.encode("utf-8")

# poll(2) reports regular files as always readable where epoll refuses them.
ReadinessSelector: type[selectors.BaseSelector] = getattr(
    selectors, "PollSelector", selectors.DefaultSelector
)


def to_bytes(data: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class StreamReader:
    """Non-blocking reader over one open stream handle.

    Bytes read past a `read_until` delimiter, or collected before a deadline
    expired, are kept and returned first by the next read.
    """

    def __init__(
        self,
        stream: IO[bytes] | int,
        buffer_size: int = DEFAULT_READ_BUFFER_SIZE,
        *,
        tick_seconds: float = DEFAULT_SELECT_TICK_SECONDS,
    ) -> None:
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be > 0, got {buffer_size!r}")
        self._stream = stream
        self._fd = stream if isinstance(stream, int) else stream.fileno()
        self._buffer_size = buffer_size
        self._tick_seconds = tick_seconds
        self._pending = bytearray()
        self._eof = False
        self._closed = False
        self._nonblocking = False

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self._fd

    def is_eof(self) -> bool:
        return self._eof and not self._pending

    def _take_pending(self) -> bytearray:
        pending = self._pending
        self._pending = bytearray()
        return pending

    def _read_chunk(self) -> bytes | None:
        """Issue one non-blocking read.

        Returns data, b"" once end-of-stream is reached, or None when the
        stream has nothing ready.
        """

        if self._closed:
            raise StreamReadFailed("Cannot read from a closed stream")
        if self._eof:
            return b""
        if not self._nonblocking:
            try:
                os.set_blocking(self._fd, False)
            except OSError as error:
                raise StreamReadFailed(f"Failed to make stream non-blocking: {error}") from error
            self._nonblocking = True

        try:
            data = os.read(self._fd, self._buffer_size)
        except BlockingIOError:
            return None
        except OSError as error:
            raise StreamReadFailed(f"Failed to read from stream: {error}") from error

        if not data:
            self._eof = True
        return data

    def read_available(self) -> bytes:
        """Return whatever is buffered right now, possibly empty, without blocking."""

        if self._pending:
            return bytes(self._take_pending())
        return self._read_chunk() or b""

    def read_all(self, timeout: Timeout) -> bytes:
        """Read until end-of-stream, raising ProcessTimeout at the deadline."""

        deadline = deadline_after(timeout)
        result = self._take_pending()
        with ReadinessSelector() as selector:
            selector.register(self._fd, selectors.EVENT_READ)
            while not self._eof:
                if deadline.expired():
                    self._pending = result
                    raise ProcessTimeout(deadline.timeout_seconds, "Stream read")
                if not selector.select(deadline.clamp(self._tick_seconds)):
                    continue
                chunk = self._read_chunk()
                if chunk:
                    result.extend(chunk)
        return bytes(result)

    def read_until(self, delimiter: str | bytes, timeout: Timeout) -> bytes:
        """Read up to and including `delimiter`, end-of-stream, or the deadline."""

        marker = to_bytes(delimiter)
        if not marker:
            raise ValueError("delimiter must not be empty")

        deadline = deadline_after(timeout)
        buffer = self._take_pending()
        search_from = 0
        with ReadinessSelector() as selector:
            selector.register(self._fd, selectors.EVENT_READ)
            while True:
                index = buffer.find(marker, search_from)
                if index >= 0:
                    end = index + len(marker)
                    self._pending = buffer[end:]
                    return bytes(buffer[:end])
                search_from = max(len(buffer) - len(marker) + 1, 0)

                if self._eof:
                    return bytes(buffer)
                if deadline.expired():
                    self._pending = buffer
                    raise ProcessTimeout(deadline.timeout_seconds, "Stream read")
                if not selector.select(deadline.clamp(self._tick_seconds)):
                    continue
                chunk = self._read_chunk()
                if chunk:
                    buffer.extend(chunk)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if isinstance(self._stream, int):
            os.close(self._stream)
        else:
            self._stream.close()


@dataclass(frozen=True, slots=True)
class StreamWriter:
    """Writer over one stream handle with explicit or automatic flushing."""

    stream: IO[bytes]
    buffer_size: int = DEFAULT_WRITE_BUFFER_SIZE
    auto_flush: bool = False
    line_ending: bytes = DEFAULT_LINE_ENDING

    @classmethod
    def with_auto_flush(cls, stream: IO[bytes]) -> StreamWriter:
        return cls(stream, auto_flush=True)

    def with_buffer_size(self, size: int) -> StreamWriter:
        if size <= 0:
            raise ValueError(f"buffer size must be > 0, got {size!r}")
        return replace(self, buffer_size=size)

    def with_line_ending(self, ending: str | bytes) -> StreamWriter:
        return replace(self, line_ending=to_bytes(ending))

    def auto_flushing(self, enabled: bool = True) -> StreamWriter:
        return replace(self, auto_flush=enabled)

    def write(self, data: str | bytes | bytearray | memoryview) -> int:
        """Write once and return how many bytes the OS accepted."""

        payload = to_bytes(data)
        if not payload:
            return 0

        try:
            written: Any = self.stream.write(payload)
        except (OSError, ValueError) as error:
            raise StreamWriteFailed(f"Failed to write to stream: {error}") from error

        if self.auto_flush:
            self.flush()
        # Raw non-blocking streams report "would block" as None.
        return int(written or 0)

    def write_line(self, line: str | bytes) -> int:
        return self.write(to_bytes(line) + self.line_ending)

    def write_lines(self, lines: Iterable[str | bytes]) -> int:
        total = 0
        for line in lines:
            total += self.write_line(line)
        return total

    def write_chunked(self, data: str | bytes | bytearray | memoryview) -> int:
        """Write `data` in `buffer_size` slices, resuming after partial writes."""

        payload = memoryview(to_bytes(data))
        total = 0
        while total < len(payload):
            chunk = payload[total : total + self.buffer_size]
            written = self.write(chunk)
            if written <= 0:
                raise StreamWriteFailed(
                    f"Stream accepted no bytes after {total} of {len(payload)} were written"
                )
            total += written
        return total

    def flush(self) -> None:
        try:
            self.stream.flush()
        except (OSError, ValueError) as error:
            raise StreamFlushFailed(f"Failed to flush stream: {error}") from error
