"""Deadline arithmetic for bounded wait, read, and collection loops."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Final

from runnel.lib.config.settings import RunnelConfig
from runnel.lib.process.errors import DeadlineOverflow

_DEFAULT_CONFIG = RunnelConfig()
DEFAULT_COMMAND_TIMEOUT_SECONDS = _DEFAULT_CONFIG.command_timeout_seconds
DEFAULT_KILL_GRACE_SECONDS = _DEFAULT_CONFIG.kill_grace_seconds
DEFAULT_WAIT_POLL_INTERVAL_SECONDS = _DEFAULT_CONFIG.wait_poll_interval_seconds
DEFAULT_SELECT_TICK_SECONDS = _DEFAULT_CONFIG.select_tick_seconds

# Longest timeout accepted, matching the range of datetime.timedelta.
MAX_TIMEOUT_SECONDS: Final[float] = float(timedelta.max.total_seconds())

Timeout = float | int | timedelta


def coerce_timeout(timeout: Timeout) -> float:
    """Return a timeout in seconds, rejecting values no deadline can represent."""

    if isinstance(timeout, timedelta):
        seconds = timeout.total_seconds()
    elif isinstance(timeout, bool) or not isinstance(timeout, int | float):
        raise TypeError(f"timeout must be seconds or timedelta, got {type(timeout).__name__}")
    else:
        seconds = float(timeout)

    if math.isnan(seconds):
        raise DeadlineOverflow("timeout is not a number")
    if seconds < 0:
        raise DeadlineOverflow(f"timeout must be >= 0, got {seconds!r}")
    if math.isinf(seconds) or seconds > MAX_TIMEOUT_SECONDS:
        raise DeadlineOverflow(f"timeout of {seconds!r}s overflows the monotonic clock")
    return seconds


@dataclass(frozen=True, slots=True)
class Deadline:
    """Absolute instant on the monotonic clock after which work is abandoned."""

    at: float
    timeout_seconds: float

    def remaining(self) -> float:
        return max(self.at - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return time.monotonic() >= self.at

    def clamp(self, interval: float) -> float:
        """Bound one polling interval so it never sleeps past the deadline."""

        return min(interval, self.remaining())


def deadline_after(timeout: Timeout) -> Deadline:
    """Compute `now + timeout`, raising instead of saturating on overflow."""

    seconds = coerce_timeout(timeout)
    at = time.monotonic() + seconds
    if math.isinf(at):
        raise DeadlineOverflow(f"deadline after {seconds!r}s overflows the monotonic clock")
    return Deadline(at=at, timeout_seconds=seconds)


def optional_deadline(timeout: Timeout | None) -> Deadline | None:
    if timeout is None:
        return None
    return deadline_after(timeout)
