"""Deadline arithmetic and signal mapping tests."""

from __future__ import annotations

import math
import signal
import time
from datetime import timedelta

import pytest

from runnel.lib.process import (
    DeadlineOverflow,
    ProcessError,
    ProcessSignalFailed,
    deadline_after,
)
from runnel.lib.process.signals import exit_code_from_returncode, resolve_signal, signal_name
from runnel.lib.process.timeout import coerce_timeout, optional_deadline


def test_coerce_timeout_accepts_seconds_and_timedelta() -> None:
    assert coerce_timeout(2) == 2.0
    assert coerce_timeout(0.25) == 0.25
    assert coerce_timeout(timedelta(milliseconds=1500)) == 1.5


@pytest.mark.parametrize("value", [math.inf, math.nan, 1e300])
def test_unrepresentable_timeouts_raise_overflow(value: float) -> None:
    with pytest.raises(DeadlineOverflow):
        deadline_after(value)


def test_negative_and_non_numeric_timeouts_are_rejected() -> None:
    with pytest.raises(DeadlineOverflow, match=">= 0"):
        coerce_timeout(-1)
    with pytest.raises(ProcessError):
        deadline_after(timedelta(seconds=-5))
    with pytest.raises(TypeError):
        coerce_timeout("5")  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        coerce_timeout(True)


def test_deadline_remaining_and_clamp() -> None:
    deadline = deadline_after(10)

    assert 9 < deadline.remaining() <= 10
    assert deadline.clamp(0.05) == 0.05
    assert not deadline.expired()


def test_zero_deadline_is_already_expired() -> None:
    deadline = deadline_after(0)

    time.sleep(0.001)
    assert deadline.expired()
    assert deadline.remaining() == 0.0
    assert deadline.clamp(1.0) == 0.0


def test_optional_deadline_is_none_without_timeout() -> None:
    assert optional_deadline(None) is None
    assert optional_deadline(1) is not None


def test_resolve_signal_accepts_numbers_members_and_names() -> None:
    assert resolve_signal(signal.SIGTERM) == signal.SIGTERM.value
    assert resolve_signal(9) == 9
    assert resolve_signal("KILL") == signal.SIGKILL.value
    assert resolve_signal("sigint") == signal.SIGINT.value
    assert resolve_signal("15") == 15


def test_resolve_signal_rejects_unknown_names() -> None:
    with pytest.raises(ProcessSignalFailed, match="Unknown signal"):
        resolve_signal("NOPE")
    with pytest.raises(ProcessSignalFailed):
        resolve_signal(-1)


def test_signal_exit_codes_follow_shell_convention() -> None:
    assert exit_code_from_returncode(0) == 0
    assert exit_code_from_returncode(42) == 42
    assert exit_code_from_returncode(-signal.SIGKILL) == 128 + signal.SIGKILL
    assert signal_name(signal.SIGTERM) == "SIGTERM"
    assert signal_name(999) == "signal 999"
