"""Signal resolution and exit-code mapping for child processes."""

from __future__ import annotations

import signal

from runnel.lib.process.errors import ProcessSignalFailed

SignalLike = int | str | signal.Signals

# Shell convention: a child killed by signal N reports exit status 128 + N.
SIGNAL_EXIT_BASE = 128


def resolve_signal(value: SignalLike) -> int:
    """Normalize a signal given as number, enum member, or name ("TERM", "SIGTERM")."""

    if isinstance(value, signal.Signals):
        return value.value
    if isinstance(value, bool):
        raise ProcessSignalFailed(f"Invalid signal: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ProcessSignalFailed(f"Invalid signal number: {value}")
        return value

    normalized = value.strip().upper()
    if normalized.isdigit():
        return int(normalized)
    if not normalized.startswith("SIG"):
        normalized = f"SIG{normalized}"
    try:
        return signal.Signals[normalized].value
    except KeyError:
        raise ProcessSignalFailed(f"Unknown signal name: {value!r}") from None


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def exit_code_from_returncode(raw_return_code: int) -> int:
    """Map a raw `Popen.returncode` to shell-style exit status semantics."""

    if raw_return_code >= 0:
        return raw_return_code
    return SIGNAL_EXIT_BASE - raw_return_code
