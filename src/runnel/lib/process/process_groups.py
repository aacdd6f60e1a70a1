"""Process-group helpers for children started in their own session."""

from __future__ import annotations

import os

from runnel.lib.process.errors import ProcessSignalFailed


def is_group_leader(pid: int) -> bool:
    """Return whether `pid` leads its own process group.

    A child spawned without a new session shares the caller's group.
    Raises ProcessLookupError when `pid` no longer exists.
    """

    return os.getpgid(pid) == pid


def signal_process_group(pid: int, signum: int) -> bool:
    """Send one signal to the process group led by `pid`.

    The child may exit between the running check and signal delivery, so
    ProcessLookupError is treated as an expected race and reported as False.
    A `pid` that does not lead its group raises ProcessSignalFailed, since
    that group belongs to the caller.
    """

    try:
        pgid = os.getpgid(pid)
        if pgid != pid:
            raise ProcessSignalFailed(
                f"pid {pid} is not a process group leader (group {pgid})"
            )
        os.killpg(pgid, signum)
    except ProcessLookupError:
        return False
    return True
