"""Shared pytest fixtures for process and CLI integration checks."""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from runnel.lib.process import Process, ProcessBuilder

if TYPE_CHECKING:
    from collections.abc import Callable

PACKAGE_ROOT = Path(__file__).resolve().parents[1]


@dataclass(frozen=True, slots=True)
class CliResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def cli_env(package_root: Path) -> dict[str, str]:
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    root = str(package_root / "src")
    env["PYTHONPATH"] = root if not existing else f"{root}:{existing}"
    for name in list(env):
        if name.startswith("RUNNEL_"):
            del env[name]
    return env


@pytest.fixture
def run_runnel(package_root: Path, cli_env: dict[str, str]) -> Callable[..., CliResult]:
    def _run(args: list[str], timeout: float = 15.0, cwd: Path | None = None) -> CliResult:
        completed = subprocess.run(
            [sys.executable, "-m", "runnel", *args],
            cwd=cwd or package_root,
            env=cli_env,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
        return CliResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    return _run


@pytest.fixture
def python_builder() -> Callable[[str], ProcessBuilder]:
    """Build a ProcessBuilder that runs an inline Python script."""

    def _build(script: str) -> ProcessBuilder:
        return ProcessBuilder.command(sys.executable).args(["-c", script])

    return _build


@pytest.fixture
def spawned() -> Iterator[Callable[[ProcessBuilder], Process]]:
    """Spawn processes that are killed and closed at teardown."""

    processes: list[Process] = []

    def _spawn(builder: ProcessBuilder) -> Process:
        process = builder.spawn()
        processes.append(process)
        return process

    yield _spawn

    for process in processes:
        if not process.closed:
            process.kill("KILL")
            process.wait(5)
            process.close()
