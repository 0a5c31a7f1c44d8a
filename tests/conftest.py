"""Shared pytest fixtures for filter execution and CLI checks."""

from __future__ import annotations

import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
MOCK_FILTER = PACKAGE_ROOT / "tests" / "mock_filter.py"


@dataclass(frozen=True, slots=True)
class CliResult:
    args: tuple[str, ...]
    returncode: int
    stdout: bytes
    stderr: str


def mock_filter_command(*args: str) -> str:
    """Command template running tests/mock_filter.py with the current interpreter."""

    return " ".join((f'"{sys.executable}"', f'"{MOCK_FILTER}"', *args))


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def mock_filter() -> Callable[..., str]:
    return mock_filter_command


@pytest.fixture
def cli_env(package_root: Path, tmp_path: Path) -> dict[str, str]:
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    root = str(package_root / "src")
    env["PYTHONPATH"] = root if not existing else f"{root}:{existing}"
    env["PROCFILTER_REPO_ROOT"] = str(tmp_path)
    env.pop("PROCFILTER_TIMEOUT_SECONDS", None)
    env.pop("PROCFILTER_STREAM_THRESHOLD_BYTES", None)
    return env


@pytest.fixture
def run_procfilter(package_root: Path, cli_env: dict[str, str]) -> Callable[..., CliResult]:
    def _run(args: list[str], stdin: bytes = b"", timeout: float = 30.0) -> CliResult:
        completed = subprocess.run(
            [sys.executable, "-m", "procfilter", *args],
            cwd=package_root,
            env=cli_env,
            input=stdin,
            capture_output=True,
            check=False,
            timeout=timeout,
        )
        return CliResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr.decode("utf-8", errors="replace"),
        )

    return _run
