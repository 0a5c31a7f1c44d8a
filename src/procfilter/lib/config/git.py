"""Settings providers for filter command lookup."""

from __future__ import annotations

import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

# `git config --get` exits 1 when the key is simply not set.
_GIT_CONFIG_MISSING_KEY = 1


@dataclass(frozen=True, slots=True)
class GitConfigSettings:
    """Read repository settings through `git config --get`."""

    repo_root: Path
    git_executable: str = "git"
    timeout_seconds: float = 10.0

    def get_string(self, key: str) -> str | None:
        completed = subprocess.run(
            [self.git_executable, "config", "--get", key],
            cwd=self.repo_root,
            capture_output=True,
            text=True,
            check=False,
            timeout=self.timeout_seconds,
        )
        if completed.returncode == _GIT_CONFIG_MISSING_KEY:
            return None
        if completed.returncode != 0:
            raise ValueError(
                f"git config --get {key} failed in '{self.repo_root}': "
                f"{completed.stderr.strip()}"
            )
        return completed.stdout.rstrip("\n")


def _empty_values() -> dict[str, str]:
    return {}


@dataclass(frozen=True, slots=True)
class MappingSettings:
    """In-memory settings, for explicit commands and tests."""

    values: Mapping[str, str] = field(default_factory=_empty_values)

    def get_string(self, key: str) -> str | None:
        return self.values.get(key)
