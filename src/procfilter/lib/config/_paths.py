"""Path resolution helpers for repository-scoped config files."""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_DIRNAME = ".procfilter"
CONFIG_FILENAME = "config.toml"


def resolve_repo_root(explicit: Path | None = None) -> Path:
    """Resolve the repository root that owns filter configuration.

    Precedence:
    1. Explicit function argument.
    2. `PROCFILTER_REPO_ROOT` environment variable.
    3. Current directory / nearest ancestor containing a `.git` entry.
    4. Current working directory.
    """

    if explicit is not None:
        return explicit.expanduser().resolve()

    env_root = os.getenv("PROCFILTER_REPO_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()

    cwd = Path.cwd().resolve()
    candidate = cwd
    while True:
        # File for worktrees/submodules, directory for a standalone repo.
        if (candidate / ".git").exists():
            return candidate

        parent = candidate.parent
        if parent == candidate:
            break
        candidate = parent

    return cwd


def config_path(repo_root: Path) -> Path:
    """Return `<repo_root>/.procfilter/config.toml`."""

    return repo_root / CONFIG_DIRNAME / CONFIG_FILENAME
