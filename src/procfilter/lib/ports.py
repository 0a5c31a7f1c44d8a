"""Protocol interfaces for collaborators supplied by the host."""

from __future__ import annotations

from typing import Protocol


class FilterSettings(Protocol):
    """Read-only key/value view of a repository's settings store."""

    def get_string(self, key: str) -> str | None: ...
