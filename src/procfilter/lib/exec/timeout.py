"""Deadline helpers for filter subprocesses."""

from __future__ import annotations

import asyncio
import time

import structlog

from procfilter.lib.exec.process_groups import kill_process_group

logger = structlog.get_logger(__name__)


class Deadline:
    """Wall-clock budget for one filter call, started at spawn time."""

    def __init__(self, timeout_seconds: float) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        self.timeout_seconds = timeout_seconds
        self._started_at = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    @property
    def remaining(self) -> float:
        return max(0.0, self.timeout_seconds - self.elapsed)

    @property
    def expired(self) -> bool:
        return self.elapsed >= self.timeout_seconds


async def kill_and_reap(process: asyncio.subprocess.Process) -> None:
    """Force-kill a process and wait until it has been reaped."""

    if process.returncode is None:
        kill_process_group(process)
    await process.wait()


async def wait_for_process_exit(
    process: asyncio.subprocess.Process,
    *,
    deadline: Deadline,
) -> int:
    """Wait for exit within the remaining budget.

    Raises TimeoutError after killing and reaping the process when the budget
    runs out first.
    """

    if process.returncode is not None:
        return process.returncode

    try:
        return await asyncio.wait_for(process.wait(), timeout=deadline.remaining)
    except TimeoutError:
        logger.warning(
            "Filter process exceeded deadline; killing.",
            pid=process.pid,
            timeout_seconds=deadline.timeout_seconds,
        )
        await kill_and_reap(process)
        raise
