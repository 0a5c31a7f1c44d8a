"""Process-group helpers for filter child lifecycle."""

from __future__ import annotations

import asyncio
import os
import signal


def kill_process_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the child's whole process group.

    Filters are spawned in their own session, so the group also holds any
    grandchildren (``sh -c ...`` wrappers) that keep our pipes open. The child
    may exit between the returncode check and delivery, so ProcessLookupError
    is treated as an expected race.
    """

    if process.returncode is not None:
        return

    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        # The group leader is gone and its pgid was reused; fall back to the pid.
        try:
            process.kill()
        except ProcessLookupError:
            return
