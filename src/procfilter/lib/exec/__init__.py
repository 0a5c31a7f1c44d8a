"""Filter execution engine primitives."""

from procfilter.lib.exec.errors import (
    ConcurrencyFailure,
    ErrorKind,
    FilterError,
    FilterIOError,
    FilterTimeoutError,
    NonZeroExitError,
    SpawnFailure,
)
from procfilter.lib.exec.spawn import (
    DEFAULT_TIMEOUT_SECONDS,
    STREAM_THRESHOLD_BYTES,
    execute,
    run_filter_command,
    select_strategy,
)
from procfilter.lib.exec.timeout import Deadline, kill_and_reap, wait_for_process_exit
from procfilter.lib.exec.tokenize import PATH_PLACEHOLDER, parse_command, split_command

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "PATH_PLACEHOLDER",
    "STREAM_THRESHOLD_BYTES",
    "ConcurrencyFailure",
    "Deadline",
    "ErrorKind",
    "FilterError",
    "FilterIOError",
    "FilterTimeoutError",
    "NonZeroExitError",
    "SpawnFailure",
    "execute",
    "kill_and_reap",
    "parse_command",
    "run_filter_command",
    "select_strategy",
    "split_command",
    "wait_for_process_exit",
]
