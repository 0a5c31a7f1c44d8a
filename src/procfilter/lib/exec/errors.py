"""Filter execution error taxonomy."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    SPAWN_FAILURE = "spawn_failure"
    IO_FAILURE = "io_failure"
    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"
    CONCURRENCY_FAILURE = "concurrency_failure"


class FilterError(RuntimeError):
    """Base class for every terminal failure of one filter invocation."""

    kind: ErrorKind

    def __init__(self, program: str, message: str) -> None:
        self.program = program
        super().__init__(message)


class SpawnFailure(FilterError):
    """The program could not be started (missing, not executable, ...)."""

    kind = ErrorKind.SPAWN_FAILURE

    def __init__(self, program: str, cause: OSError) -> None:
        self.cause = cause
        super().__init__(program, f"failed to spawn '{program}': {cause}")


class FilterIOError(FilterError):
    """Reading from or writing to one of the child's pipes failed."""

    kind = ErrorKind.IO_FAILURE

    def __init__(self, program: str, stream: str, cause: BaseException) -> None:
        self.stream = stream
        self.cause = cause
        action = "write to" if stream == "stdin" else "read"
        super().__init__(program, f"failed to {action} {stream} of '{program}': {cause}")


class NonZeroExitError(FilterError):
    """The child ran to completion but reported failure."""

    kind = ErrorKind.NON_ZERO_EXIT

    def __init__(self, program: str, returncode: int, stderr: str) -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(program, f"'{program}' failed: {stderr}")


class FilterTimeoutError(FilterError):
    """The child did not finish before the deadline and was killed."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, program: str, timeout_seconds: float, pid: int | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        self.pid = pid
        super().__init__(program, f"'{program}' timed out after {timeout_seconds:.3f}s")


class ConcurrencyFailure(FilterError):
    """The stdin writer task died without reporting an I/O error."""

    kind = ErrorKind.CONCURRENCY_FAILURE

    def __init__(self, program: str, detail: str) -> None:
        super().__init__(program, f"stdin writer for '{program}' did not complete: {detail}")
