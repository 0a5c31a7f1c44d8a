"""Async filter subprocess execution.

One call spawns one child, pushes the payload through its stdin, collects
stdout, and either returns those bytes or raises a FilterError. Payloads up
to the stream threshold are written in full before output is read (buffered
strategy). Larger payloads are written by a separate task while output is
read, so a child that fills its stdout pipe before it has consumed all of its
input cannot deadlock the parent (streaming strategy).

A single deadline, started at spawn, covers I/O and the exit wait for both
strategies. When it expires the child's process group is killed and reaped
before FilterTimeoutError is raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import structlog

from procfilter.lib.domain import ExecutionRequest, FilterDiagnostic, ParsedCommand
from procfilter.lib.exec.errors import (
    ConcurrencyFailure,
    FilterError,
    FilterIOError,
    FilterTimeoutError,
    NonZeroExitError,
    SpawnFailure,
)
from procfilter.lib.exec.timeout import Deadline, kill_and_reap, wait_for_process_exit
from procfilter.lib.exec.tokenize import parse_command

STREAM_THRESHOLD_BYTES = 64 * 1024
DEFAULT_TIMEOUT_SECONDS = 300.0
WRITE_CHUNK_BYTES = 64 * 1024
POST_KILL_DRAIN_SECONDS = 1.0
logger = structlog.get_logger(__name__)

Strategy = Literal["buffered", "streaming"]
DiagnosticObserver = Callable[[FilterDiagnostic], None]


@dataclass(frozen=True, slots=True)
class ChildOutput:
    """Everything collected from the child's pipes before it was waited on."""

    stdout: bytes
    stderr: bytes
    write_error: ConnectionError | None = None


def select_strategy(payload_size: int, threshold: int = STREAM_THRESHOLD_BYTES) -> Strategy:
    """Payloads at or below the threshold are buffered, larger ones streamed."""

    if threshold < 0:
        raise ValueError("stream threshold must be >= 0.")
    return "buffered" if payload_size <= threshold else "streaming"


async def _spawn(parsed: ParsedCommand, cwd: Path | None) -> asyncio.subprocess.Process:
    try:
        process = await asyncio.create_subprocess_exec(
            *parsed.argv,
            cwd=str(cwd) if cwd is not None else None,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        raise SpawnFailure(parsed.program, exc) from exc

    if process.stdin is None or process.stdout is None or process.stderr is None:
        await kill_and_reap(process)
        raise RuntimeError("Subprocess did not expose stdin/stdout/stderr pipes.")
    return process


async def _write_stdin(
    stdin: asyncio.StreamWriter,
    payload: bytes,
    *,
    program: str,
) -> ConnectionError | None:
    """Write the payload and close stdin.

    A broken pipe is returned rather than raised so the caller can still
    collect the child's stderr and exit status, which usually explain why it
    stopped reading.
    """

    try:
        for offset in range(0, len(payload), WRITE_CHUNK_BYTES):
            stdin.write(payload[offset : offset + WRITE_CHUNK_BYTES])
            await stdin.drain()
    except ConnectionError as exc:
        return exc
    except OSError as exc:
        raise FilterIOError(program, "stdin", exc) from exc
    finally:
        # EOF tells the child there is no more input.
        stdin.close()
    return None


async def _read_stdout(reader: asyncio.StreamReader, *, program: str) -> bytes:
    try:
        return await reader.read()
    except OSError as exc:
        raise FilterIOError(program, "stdout", exc) from exc


async def _drain_stderr(reader: asyncio.StreamReader, *, program: str) -> bytes:
    try:
        return await reader.read()
    except OSError:
        logger.debug("Failed to read filter stderr.", program=program, exc_info=True)
        return b""


async def _run_buffered(
    process: asyncio.subprocess.Process,
    payload: bytes,
    *,
    program: str,
) -> ChildOutput:
    assert process.stdin is not None
    assert process.stdout is not None
    assert process.stderr is not None

    write_error = await _write_stdin(process.stdin, payload, program=program)
    stdout, stderr = await asyncio.gather(
        _read_stdout(process.stdout, program=program),
        _drain_stderr(process.stderr, program=program),
    )
    return ChildOutput(stdout=stdout, stderr=stderr, write_error=write_error)


async def _join_writer(
    writer: asyncio.Task[ConnectionError | None],
    *,
    program: str,
) -> ConnectionError | None:
    try:
        return await writer
    except FilterError:
        raise
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
        raise ConcurrencyFailure(program, "writer task was cancelled") from None
    except Exception as exc:
        raise ConcurrencyFailure(program, repr(exc)) from exc


async def _run_streaming(
    process: asyncio.subprocess.Process,
    payload: bytes,
    *,
    program: str,
) -> ChildOutput:
    assert process.stdin is not None
    assert process.stdout is not None
    assert process.stderr is not None

    writer = asyncio.create_task(
        _write_stdin(process.stdin, payload, program=program),
        name=f"procfilter-stdin-{process.pid}",
    )
    try:
        stdout, stderr = await asyncio.gather(
            _read_stdout(process.stdout, program=program),
            _drain_stderr(process.stderr, program=program),
        )
    except BaseException:
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
        raise

    # An incomplete write makes the output untrustworthy even when reads succeeded.
    write_error = await _join_writer(writer, program=program)
    return ChildOutput(stdout=stdout, stderr=stderr, write_error=write_error)


async def _drain_after_kill(process: asyncio.subprocess.Process) -> None:
    for reader in (process.stdout, process.stderr):
        if reader is None:
            continue
        try:
            await asyncio.wait_for(reader.read(), timeout=POST_KILL_DRAIN_SECONDS)
        except (OSError, TimeoutError):
            continue


def _close_stdin(process: asyncio.subprocess.Process) -> None:
    stdin = process.stdin
    if stdin is not None and not stdin.is_closing():
        stdin.close()


def _finish(
    *,
    program: str,
    returncode: int,
    output: ChildOutput,
    diagnostic_observer: DiagnosticObserver | None,
) -> bytes:
    stderr_text = output.stderr.decode("utf-8", errors="replace").strip()
    if returncode != 0:
        raise NonZeroExitError(program, returncode, stderr_text)
    if output.write_error is not None:
        raise FilterIOError(program, "stdin", output.write_error)

    if stderr_text:
        diagnostic = FilterDiagnostic(program=program, message=stderr_text)
        if diagnostic_observer is None:
            logger.warning("Filter wrote to stderr.", program=program, stderr=stderr_text)
        else:
            diagnostic_observer(diagnostic)
    return output.stdout


async def run_filter_command(
    request: ExecutionRequest,
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    stream_threshold: int = STREAM_THRESHOLD_BYTES,
    diagnostic_observer: DiagnosticObserver | None = None,
) -> bytes:
    """Run one filter command over the request payload and return its stdout."""

    if not request.command:
        return request.payload

    parsed = parse_command(request.command, request.substitution_path)
    if parsed.is_empty:
        return request.payload

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0.")
    strategy = select_strategy(len(request.payload), stream_threshold)

    process = await _spawn(parsed, request.cwd)
    deadline = Deadline(timeout_seconds)
    log = logger.bind(program=parsed.program, pid=process.pid)
    log.debug(
        "Spawned filter process.",
        strategy=strategy,
        payload_bytes=len(request.payload),
        cwd=str(request.cwd) if request.cwd is not None else None,
    )

    try:
        async with asyncio.timeout(deadline.remaining):
            if strategy == "buffered":
                output = await _run_buffered(process, request.payload, program=parsed.program)
            else:
                output = await _run_streaming(process, request.payload, program=parsed.program)
        returncode = await wait_for_process_exit(process, deadline=deadline)
    except TimeoutError as exc:
        await kill_and_reap(process)
        await _drain_after_kill(process)
        raise FilterTimeoutError(parsed.program, timeout_seconds, pid=process.pid) from exc
    finally:
        _close_stdin(process)
        if process.returncode is None:
            await kill_and_reap(process)

    log.debug(
        "Filter process exited.",
        returncode=returncode,
        stdout_bytes=len(output.stdout),
        stderr_bytes=len(output.stderr),
        elapsed_seconds=round(deadline.elapsed, 3),
    )
    return _finish(
        program=parsed.program,
        returncode=returncode,
        output=output,
        diagnostic_observer=diagnostic_observer,
    )


def execute(
    command: str,
    substitution_path: str,
    cwd: Path | None,
    payload: bytes,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    *,
    stream_threshold: int = STREAM_THRESHOLD_BYTES,
    diagnostic_observer: DiagnosticObserver | None = None,
) -> bytes:
    """Blocking entry point; must not be called from inside a running event loop."""

    request = ExecutionRequest(
        command=command,
        substitution_path=substitution_path,
        payload=payload,
        cwd=cwd,
    )
    return asyncio.run(
        run_filter_command(
            request,
            timeout_seconds=timeout_seconds,
            stream_threshold=stream_threshold,
            diagnostic_observer=diagnostic_observer,
        )
    )
