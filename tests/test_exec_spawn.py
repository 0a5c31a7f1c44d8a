"""Filter subprocess execution tests."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from structlog.testing import capture_logs

import procfilter.lib.exec.spawn as spawn_module
from procfilter.lib.domain import ExecutionRequest, FilterDiagnostic
from procfilter.lib.exec.errors import (
    ConcurrencyFailure,
    ErrorKind,
    FilterIOError,
    FilterTimeoutError,
    NonZeroExitError,
    SpawnFailure,
)
from procfilter.lib.exec.spawn import (
    STREAM_THRESHOLD_BYTES,
    execute,
    run_filter_command,
    select_strategy,
)

if TYPE_CHECKING:
    from collections.abc import Callable

SMALL_PAYLOAD = b"hello world"
LARGE_PAYLOAD = bytes(i % 256 for i in range(100_000))


def _pid_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _request(
    command: str,
    payload: bytes,
    path: str = "",
    cwd: Path | None = None,
) -> ExecutionRequest:
    return ExecutionRequest(command=command, substitution_path=path, payload=payload, cwd=cwd)


@pytest.fixture
def spawned(monkeypatch: pytest.MonkeyPatch) -> list[asyncio.subprocess.Process]:
    """Record every child process the executor starts."""

    processes: list[asyncio.subprocess.Process] = []
    original = spawn_module.asyncio.create_subprocess_exec

    async def wrapped_create_subprocess_exec(*args: object, **kwargs: object):
        process = await original(*args, **kwargs)
        processes.append(process)
        return process

    monkeypatch.setattr(
        spawn_module.asyncio,
        "create_subprocess_exec",
        wrapped_create_subprocess_exec,
    )
    return processes


@pytest.fixture
def strategies(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Record which strategy handled each call."""

    used: list[str] = []
    original_buffered = spawn_module._run_buffered
    original_streaming = spawn_module._run_streaming

    async def buffered(*args, **kwargs):
        used.append("buffered")
        return await original_buffered(*args, **kwargs)

    async def streaming(*args, **kwargs):
        used.append("streaming")
        return await original_streaming(*args, **kwargs)

    monkeypatch.setattr(spawn_module, "_run_buffered", buffered)
    monkeypatch.setattr(spawn_module, "_run_streaming", streaming)
    return used


def test_select_strategy_threshold_is_inclusive() -> None:
    assert select_strategy(0) == "buffered"
    assert select_strategy(STREAM_THRESHOLD_BYTES) == "buffered"
    assert select_strategy(STREAM_THRESHOLD_BYTES + 1) == "streaming"
    assert select_strategy(10, threshold=9) == "streaming"
    with pytest.raises(ValueError, match="threshold"):
        select_strategy(10, threshold=-1)


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["", "   ", "''"])
async def test_empty_command_passes_payload_through_without_spawning(
    command: str,
    spawned: list[asyncio.subprocess.Process],
) -> None:
    result = await run_filter_command(_request(command, LARGE_PAYLOAD, path="a.bin"))

    assert result == LARGE_PAYLOAD
    assert spawned == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload,expected_strategy",
    [
        pytest.param(SMALL_PAYLOAD, "buffered", id="11-bytes"),
        pytest.param(LARGE_PAYLOAD, "streaming", id="100000-bytes"),
    ],
)
async def test_identity_filter_round_trip(
    payload: bytes,
    expected_strategy: str,
    strategies: list[str],
) -> None:
    cleaned = await run_filter_command(_request("cat", payload), timeout_seconds=10.0)
    smudged = await run_filter_command(_request("cat", cleaned), timeout_seconds=10.0)

    assert smudged == payload
    assert strategies == [expected_strategy, expected_strategy]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "size",
    [STREAM_THRESHOLD_BYTES - 1, STREAM_THRESHOLD_BYTES, STREAM_THRESHOLD_BYTES + 1],
)
async def test_strategies_agree_across_threshold(
    size: int,
    mock_filter: Callable[..., str],
) -> None:
    payload = bytes(i % 251 for i in range(size))
    outputs: dict[str, tuple[bytes, bytes]] = {}
    for name, threshold in (("buffered", size), ("streaming", size - 1)):
        identity = await run_filter_command(
            _request("cat", payload),
            stream_threshold=threshold,
            timeout_seconds=10.0,
        )
        counted = await run_filter_command(
            _request(mock_filter("--count"), payload),
            stream_threshold=threshold,
            timeout_seconds=10.0,
        )
        outputs[name] = (identity, counted)

    assert outputs["buffered"] == outputs["streaming"]
    assert outputs["buffered"] == (payload, str(size).encode("ascii"))


@pytest.mark.asyncio
async def test_transform_output_is_returned(mock_filter: Callable[..., str]) -> None:
    result = await run_filter_command(_request(mock_filter("--upper"), b"hello world\n"))

    assert result == b"HELLO WORLD\n"


@pytest.mark.asyncio
async def test_non_zero_exit_carries_trimmed_stderr(mock_filter: Callable[..., str]) -> None:
    command = mock_filter("--exit-code", "3", "--stderr", '"  boom \n"')

    with pytest.raises(NonZeroExitError) as exc_info:
        await run_filter_command(_request(command, SMALL_PAYLOAD))

    error = exc_info.value
    assert "boom" in str(error)
    assert error.stderr == "boom"
    assert error.returncode == 3
    assert error.kind == ErrorKind.NON_ZERO_EXIT


@pytest.mark.asyncio
async def test_non_zero_exit_without_stderr_has_empty_message(
    mock_filter: Callable[..., str],
) -> None:
    with pytest.raises(NonZeroExitError) as exc_info:
        await run_filter_command(_request(mock_filter("--exit-code", "1"), SMALL_PAYLOAD))

    assert exc_info.value.stderr == ""
    assert str(exc_info.value).endswith("failed: ")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [SMALL_PAYLOAD, LARGE_PAYLOAD], ids=["buffered", "streaming"])
async def test_stderr_on_success_goes_to_diagnostic_observer(
    payload: bytes,
    mock_filter: Callable[..., str],
) -> None:
    diagnostics: list[FilterDiagnostic] = []

    result = await run_filter_command(
        _request(mock_filter("--stderr", "careful"), payload),
        diagnostic_observer=diagnostics.append,
    )

    assert result == payload
    assert len(diagnostics) == 1
    assert diagnostics[0].message == "careful"
    assert diagnostics[0].program == sys.executable


@pytest.mark.asyncio
async def test_stderr_on_success_is_logged_without_observer(
    mock_filter: Callable[..., str],
) -> None:
    with capture_logs() as logs:
        result = await run_filter_command(
            _request(mock_filter("--stderr", '"heads up"'), SMALL_PAYLOAD)
        )

    assert result == SMALL_PAYLOAD
    warnings = [entry for entry in logs if entry["log_level"] == "warning"]
    assert [entry["stderr"] for entry in warnings] == ["heads up"]


@pytest.mark.asyncio
async def test_missing_program_is_spawn_failure() -> None:
    with pytest.raises(SpawnFailure) as exc_info:
        await run_filter_command(_request("procfilter-no-such-program-xyz --flag", b"data"))

    assert exc_info.value.program == "procfilter-no-such-program-xyz"
    assert exc_info.value.kind == ErrorKind.SPAWN_FAILURE
    assert "failed to spawn" in str(exc_info.value)


@pytest.mark.asyncio
async def test_missing_working_directory_is_spawn_failure(tmp_path: Path) -> None:
    with pytest.raises(SpawnFailure):
        await run_filter_command(_request("cat", b"data", cwd=tmp_path / "missing"))


@pytest.mark.asyncio
async def test_working_directory_and_placeholder_reach_child(
    tmp_path: Path,
    mock_filter: Callable[..., str],
) -> None:
    command = mock_filter("--report-env", '"%f"')

    result = await run_filter_command(
        _request(command, b"", path="dir/my file.bin", cwd=tmp_path),
    )

    report = json.loads(result)
    assert Path(report["cwd"]).resolve() == tmp_path.resolve()
    assert report["extra"] == ["dir/my file.bin"]


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [SMALL_PAYLOAD, LARGE_PAYLOAD], ids=["buffered", "streaming"])
async def test_timeout_kills_child(
    payload: bytes,
    mock_filter: Callable[..., str],
    spawned: list[asyncio.subprocess.Process],
) -> None:
    with pytest.raises(FilterTimeoutError) as exc_info:
        await run_filter_command(
            _request(mock_filter("--sleep", "30"), payload),
            timeout_seconds=0.5,
        )

    error = exc_info.value
    assert error.kind == ErrorKind.TIMEOUT
    assert error.timeout_seconds == 0.5
    assert "timed out" in str(error)
    assert len(spawned) == 1
    assert error.pid == spawned[0].pid
    assert spawned[0].returncode is not None
    assert not _pid_exists(spawned[0].pid)


@pytest.mark.asyncio
async def test_streaming_avoids_two_pipe_deadlock(mock_filter: Callable[..., str]) -> None:
    flood = 1024 * 1024
    payload = b"y" * (4 * STREAM_THRESHOLD_BYTES)

    result = await run_filter_command(
        _request(mock_filter("--flood", str(flood)), payload),
        timeout_seconds=20.0,
    )

    assert result == b"x" * flood + payload


@pytest.mark.asyncio
async def test_buffered_strategy_on_large_payload_hits_deadline(
    mock_filter: Callable[..., str],
) -> None:
    payload = b"y" * (4 * STREAM_THRESHOLD_BYTES)

    with pytest.raises(FilterTimeoutError):
        await run_filter_command(
            _request(mock_filter("--flood", str(1024 * 1024)), payload),
            stream_threshold=len(payload),
            timeout_seconds=1.5,
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("threshold", [0, 8 * 1024 * 1024], ids=["streaming", "buffered"])
async def test_unread_input_with_success_exit_is_io_failure(
    threshold: int,
    mock_filter: Callable[..., str],
) -> None:
    payload = b"z" * (1024 * 1024)

    with pytest.raises(FilterIOError) as exc_info:
        await run_filter_command(
            _request(mock_filter("--ignore-stdin"), payload),
            stream_threshold=threshold,
            timeout_seconds=10.0,
        )

    assert exc_info.value.stream == "stdin"
    assert exc_info.value.kind == ErrorKind.IO_FAILURE


@pytest.mark.asyncio
async def test_unread_input_with_failure_exit_reports_stderr(
    mock_filter: Callable[..., str],
) -> None:
    command = mock_filter("--ignore-stdin", "--exit-code", "2", "--stderr", "refused")

    with pytest.raises(NonZeroExitError, match="refused"):
        await run_filter_command(_request(command, b"z" * (1024 * 1024)), timeout_seconds=10.0)


@pytest.mark.asyncio
async def test_crashed_writer_is_concurrency_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def exploding_writer(stdin: asyncio.StreamWriter, payload: bytes, *, program: str):
        _ = (payload, program)
        stdin.close()
        raise RuntimeError("writer exploded")

    monkeypatch.setattr(spawn_module, "_write_stdin", exploding_writer)

    with pytest.raises(ConcurrencyFailure) as exc_info:
        await run_filter_command(_request("cat", LARGE_PAYLOAD), timeout_seconds=10.0)

    assert exc_info.value.kind == ErrorKind.CONCURRENCY_FAILURE
    assert "writer exploded" in str(exc_info.value)


@pytest.mark.asyncio
async def test_cancellation_kills_child(
    mock_filter: Callable[..., str],
    spawned: list[asyncio.subprocess.Process],
) -> None:
    task = asyncio.create_task(
        run_filter_command(_request(mock_filter("--sleep", "30"), SMALL_PAYLOAD))
    )
    while not spawned:
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert spawned[0].returncode is not None
    assert not _pid_exists(spawned[0].pid)


@pytest.mark.asyncio
async def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        await run_filter_command(_request("cat", b""), timeout_seconds=0)


def test_execute_blocks_and_returns_output() -> None:
    assert execute("cat", "", None, SMALL_PAYLOAD) == SMALL_PAYLOAD
    assert execute("cat", "", None, LARGE_PAYLOAD) == LARGE_PAYLOAD


def test_execute_passes_through_empty_command() -> None:
    assert execute("", "file.bin", None, SMALL_PAYLOAD, 1.0) == SMALL_PAYLOAD
