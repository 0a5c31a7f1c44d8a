"""Cyclopts CLI entry point for procfilter."""

from __future__ import annotations

import sys
from contextvars import ContextVar
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import structlog
from cyclopts import App, Parameter

from procfilter import __version__
from procfilter.cli.output import OutputConfig, normalize_output_format
from procfilter.cli.output import emit as emit_output
from procfilter.lib.config import GitConfigSettings, load_config, resolve_repo_root
from procfilter.lib.config.settings import ProcFilterConfig
from procfilter.lib.domain import FilterCommands, FilterDirection, FilterSource
from procfilter.lib.exec.errors import FilterError, FilterTimeoutError
from procfilter.lib.exec.tokenize import parse_command
from procfilter.lib.filter import ProcessFilter, load_filter_commands
from procfilter.lib.types import CommandTemplate, FilterName

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = structlog.get_logger(__name__)

_ADHOC_FILTER_NAME = FilterName("adhoc")


@dataclass(frozen=True, slots=True)
class GlobalOptions:
    """Top-level options that apply to all commands."""

    output: OutputConfig
    verbosity: int = 0


_GLOBAL_OPTIONS: ContextVar[GlobalOptions | None] = ContextVar("_GLOBAL_OPTIONS", default=None)


def get_global_options() -> GlobalOptions:
    default = GlobalOptions(output=OutputConfig(format="text"))
    return _GLOBAL_OPTIONS.get() or default


def emit(payload: object) -> None:
    """Write command output using current output format settings."""

    emit_output(payload, get_global_options().output)


def _extract_global_options(argv: Sequence[str]) -> tuple[list[str], GlobalOptions]:
    json_mode = False
    output_format: str | None = None
    verbosity = 0
    cleaned: list[str] = []

    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--json":
            json_mode = True
        elif arg == "--no-json":
            pass
        elif arg in {"--verbose", "-v"}:
            verbosity += 1
        elif arg == "-vv":
            verbosity += 2
        elif arg == "--format":
            if i + 1 >= len(argv):
                raise SystemExit("--format requires a value")
            output_format = argv[i + 1]
            i += 1
        elif arg.startswith("--format="):
            output_format = arg.partition("=")[2]
        else:
            cleaned.append(arg)
        i += 1

    resolved = normalize_output_format(requested=output_format, json_mode=json_mode)
    return cleaned, GlobalOptions(output=OutputConfig(format=resolved), verbosity=verbosity)


@dataclass(frozen=True, slots=True)
class ParseOutput:
    """Tokenized form of one command template."""

    program: str
    args: tuple[str, ...]

    def format_text(self) -> str:
        if not self.program:
            return "(empty command: content passes through unchanged)"
        lines = [f"program: {self.program}"]
        lines.extend(f"arg[{index}]: {arg}" for index, arg in enumerate(self.args))
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class ConfigShowOutput:
    """Resolved operational config plus where it was loaded from."""

    repo_root: Path
    timeout_seconds: float
    stream_threshold_bytes: int

    def format_text(self) -> str:
        return "\n".join(
            (
                f"repo_root: {self.repo_root}",
                f"timeout_seconds: {self.timeout_seconds:g}",
                f"stream_threshold_bytes: {self.stream_threshold_bytes}",
            )
        )


app = App(
    name="procfilter",
    help="Run clean/smudge content filters through external commands.",
    version=__version__,
    help_formatter="plain",
)
config_app = App(name="config", help="Operational config commands", help_formatter="plain")
app.command(config_app, name="config")


def _resolve_commands(
    direction: FilterDirection,
    *,
    repo_root: Path,
    filter_name: str | None,
    command: str | None,
) -> FilterCommands:
    if command is not None:
        template = CommandTemplate(command)
        if direction == FilterDirection.TO_STORAGE:
            return FilterCommands(clean=template)
        return FilterCommands(smudge=template)
    if filter_name is not None:
        return load_filter_commands(GitConfigSettings(repo_root=repo_root), filter_name)
    raise ValueError("One of --filter or --command is required.")


def _run_direction(
    direction: FilterDirection,
    path: str,
    *,
    filter_name: str | None,
    command: str | None,
    cwd: str | None,
    timeout: float | None,
) -> None:
    repo_root = resolve_repo_root()
    config: ProcFilterConfig = load_config(repo_root)
    if timeout is not None:
        config = replace(config, timeout_seconds=timeout)

    process_filter = ProcessFilter(
        name=FilterName(filter_name) if filter_name else _ADHOC_FILTER_NAME,
        commands=_resolve_commands(
            direction,
            repo_root=repo_root,
            filter_name=filter_name,
            command=command,
        ),
        config=config,
    )
    workdir = Path(cwd).expanduser().resolve() if cwd is not None else repo_root
    source = FilterSource(path=path, direction=direction, workdir=workdir)

    payload = sys.stdin.buffer.read()
    result = process_filter.apply_sync(source, payload)
    sys.stdout.buffer.write(result)
    sys.stdout.buffer.flush()


_FilterOption = Annotated[
    str | None,
    Parameter(name="--filter", help="Filter name; reads filter.<name>.clean/smudge from git config."),
]
_CommandOption = Annotated[
    str | None,
    Parameter(name="--command", help="Command template to run instead of the configured one."),
]
_CwdOption = Annotated[
    str | None,
    Parameter(name="--cwd", help="Working directory for the filter process (default: repo root)."),
]
_TimeoutOption = Annotated[
    float | None,
    Parameter(name="--timeout", help="Seconds before the filter process is killed."),
]


@app.command(name="clean")
def clean(
    path: str,
    filter_name: _FilterOption = None,
    command: _CommandOption = None,
    cwd: _CwdOption = None,
    timeout: _TimeoutOption = None,
) -> None:
    """Filter stdin through the clean command (working copy to storage)."""

    _run_direction(
        FilterDirection.TO_STORAGE,
        path,
        filter_name=filter_name,
        command=command,
        cwd=cwd,
        timeout=timeout,
    )


@app.command(name="smudge")
def smudge(
    path: str,
    filter_name: _FilterOption = None,
    command: _CommandOption = None,
    cwd: _CwdOption = None,
    timeout: _TimeoutOption = None,
) -> None:
    """Filter stdin through the smudge command (storage to working copy)."""

    _run_direction(
        FilterDirection.TO_WORKING_COPY,
        path,
        filter_name=filter_name,
        command=command,
        cwd=cwd,
        timeout=timeout,
    )


@app.command(name="parse")
def parse(
    template: str,
    path: Annotated[
        str,
        Parameter(name="--path", help="Value substituted for each %f placeholder."),
    ] = "",
) -> None:
    """Show how a command template is tokenized."""

    parsed = parse_command(template, path)
    emit(ParseOutput(program=parsed.program, args=parsed.args))


@config_app.command(name="show")
def config_show() -> None:
    """Show the resolved operational config."""

    repo_root = resolve_repo_root()
    config = load_config(repo_root)
    emit(
        ConfigShowOutput(
            repo_root=repo_root,
            timeout_seconds=config.timeout_seconds,
            stream_threshold_bytes=config.stream_threshold_bytes,
        )
    )


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `procfilter` and `python -m procfilter`."""

    from procfilter.lib.logging import configure_logging

    args = list(sys.argv[1:] if argv is None else argv)
    cleaned_args, options = _extract_global_options(args)

    # Configure logging early so warnings go to stderr, never into filtered stdout.
    configure_logging(json_mode=options.output.format == "json", verbosity=options.verbosity)

    token = _GLOBAL_OPTIONS.set(options)
    try:
        try:
            app(cleaned_args)
        except FilterTimeoutError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(124) from None
        except FilterError as exc:
            logger.debug("Filter failed.", kind=str(exc.kind), program=exc.program)
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(1) from None
        except (KeyError, ValueError, FileNotFoundError, OSError) as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(1) from None
    finally:
        _GLOBAL_OPTIONS.reset(token)
