"""Process filters and the in-process filter registry.

A filter pairs a clean command and a smudge command under one name, read
from `filter.<name>.clean` and `filter.<name>.smudge`. Either may be unset,
in which case that direction passes content through unchanged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import TracebackType

import structlog

from procfilter.lib.config.settings import ProcFilterConfig
from procfilter.lib.domain import (
    ExecutionRequest,
    FilterCommands,
    FilterSource,
    FilterTransfer,
)
from procfilter.lib.exec.spawn import DiagnosticObserver, run_filter_command
from procfilter.lib.ports import FilterSettings
from procfilter.lib.types import CommandTemplate, FilterName

logger = structlog.get_logger(__name__)


def filter_config_keys(name: str) -> tuple[str, str]:
    """Return the (clean, smudge) settings keys for one filter name."""

    return f"filter.{name}.clean", f"filter.{name}.smudge"


def load_filter_commands(settings: FilterSettings, name: str) -> FilterCommands:
    clean_key, smudge_key = filter_config_keys(name)
    return FilterCommands(
        clean=CommandTemplate(settings.get_string(clean_key) or ""),
        smudge=CommandTemplate(settings.get_string(smudge_key) or ""),
    )


@dataclass(frozen=True, slots=True)
class ProcessFilter:
    """Filter that shells out to the configured clean/smudge commands."""

    name: FilterName
    commands: FilterCommands
    config: ProcFilterConfig = ProcFilterConfig()
    diagnostic_observer: DiagnosticObserver | None = None

    @property
    def attributes(self) -> str:
        return f"filter={self.name}"

    def request_for(self, source: FilterSource, payload: bytes) -> ExecutionRequest:
        transfer: FilterTransfer = self.commands.resolve(source.direction)
        return ExecutionRequest(
            command=transfer.command,
            substitution_path=source.path,
            payload=payload,
            cwd=source.workdir,
        )

    async def apply(self, source: FilterSource, payload: bytes) -> bytes:
        request = self.request_for(source, payload)
        logger.debug(
            "Applying process filter.",
            filter=str(self.name),
            direction=str(source.direction),
            path=source.path,
        )
        return await run_filter_command(
            request,
            timeout_seconds=self.config.timeout_seconds,
            stream_threshold=self.config.stream_threshold_bytes,
            diagnostic_observer=self.diagnostic_observer,
        )

    def apply_sync(self, source: FilterSource, payload: bytes) -> bytes:
        return asyncio.run(self.apply(source, payload))


def _empty_filters() -> dict[FilterName, ProcessFilter]:
    return {}


@dataclass(slots=True)
class FilterRegistry:
    """Registry of active filters keyed by FilterName."""

    _filters: dict[FilterName, ProcessFilter] = field(default_factory=_empty_filters)

    def register(self, process_filter: ProcessFilter) -> FilterRegistration:
        if process_filter.name in self._filters:
            raise ValueError(f"Filter '{process_filter.name}' is already registered")
        self._filters[process_filter.name] = process_filter
        return FilterRegistration(registry=self, name=process_filter.name)

    def unregister(self, name: FilterName) -> None:
        self._filters.pop(name, None)

    def get(self, name: FilterName) -> ProcessFilter:
        if name not in self._filters:
            raise KeyError(f"Unknown filter '{name}'")
        return self._filters[name]

    def names(self) -> tuple[FilterName, ...]:
        return tuple(sorted(self._filters))

    def for_attribute(self, attribute: str) -> ProcessFilter | None:
        """Look up the filter selected by a `filter=<name>` attribute."""

        key, _, value = attribute.partition("=")
        if key.strip() != "filter" or not value.strip():
            return None
        return self._filters.get(FilterName(value.strip()))


@dataclass(slots=True)
class FilterRegistration:
    """Handle that keeps a filter registered until closed."""

    registry: FilterRegistry
    name: FilterName
    _closed: bool = False

    @property
    def attributes(self) -> str:
        return f"filter={self.name}"

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.registry.unregister(self.name)

    def __enter__(self) -> FilterRegistration:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


_DEFAULT_REGISTRY = FilterRegistry()


def get_default_filter_registry() -> FilterRegistry:
    """Return the process-wide registry."""

    return _DEFAULT_REGISTRY


def register_process_filter(
    settings: FilterSettings,
    name: str,
    *,
    registry: FilterRegistry | None = None,
    config: ProcFilterConfig | None = None,
    diagnostic_observer: DiagnosticObserver | None = None,
) -> FilterRegistration:
    """Register a filter whose commands come from the settings store."""

    commands = load_filter_commands(settings, name)
    return register_process_filter_with_commands(
        name,
        commands.clean,
        commands.smudge,
        registry=registry,
        config=config,
        diagnostic_observer=diagnostic_observer,
    )


def register_process_filter_with_commands(
    name: str,
    clean_command: str,
    smudge_command: str,
    *,
    registry: FilterRegistry | None = None,
    config: ProcFilterConfig | None = None,
    diagnostic_observer: DiagnosticObserver | None = None,
) -> FilterRegistration:
    """Register a filter with explicit commands; empty means pass-through."""

    target = registry if registry is not None else _DEFAULT_REGISTRY
    process_filter = ProcessFilter(
        name=FilterName(name),
        commands=FilterCommands(
            clean=CommandTemplate(clean_command),
            smudge=CommandTemplate(smudge_command),
        ),
        config=config or ProcFilterConfig(),
        diagnostic_observer=diagnostic_observer,
    )
    return target.register(process_filter)
