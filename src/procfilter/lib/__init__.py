"""Core procfilter library exports."""

from procfilter.lib.domain import (
    ExecutionRequest,
    FilterCommands,
    FilterDiagnostic,
    FilterDirection,
    FilterSource,
    ParsedCommand,
    ToStorage,
    ToWorkingCopy,
)
from procfilter.lib.types import CommandTemplate, FilterName

__all__ = [
    "CommandTemplate",
    "ExecutionRequest",
    "FilterCommands",
    "FilterDiagnostic",
    "FilterDirection",
    "FilterName",
    "FilterSource",
    "ParsedCommand",
    "ToStorage",
    "ToWorkingCopy",
]
