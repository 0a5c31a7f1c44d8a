"""Core frozen domain dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar, TypeAlias

from procfilter.lib.types import CommandTemplate

if TYPE_CHECKING:
    from pathlib import Path


class FilterDirection(StrEnum):
    """Which way content is moving through a filter."""

    TO_STORAGE = "clean"
    TO_WORKING_COPY = "smudge"


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    """Program name plus ordered arguments produced by the tokenizer."""

    program: str
    args: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.program

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.program, *self.args)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Everything one executor call needs."""

    command: str
    substitution_path: str
    payload: bytes
    cwd: Path | None = None


@dataclass(frozen=True, slots=True)
class FilterDiagnostic:
    """Non-fatal stderr output from a child that exited successfully."""

    program: str
    message: str


@dataclass(frozen=True, slots=True)
class ToStorage:
    """Clean transfer: working copy into permanent storage."""

    direction: ClassVar[FilterDirection] = FilterDirection.TO_STORAGE
    command: CommandTemplate


@dataclass(frozen=True, slots=True)
class ToWorkingCopy:
    """Smudge transfer: permanent storage into the working copy."""

    direction: ClassVar[FilterDirection] = FilterDirection.TO_WORKING_COPY
    command: CommandTemplate


FilterTransfer: TypeAlias = ToStorage | ToWorkingCopy


@dataclass(frozen=True, slots=True)
class FilterCommands:
    """Configured clean and smudge templates for one filter name.

    Either template may be empty, which makes that direction a pass-through.
    """

    clean: CommandTemplate = CommandTemplate("")
    smudge: CommandTemplate = CommandTemplate("")

    def resolve(self, direction: FilterDirection) -> FilterTransfer:
        match direction:
            case FilterDirection.TO_STORAGE:
                return ToStorage(command=self.clean)
            case FilterDirection.TO_WORKING_COPY:
                return ToWorkingCopy(command=self.smudge)


@dataclass(frozen=True, slots=True)
class FilterSource:
    """What the host hands a filter for one file."""

    path: str
    direction: FilterDirection
    workdir: Path | None = None
