"""Stable domain identifier newtypes."""

from typing import NewType

FilterName = NewType("FilterName", str)
CommandTemplate = NewType("CommandTemplate", str)
