"""Lists, macros and rules as held by the engine, and rule priorities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class Priority(IntEnum):
    """Rule priorities, from most to least severe."""

    EMERGENCY = 0
    ALERT = 1
    CRITICAL = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFORMATIONAL = 6
    DEBUG = 7


_LONG_NAMES = {
    Priority.EMERGENCY: "Emergency",
    Priority.ALERT: "Alert",
    Priority.CRITICAL: "Critical",
    Priority.ERROR: "Error",
    Priority.WARNING: "Warning",
    Priority.NOTICE: "Notice",
    Priority.INFORMATIONAL: "Informational",
    Priority.DEBUG: "Debug",
}

_SHORT_NAMES = {**_LONG_NAMES, Priority.INFORMATIONAL: "Info"}

_BY_NAME = {name.lower(): prio for prio, name in _LONG_NAMES.items()}
_BY_NAME.update({name.lower(): prio for prio, name in _SHORT_NAMES.items()})


def parse_priority(text: str) -> Priority:
    """Parse a priority name, case-insensitively; raise ValueError if unknown."""
    try:
        return _BY_NAME[text.strip().lower()]
    except (KeyError, AttributeError):
        raise ValueError(f"Invalid priority: {text!r}") from None


def format_priority(priority: Priority | int, short: bool = False) -> str:
    """Return the display name of a priority, optionally in its short form."""
    prio = Priority(priority)
    return (_SHORT_NAMES if short else _LONG_NAMES)[prio]


@dataclass
class FalcoList:
    """A named list of items; its id is unique among loaded lists."""

    used: bool = False
    id: int = 0
    name: str = ""
    items: list[str] = field(default_factory=list)


@dataclass
class FalcoMacro:
    """A named condition fragment; its id is unique among loaded macros."""

    used: bool = False
    id: int = 0
    name: str = ""
    condition: Any = None


@dataclass
class FalcoRule:
    """A rule; its id is unique among loaded rules."""

    id: int = 0
    source: str = ""
    name: str = ""
    description: str = ""
    output: str = ""
    tags: set[str] = field(default_factory=set)
    exception_fields: set[str] = field(default_factory=set)
    priority: Priority = Priority.DEBUG
    condition: Any = None