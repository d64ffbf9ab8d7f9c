"""Rulesets of enabled rules and the event sources they belong to."""

from __future__ import annotations

import copy
import heapq
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from .rules import FalcoRule

_EQ_TYPE = re.compile(r"evt\.type\s*==?\s*([\w.-]+)")
_IN_TYPE = re.compile(r"evt\.type\s+in\s*\(([^)]*)\)")


def _condition_event_types(condition: Any) -> frozenset[str]:
    """Event types named by a condition; empty means the condition is unrestricted."""
    declared = getattr(condition, "event_types", None)
    if declared is not None:
        return frozenset(declared)
    if not isinstance(condition, str):
        return frozenset()
    types = set(_EQ_TYPE.findall(condition))
    for group in _IN_TYPE.findall(condition):
        types.update(t.strip() for t in group.split(",") if t.strip())
    return frozenset(types)


def _event_type(event: Any) -> str | None:
    if isinstance(event, Mapping):
        return event.get("type")
    return getattr(event, "type", None)


@dataclass
class _Entry:
    rule: FalcoRule
    filter: Callable[[Any], bool]
    condition: Any
    event_types: frozenset[str]

    def accepts_type(self, etype: str | None) -> bool:
        return not self.event_types or etype is None or etype in self.event_types


class FilterRuleset:
    """A collection of rules with any number of rulesets of enabled rules.

    Rules are added once and enabled or disabled per ruleset id. A rule's
    filter is a callable taking an event and returning whether it matches.
    """

    def __init__(self) -> None:
        self._entries: list[_Entry] = []
        self._enabled: dict[int, set[int]] = {}
        self._index: dict[str | None, list[int]] | None = None

    def add(self, rule: FalcoRule, filter: Callable[[Any], bool], condition: Any) -> None:
        """Add a rule without enabling it in any ruleset."""
        self._entries.append(
            _Entry(copy.copy(rule), filter, condition, _condition_event_types(condition))
        )
        self._index = None

    def clear(self) -> None:
        """Remove every rule and disable everything in every ruleset."""
        self._entries.clear()
        self._enabled.clear()
        self._index = None

    def on_loading_complete(self) -> None:
        """Build the event-type index once all rules have been added."""
        index: dict[str | None, list[int]] = {}
        for pos, entry in enumerate(self._entries):
            keys: Iterable[str | None] = entry.event_types or (None,)
            for key in keys:
                index.setdefault(key, []).append(pos)
        self._index = index

    def _candidates(self, event: Any, ruleset_id: int) -> Iterator[_Entry]:
        enabled = self._enabled.get(ruleset_id)
        if not enabled:
            return
        etype = _event_type(event)
        if self._index is not None and etype is not None:
            positions: Iterable[int] = heapq.merge(
                self._index.get(etype, []), self._index.get(None, [])
            )
        else:
            positions = range(len(self._entries))
        for pos in positions:
            entry = self._entries[pos]
            if pos in enabled and entry.accepts_type(etype):
                yield entry

    def run(self, event: Any, ruleset_id: int = 0) -> FalcoRule | None:
        """Return the first enabled rule matching the event, or None."""
        for entry in self._candidates(event, ruleset_id):
            if entry.filter(event):
                return entry.rule
        return None

    def run_all(self, event: Any, ruleset_id: int = 0) -> list[FalcoRule]:
        """Return every enabled rule matching the event, in the order added."""
        return [e.rule for e in self._candidates(event, ruleset_id) if e.filter(event)]

    def enabled_count(self, ruleset_id: int = 0) -> int:
        """Number of rules enabled in a ruleset."""
        return len(self._enabled.get(ruleset_id, ()))

    def enabled_event_types(self, ruleset_id: int = 0) -> set[str]:
        """Union of the event types named by the rules enabled in a ruleset."""
        types: set[str] = set()
        for pos in self._enabled.get(ruleset_id, ()):
            types |= self._entries[pos].event_types
        return types

    def _name_matches(self, name: str, substring: str, match_exact: bool) -> bool:
        if not substring:
            return True
        return name == substring if match_exact else substring in name

    def _set_by_name(self, substring: str, match_exact: bool, ruleset_id: int, on: bool) -> None:
        self._set(
            (pos for pos, e in enumerate(self._entries)
             if self._name_matches(e.rule.name, substring, match_exact)),
            ruleset_id,
            on,
        )

    def _set_by_tags(self, tags: Iterable[str], ruleset_id: int, on: bool) -> None:
        wanted = set(tags)
        self._set(
            (pos for pos, e in enumerate(self._entries) if e.rule.tags & wanted),
            ruleset_id,
            on,
        )

    def _set(self, positions: Iterable[int], ruleset_id: int, on: bool) -> None:
        enabled = self._enabled.setdefault(ruleset_id, set())
        if on:
            enabled.update(positions)
        else:
            enabled.difference_update(positions)

    def enable(self, substring: str, match_exact: bool = False, ruleset_id: int = 0) -> None:
        """Enable rules whose name matches; an empty substring matches all."""
        self._set_by_name(substring, match_exact, ruleset_id, True)

    def disable(self, substring: str, match_exact: bool = False, ruleset_id: int = 0) -> None:
        """Disable rules whose name matches; an empty substring matches all."""
        self._set_by_name(substring, match_exact, ruleset_id, False)

    def enable_tags(self, tags: Iterable[str], ruleset_id: int = 0) -> None:
        """Enable rules having any of the given tags."""
        self._set_by_tags(tags, ruleset_id, True)

    def disable_tags(self, tags: Iterable[str], ruleset_id: int = 0) -> None:
        """Disable rules having any of the given tags."""
        self._set_by_tags(tags, ruleset_id, False)


class RulesetFactory:
    """Creates new, empty rulesets of a given class."""

    def __init__(self, ruleset_class: type[FilterRuleset] = FilterRuleset) -> None:
        self.ruleset_class = ruleset_class

    def new_ruleset(self) -> FilterRuleset:
        return self.ruleset_class()


@dataclass
class FalcoSource:
    """A data source known to the engine, with its ruleset and factories.

    The filter factory must provide ``new_filtercheck(name)``, returning
    None for fields it does not know.
    """

    name: str = ""
    ruleset: FilterRuleset | None = None
    ruleset_factory: RulesetFactory | None = None
    filter_factory: Any = None
    formatter_factory: Any = None
    rules: list[FalcoRule] = field(default_factory=list)

    def is_field_defined(self, field: str) -> bool:
        """Whether the source's filter factory knows the given field."""
        if self.filter_factory is None:
            raise ValueError(f"source '{self.name}' has no filter factory")
        return self.filter_factory.new_filtercheck(field) is not None