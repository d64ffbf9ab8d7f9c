"""Counters of rule matches by rule and by priority."""

from __future__ import annotations

import threading
from collections.abc import Sequence

from .rules import FalcoRule, Priority, format_priority


class StatsManager:
    """Statistics of rule matches.

    ``on_event`` is thread-safe; the other methods are not meant to run
    concurrently with it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._by_priority: list[int] = []
        self._by_rule_id: list[int] = []

    def clear(self) -> None:
        """Erase all counters."""
        with self._lock:
            self._total = 0
            self._by_priority.clear()
            self._by_rule_id.clear()

    def on_rule_loaded(self, rule: FalcoRule) -> None:
        """Make room for a rule's counters; required before ``on_event``."""
        with self._lock:
            if len(self._by_rule_id) <= rule.id:
                self._by_rule_id.extend([0] * (rule.id + 1 - len(self._by_rule_id)))
            prio = int(rule.priority)
            if len(self._by_priority) <= prio:
                self._by_priority.extend([0] * (prio + 1 - len(self._by_priority)))

    def on_event(self, rule: FalcoRule) -> None:
        """Count one match of the rule."""
        prio = int(rule.priority)
        with self._lock:
            if len(self._by_rule_id) <= rule.id or len(self._by_priority) <= prio:
                raise ValueError("rule id or priority out of bounds")
            self._total += 1
            self._by_rule_id[rule.id] += 1
            self._by_priority[prio] += 1

    def format(self, rules: Sequence[FalcoRule]) -> str:
        """Render the counters; ``rules`` is indexed by rule id."""
        lines = [f"Events detected: {self._total}", "Rule counts by severity:"]
        for prio, count in enumerate(self._by_priority):
            if count > 0:
                lines.append(f"   {format_priority(Priority(prio), True).upper()}: {count}")
        lines.append("Triggered rules by rule name:")
        for rule_id, count in enumerate(self._by_rule_id):
            if count > 0:
                lines.append(f"   {rules[rule_id].name}: {count}")
        return "\n".join(lines) + "\n"