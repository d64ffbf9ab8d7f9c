"""A handler that lets many threads react exactly once to a signal."""

from __future__ import annotations

import threading
from collections.abc import Callable


class AtomicSignalHandler:
    """Tracks whether a signal was triggered and handled, across threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._triggered = False
        self._handled = False

    def is_lock_free(self) -> bool:
        """Whether reading and writing the flags needs no lock (true: plain bool stores)."""
        return True

    def reset(self) -> None:
        """Return to the initial, non-triggered and non-handled state."""
        self._handled = False
        self._triggered = False

    def triggered(self) -> bool:
        return self._triggered

    def handled(self) -> bool:
        return self._handled

    def trigger(self) -> None:
        """Mark the signal as triggered and not yet handled."""
        self._triggered = True
        self._handled = False

    def handle(self, action: Callable[[], object]) -> bool:
        """Run ``action`` once per trigger; return whether this call ran it.

        Concurrent callers wait while the action runs. An action that raises
        still counts as performed, and the exception propagates.
        """
        if not (self._triggered and not self._handled):
            return False
        with self._lock:
            if self._handled:
                return False
            try:
                action()
            finally:
                # the action may have reset the handler itself
                if self._triggered:
                    self._handled = True
            return True