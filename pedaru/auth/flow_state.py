"""Single-slot holder for the active authorization attempt."""

from __future__ import annotations

import threading

from .types import FlowState


class FlowStateHolder:
    """Mutex-guarded slot holding at most one active :class:`FlowState`.

    Starting a new attempt replaces the slot wholesale, which is what
    makes a late callback from an older attempt fail state verification.
    """

    def __init__(self) -> None:
        """Initialize an empty holder."""
        self._lock = threading.Lock()
        self._current: FlowState | None = None

    def replace(self, flow: FlowState) -> FlowState | None:
        """Install ``flow`` as the active attempt.

        Returns
        -------
        FlowState or None
            The attempt that was superseded, if any.
        """
        with self._lock:
            previous, self._current = self._current, flow
            return previous

    def current(self) -> FlowState | None:
        """Return the active attempt, or None."""
        with self._lock:
            return self._current

    def match(self, state: str | None) -> FlowState | None:
        """Return the active attempt if ``state`` exactly equals its state.

        The comparison and the read happen under one lock, so the returned
        attempt is the one that was verified even if another starts right after.
        """
        with self._lock:
            if self._current is not None and state == self._current.state:
                return self._current
            return None

    def clear(self, expected: FlowState | None = None) -> bool:
        """Clear the slot.

        Parameters
        ----------
        expected : FlowState, optional
            Only clear if this is still the active attempt. Prevents an
            exchange that finishes late from discarding a newer attempt.

        Returns
        -------
        bool
            True if the slot was cleared.
        """
        with self._lock:
            if expected is not None and self._current is not expected:
                return False
            self._current = None
            return True
