"""Processing state machine for Bronze raw events.

The diagram below is authoritative; every writer consults
:func:`can_transition` before issuing a conditional update::

    Pending ──handler ok──▶ Processed (terminal)
       │
       ├──handler fails, attempts < max──▶ Retry
       │                                     │ backoff elapsed, scheduler
       │   ◀─────────────────────────────────┘
       │
       └──handler fails, attempts == max──▶ Dead (terminal)

``Dead → Pending`` is reachable only through operator requeue, never from a
periodic job. Operators may also dead-letter a ``Retry`` record by hand.
"""

from __future__ import annotations

import enum


class ProcessState(enum.StrEnum):
    """Lifecycle of a stored webhook delivery."""

    PENDING = "pending"
    RETRY = "retry"
    PROCESSED = "processed"
    DEAD = "dead"


TERMINAL_STATES = frozenset({ProcessState.PROCESSED, ProcessState.DEAD})

_AUTOMATIC_TRANSITIONS: dict[ProcessState, frozenset[ProcessState]] = {
    ProcessState.PENDING: frozenset(
        {ProcessState.PROCESSED, ProcessState.RETRY, ProcessState.DEAD}
    ),
    ProcessState.RETRY: frozenset({ProcessState.PENDING}),
    ProcessState.PROCESSED: frozenset(),
    ProcessState.DEAD: frozenset(),
}

# Operator-only edges: requeue and manual dead-lettering.
_MANUAL_TRANSITIONS: dict[ProcessState, frozenset[ProcessState]] = {
    ProcessState.DEAD: frozenset({ProcessState.PENDING}),
    ProcessState.PENDING: frozenset({ProcessState.DEAD}),
    ProcessState.RETRY: frozenset({ProcessState.DEAD}),
}


def can_transition(
    source: ProcessState, target: ProcessState, *, manual: bool = False
) -> bool:
    """Return whether ``source -> target`` is permitted.

    ``manual`` also enables the operator-only edges: the ``dead -> pending``
    requeue and dead-lettering a ``pending`` or ``retry`` record by hand.
    """
    if target in _AUTOMATIC_TRANSITIONS[source]:
        return True
    return manual and target in _MANUAL_TRANSITIONS.get(source, frozenset())


def is_terminal(state: ProcessState) -> bool:
    """Return True when no automatic job may move *state*."""
    return state in TERMINAL_STATES


class IllegalTransitionError(RuntimeError):
    """Raised when code attempts a transition outside the state machine."""

    def __init__(self, source: ProcessState, target: ProcessState) -> None:
        """Record both ends of the rejected transition."""
        self.source = source
        self.target = target
        super().__init__(f"illegal process_state transition {source} -> {target}")


def require_transition(
    source: ProcessState, target: ProcessState, *, manual: bool = False
) -> None:
    """Raise :class:`IllegalTransitionError` unless the edge exists."""
    if not can_transition(source, target, manual=manual):
        raise IllegalTransitionError(source, target)
