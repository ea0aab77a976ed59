"""
Document and Node Lifecycle

Modules:
    transitions: Allowed state transitions and state helpers
    tracker: LifecycleTracker (validated transitions, retry, stuck recovery)
"""

from canon_kg.lifecycle.tracker import STUCK_MESSAGE, LifecycleTracker
from canon_kg.lifecycle.transitions import (
    DOCUMENT_TRANSITIONS,
    NODE_TRANSITIONS,
    can_transition,
    is_in_progress,
    is_terminal,
    next_state,
)

__all__ = [
    "DOCUMENT_TRANSITIONS",
    "LifecycleTracker",
    "NODE_TRANSITIONS",
    "STUCK_MESSAGE",
    "can_transition",
    "is_in_progress",
    "is_terminal",
    "next_state",
]
