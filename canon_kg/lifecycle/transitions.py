"""
Lifecycle Transition Tables

Explicit allowed transitions for documents and content nodes. Anything not
listed is rejected.
"""

from __future__ import annotations

from canon_kg.types import DocumentState, NodeState

DOCUMENT_TRANSITIONS: dict[DocumentState, frozenset[DocumentState]] = {
    DocumentState.PENDING: frozenset({DocumentState.PARSING, DocumentState.ERROR}),
    DocumentState.PARSING: frozenset({DocumentState.PARSED, DocumentState.ERROR}),
    # Linking can be skipped when a document has no relations
    DocumentState.PARSED: frozenset(
        {DocumentState.LINKING, DocumentState.LINKED, DocumentState.ERROR}
    ),
    DocumentState.LINKING: frozenset({DocumentState.LINKED, DocumentState.ERROR}),
    # Embedding can be skipped
    DocumentState.LINKED: frozenset(
        {DocumentState.EMBEDDING, DocumentState.READY, DocumentState.ERROR}
    ),
    DocumentState.EMBEDDING: frozenset({DocumentState.READY, DocumentState.ERROR}),
    DocumentState.READY: frozenset({DocumentState.PENDING}),
    DocumentState.ERROR: frozenset({DocumentState.PENDING}),
}

NODE_TRANSITIONS: dict[NodeState, frozenset[NodeState]] = {
    NodeState.PENDING: frozenset({NodeState.LINKED, NodeState.SKIP, NodeState.ERROR}),
    NodeState.LINKED: frozenset(
        {NodeState.EMBEDDING, NodeState.READY, NodeState.SKIP, NodeState.ERROR}
    ),
    NodeState.EMBEDDING: frozenset({NodeState.READY, NodeState.ERROR}),
    NodeState.READY: frozenset({NodeState.PENDING}),
    NodeState.SKIP: frozenset({NodeState.PENDING}),
    NodeState.ERROR: frozenset({NodeState.PENDING}),
}

_NORMAL_FLOW: tuple[DocumentState, ...] = (
    DocumentState.PENDING,
    DocumentState.PARSING,
    DocumentState.PARSED,
    DocumentState.LINKING,
    DocumentState.LINKED,
    DocumentState.EMBEDDING,
    DocumentState.READY,
)

IN_PROGRESS_STATES: frozenset[DocumentState] = frozenset(
    {DocumentState.PARSING, DocumentState.LINKING, DocumentState.EMBEDDING}
)


def can_transition(current: DocumentState | NodeState, target: DocumentState | NodeState) -> bool:
    """True if `current -> target` is in the document or node table."""
    if isinstance(current, DocumentState):
        return isinstance(target, DocumentState) and target in DOCUMENT_TRANSITIONS[current]
    return isinstance(target, NodeState) and target in NODE_TRANSITIONS[current]


def next_state(current: DocumentState) -> DocumentState | None:
    """Next stage in the normal document flow, or None after ready and for error."""
    if current not in _NORMAL_FLOW or current == DocumentState.READY:
        return None
    return _NORMAL_FLOW[_NORMAL_FLOW.index(current) + 1]


def is_terminal(state: DocumentState | NodeState) -> bool:
    if isinstance(state, DocumentState):
        return state == DocumentState.READY
    return state in (NodeState.READY, NodeState.SKIP)


def is_in_progress(state: DocumentState) -> bool:
    return state in IN_PROGRESS_STATES
