"""
Document and Node Lifecycle Tracker

Records which processing stage each document and content node is in, so
callers can tell what still needs resolution or embedding.

Transitions are validated against the tables in `transitions` and written
with a compare-and-set on the current state, so two workers cannot both
move a document out of the same state.

Recovery:
    - reset_stuck_documents: in-progress documents older than the threshold
      go back to pending with an explanatory message
    - retry_errors: errored documents under the retry cap go back to pending
    - initialize_document: a changed content hash sends even a ready
      document back to pending
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from canon_kg.errors import DocumentNotFoundError, InvalidTransitionError
from canon_kg.lifecycle.transitions import (
    IN_PROGRESS_STATES,
    NODE_TRANSITIONS,
    can_transition,
)
from canon_kg.types import (
    DocumentRecord,
    DocumentState,
    LifecycleErrorType,
    NodeRecord,
    NodeState,
    RetryResult,
)

if TYPE_CHECKING:
    from canon_kg.storage.base import GraphStore

logger = logging.getLogger(__name__)

STUCK_MESSAGE = "Reset: stuck in processing state"

# Stage blamed when a document errors without an explicit error type
_STAGE_ERRORS: dict[DocumentState, LifecycleErrorType] = {
    DocumentState.PENDING: LifecycleErrorType.PARSE,
    DocumentState.PARSING: LifecycleErrorType.PARSE,
    DocumentState.PARSED: LifecycleErrorType.LINK,
    DocumentState.LINKING: LifecycleErrorType.LINK,
    DocumentState.LINKED: LifecycleErrorType.EMBED,
    DocumentState.EMBEDDING: LifecycleErrorType.EMBED,
}

_STAGE_TIMESTAMPS: dict[DocumentState, str] = {
    DocumentState.PARSING: "parse_started_at",
    DocumentState.PARSED: "parsed_at",
    DocumentState.LINKED: "linked_at",
    DocumentState.READY: "embedded_at",
}

_PENDING_RESET: dict[str, Any] = {
    "error_type": None,
    "error_message": None,
    "parse_started_at": None,
    "parsed_at": None,
    "linked_at": None,
    "embedded_at": None,
}


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class LifecycleTracker:
    """
    State machine over document and content-node lifecycle records.

    Args:
        store: Graph store holding lifecycle records
        stuck_threshold_minutes: Age after which an in-progress document is stuck
        max_retries: Default retry cap for retry_errors
    """

    def __init__(
        self,
        store: "GraphStore",
        *,
        stuck_threshold_minutes: float = 5,
        max_retries: int = 3,
    ) -> None:
        self.store = store
        self.stuck_threshold_minutes = stuck_threshold_minutes
        self.max_retries = max_retries

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def initialize_document(
        self,
        document_id: str,
        project_id: str | None = None,
        content_hash: str | None = None,
    ) -> DocumentRecord:
        """
        Create a pending record, or return the existing one.

        If content_hash differs from the stored hash the record is reset to
        pending, whatever state it was in.
        """
        record = await self.store.initialize_document(
            document_id, project_id, content_hash, datetime.now(timezone.utc)
        )
        logger.debug(f"Document {document_id} initialized in state {record.state.value}")
        return record

    async def transition(
        self,
        document_id: str,
        target: DocumentState | str,
        error_type: LifecycleErrorType | str | None = None,
        error_message: str | None = None,
    ) -> DocumentRecord:
        """
        Move a document to `target`.

        Entering error records the failing stage (inferred from the current
        state when not given) and increments the retry count. Returning to
        pending clears error fields and stage timestamps.

        Raises:
            DocumentNotFoundError: No record for the document
            InvalidTransitionError: The transition is not allowed, or another
                writer moved the document first
        """
        target = DocumentState(target)
        record = await self.store.get_document(document_id)
        if record is None:
            raise DocumentNotFoundError(document_id)
        if not can_transition(record.state, target):
            raise InvalidTransitionError(record.state.value, target.value, document_id)

        now = datetime.now(timezone.utc)
        changes: dict[str, Any] = {"state": target, "state_changed_at": now}
        if target == DocumentState.PENDING:
            changes.update(_PENDING_RESET)
        elif target == DocumentState.ERROR:
            changes["error_type"] = (
                LifecycleErrorType(error_type) if error_type else _STAGE_ERRORS[record.state]
            )
            changes["error_message"] = error_message
            changes["retry_count"] = record.retry_count + 1
        if target in _STAGE_TIMESTAMPS:
            changes[_STAGE_TIMESTAMPS[target]] = now

        updated = await self.store.update_document(document_id, record.state, changes)
        if updated is None:
            current = await self.store.get_document(document_id)
            if current is None:
                raise DocumentNotFoundError(document_id)
            raise InvalidTransitionError(current.state.value, target.value, document_id)

        logger.debug(f"Document {document_id}: {record.state.value} -> {target.value}")
        return updated

    async def get_document_state(self, document_id: str) -> DocumentState | None:
        record = await self.store.get_document(document_id)
        return record.state if record else None

    async def count_by_state(self, project_id: str | None = None) -> dict[str, int]:
        """Document counts for every state, zeros included."""
        counts = await self.store.count_documents_by_state(project_id)
        return {state.value: counts.get(state.value, 0) for state in DocumentState}

    async def get_documents_in_state(
        self,
        states: list[DocumentState] | DocumentState,
        limit: int = 100,
        project_id: str | None = None,
    ) -> list[DocumentRecord]:
        """Documents in any of the states, oldest transition first."""
        if isinstance(states, DocumentState):
            states = [states]
        return await self.store.list_documents(list(states), limit, project_id)

    async def retry_errors(self, max_retries: int | None = None) -> RetryResult:
        """
        Send errored documents below the retry cap back to pending.

        Error fields and the retry count are cleared.
        """
        cap = self.max_retries if max_retries is None else max_retries
        result = RetryResult()
        for record in await self.store.list_documents([DocumentState.ERROR]):
            if record.retry_count >= cap:
                continue
            updated = await self.store.update_document(
                record.document_id,
                DocumentState.ERROR,
                {
                    **_PENDING_RESET,
                    "state": DocumentState.PENDING,
                    "state_changed_at": datetime.now(timezone.utc),
                    "retry_count": 0,
                },
            )
            if updated is not None:
                result.reset += 1
                result.document_ids.append(record.document_id)

        if result.reset:
            logger.info(f"Retrying {result.reset} errored documents")
        return result

    async def reset_stuck_documents(
        self, threshold_minutes: float | None = None
    ) -> RetryResult:
        """Reset documents stuck in parsing, linking or embedding to pending."""
        minutes = self.stuck_threshold_minutes if threshold_minutes is None else threshold_minutes
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=minutes)

        result = RetryResult()
        for record in await self.store.list_documents(sorted(IN_PROGRESS_STATES)):
            if _utc(record.state_changed_at) >= cutoff:
                continue
            updated = await self.store.update_document(
                record.document_id,
                record.state,
                {
                    **_PENDING_RESET,
                    "state": DocumentState.PENDING,
                    "state_changed_at": now,
                    "error_message": STUCK_MESSAGE,
                },
            )
            if updated is not None:
                result.reset += 1
                result.document_ids.append(record.document_id)
                logger.warning(
                    f"Document {record.document_id} stuck in {record.state.value}, reset to pending"
                )
        return result

    # -------------------------------------------------------------------------
    # Content Nodes
    # -------------------------------------------------------------------------

    async def transition_nodes(
        self,
        document_id: str,
        target: NodeState | str,
        from_states: list[NodeState] | None = None,
        embedding_model: str | None = None,
        error_type: LifecycleErrorType | str | None = None,
        error_message: str | None = None,
    ) -> int:
        """
        Move a document's content nodes to `target`.

        Args:
            document_id: Owning document
            target: New node state
            from_states: Only move nodes in these states (default: every
                state allowed to reach target)
            embedding_model: Recorded when moving to ready

        Returns:
            Number of nodes moved

        Raises:
            InvalidTransitionError: A from_state cannot reach target
        """
        target = NodeState(target)
        if from_states is None:
            from_states = [s for s in NodeState if target in NODE_TRANSITIONS[s]]
        else:
            from_states = [NodeState(s) for s in from_states]
            for state in from_states:
                if not can_transition(state, target):
                    raise InvalidTransitionError(state.value, target.value, document_id)

        now = datetime.now(timezone.utc)
        changes: dict[str, Any] = {"state": target, "state_changed_at": now}
        if target == NodeState.PENDING:
            changes.update({"error_type": None, "error_message": None})
        elif target == NodeState.ERROR:
            changes["error_type"] = LifecycleErrorType(error_type or LifecycleErrorType.EMBED)
            changes["error_message"] = error_message
        elif target == NodeState.READY:
            changes["embedded_at"] = now
            if embedding_model:
                changes["embedding_model"] = embedding_model

        moved = await self.store.update_nodes(
            document_id, from_states, changes, increment_retry=target == NodeState.ERROR
        )
        logger.debug(f"Document {document_id}: {moved} nodes -> {target.value}")
        return moved

    async def get_nodes_in_state(
        self,
        states: list[NodeState] | NodeState,
        document_id: str | None = None,
        limit: int | None = None,
    ) -> list[NodeRecord]:
        if isinstance(states, NodeState):
            states = [states]
        return await self.store.list_nodes(list(states), document_id, limit)

    async def count_nodes_by_state(self, document_id: str | None = None) -> dict[str, int]:
        counts = await self.store.count_nodes_by_state(document_id)
        return {state.value: counts.get(state.value, 0) for state in NodeState}

    async def get_nodes_needing_embedding(self, limit: int = 50) -> list[NodeRecord]:
        """Linked nodes waiting for a content embedding."""
        return await self.store.list_nodes([NodeState.LINKED], limit=limit)

    async def mark_node_embedded(
        self,
        uuid: str,
        embedding: list[float],
        provider: str,
        model: str,
    ) -> bool:
        """Store a node's content vector and mark it ready."""
        updated = await self.store.set_node_embeddings(
            [(uuid, embedding)], provider, model, datetime.now(timezone.utc)
        )
        return updated > 0
