"""
Tests for the document and content-node lifecycle.

Tests cover:
- Transition tables and helpers
- Validated, compare-and-set document transitions
- Error bookkeeping, retry and stuck recovery
- Content-hash resets on re-initialization
- Bulk node transitions
"""

from datetime import datetime, timedelta, timezone

import pytest

from canon_kg.errors import DocumentNotFoundError, InvalidTransitionError
from canon_kg.lifecycle import (
    STUCK_MESSAGE,
    LifecycleTracker,
    can_transition,
    is_in_progress,
    is_terminal,
    next_state,
)
from canon_kg.storage.memory import MemoryGraphStore
from canon_kg.types import (
    DocumentState,
    LifecycleErrorType,
    NodeRecord,
    NodeState,
)


async def _advance(tracker: LifecycleTracker, document_id: str, *states: DocumentState) -> None:
    for state in states:
        await tracker.transition(document_id, state)


async def _age(store: MemoryGraphStore, document_id: str, minutes: int) -> None:
    record = await store.get_document(document_id)
    await store.update_document(
        document_id,
        record.state,
        {"state_changed_at": datetime.now(timezone.utc) - timedelta(minutes=minutes)},
    )


class TestTransitionTables:
    """Tests for the transition helpers."""

    def test_normal_flow(self):
        assert next_state(DocumentState.PENDING) == DocumentState.PARSING
        assert next_state(DocumentState.EMBEDDING) == DocumentState.READY
        assert next_state(DocumentState.READY) is None
        assert next_state(DocumentState.ERROR) is None

    def test_skips_allowed(self):
        assert can_transition(DocumentState.PARSED, DocumentState.LINKED)
        assert can_transition(DocumentState.LINKED, DocumentState.READY)

    def test_rejected_transitions(self):
        assert not can_transition(DocumentState.PENDING, DocumentState.READY)
        assert not can_transition(DocumentState.READY, DocumentState.ERROR)
        assert not can_transition(DocumentState.ERROR, DocumentState.PARSING)

    def test_states_of_different_machines_never_mix(self):
        assert not can_transition(DocumentState.PENDING, NodeState.LINKED)
        assert can_transition(NodeState.PENDING, NodeState.LINKED)
        assert can_transition(NodeState.LINKED, NodeState.SKIP)

    def test_terminal_and_in_progress(self):
        assert is_terminal(DocumentState.READY)
        assert not is_terminal(DocumentState.ERROR)
        assert is_terminal(NodeState.SKIP)
        assert is_in_progress(DocumentState.LINKING)
        assert not is_in_progress(DocumentState.PARSED)


class TestDocumentTransitions:
    """Tests for LifecycleTracker.transition."""

    @pytest.mark.asyncio
    async def test_full_flow_sets_stage_timestamps(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1", "p1", "hash-1")

        await _advance(
            tracker, "d1",
            DocumentState.PARSING, DocumentState.PARSED, DocumentState.LINKING,
            DocumentState.LINKED, DocumentState.EMBEDDING, DocumentState.READY,
        )

        record = await tracker.store.get_document("d1")
        assert record.state == DocumentState.READY
        assert record.parse_started_at is not None
        assert record.parsed_at is not None
        assert record.linked_at is not None
        assert record.embedded_at is not None

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_state_unchanged(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1")

        with pytest.raises(InvalidTransitionError) as exc:
            await tracker.transition("d1", DocumentState.READY)

        assert exc.value.current == "pending"
        assert exc.value.target == "ready"
        assert await tracker.get_document_state("d1") == DocumentState.PENDING

    @pytest.mark.asyncio
    async def test_unknown_document(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        with pytest.raises(DocumentNotFoundError):
            await tracker.transition("missing", DocumentState.PARSING)
        assert await tracker.get_document_state("missing") is None

    @pytest.mark.asyncio
    async def test_string_targets_accepted(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1")

        record = await tracker.transition("d1", "parsing")

        assert record.state == DocumentState.PARSING

    @pytest.mark.asyncio
    async def test_error_infers_stage_and_counts_retries(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1")
        await _advance(tracker, "d1", DocumentState.PARSING, DocumentState.PARSED)

        record = await tracker.transition("d1", DocumentState.ERROR, error_message="boom")

        assert record.error_type == LifecycleErrorType.LINK
        assert record.error_message == "boom"
        assert record.retry_count == 1

    @pytest.mark.asyncio
    async def test_pending_clears_error_fields(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1")
        await tracker.transition("d1", DocumentState.ERROR, LifecycleErrorType.PARSE, "bad pdf")

        record = await tracker.transition("d1", DocumentState.PENDING)

        assert record.error_type is None
        assert record.error_message is None
        assert record.retry_count == 1

    @pytest.mark.asyncio
    async def test_lost_race_raises(self):
        store = MemoryGraphStore()
        tracker = LifecycleTracker(store)
        await tracker.initialize_document("d1")
        stale = await store.get_document("d1")
        await tracker.transition("d1", DocumentState.PARSING)

        updated = await store.update_document("d1", stale.state, {"state": DocumentState.ERROR})

        assert updated is None
        assert await tracker.get_document_state("d1") == DocumentState.PARSING


class TestInitialization:
    """Tests for initialize_document and content hashes."""

    @pytest.mark.asyncio
    async def test_existing_record_returned(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1", content_hash="h1")
        await tracker.transition("d1", DocumentState.PARSING)

        record = await tracker.initialize_document("d1", content_hash="h1")

        assert record.state == DocumentState.PARSING

    @pytest.mark.asyncio
    async def test_changed_hash_resets_ready_document(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1", content_hash="h1")
        await _advance(
            tracker, "d1",
            DocumentState.PARSING, DocumentState.PARSED,
            DocumentState.LINKED, DocumentState.READY,
        )

        record = await tracker.initialize_document("d1", content_hash="h2")

        assert record.state == DocumentState.PENDING
        assert record.content_hash == "h2"
        assert record.embedded_at is None


class TestCountsAndQueries:
    """Tests for lifecycle reporting."""

    @pytest.mark.asyncio
    async def test_count_by_state_includes_zeros(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1", "p1")
        await tracker.initialize_document("d2", "p1")
        await tracker.initialize_document("d3", "p2")
        await tracker.transition("d2", DocumentState.PARSING)

        counts = await tracker.count_by_state()
        scoped = await tracker.count_by_state("p1")

        assert set(counts) == {s.value for s in DocumentState}
        assert counts["pending"] == 2
        assert counts["parsing"] == 1
        assert counts["ready"] == 0
        assert scoped["pending"] == 1

    @pytest.mark.asyncio
    async def test_documents_in_state(self):
        tracker = LifecycleTracker(MemoryGraphStore())
        await tracker.initialize_document("d1")
        await tracker.initialize_document("d2")
        await tracker.transition("d2", DocumentState.PARSING)

        pending = await tracker.get_documents_in_state(DocumentState.PENDING)
        either = await tracker.get_documents_in_state(
            [DocumentState.PENDING, DocumentState.PARSING]
        )

        assert [r.document_id for r in pending] == ["d1"]
        assert {r.document_id for r in either} == {"d1", "d2"}


class TestRecovery:
    """Tests for retry_errors and reset_stuck_documents."""

    @pytest.mark.asyncio
    async def test_retry_respects_cap(self):
        tracker = LifecycleTracker(MemoryGraphStore(), max_retries=2)
        for document_id in ("d1", "d2"):
            await tracker.initialize_document(document_id)
            await tracker.transition(document_id, DocumentState.ERROR)
        await _advance(tracker, "d2", DocumentState.PENDING, DocumentState.ERROR)

        result = await tracker.retry_errors()

        assert result.reset == 1
        assert result.document_ids == ["d1"]
        record = await tracker.store.get_document("d1")
        assert record.state == DocumentState.PENDING
        assert record.retry_count == 0
        assert record.error_type is None
        assert await tracker.get_document_state("d2") == DocumentState.ERROR

    @pytest.mark.asyncio
    async def test_retry_cap_override(self):
        tracker = LifecycleTracker(MemoryGraphStore(), max_retries=1)
        await tracker.initialize_document("d1")
        await tracker.transition("d1", DocumentState.ERROR)

        assert (await tracker.retry_errors()).reset == 0
        assert (await tracker.retry_errors(max_retries=5)).reset == 1

    @pytest.mark.asyncio
    async def test_stuck_documents_reset(self):
        store = MemoryGraphStore()
        tracker = LifecycleTracker(store, stuck_threshold_minutes=5)
        for document_id in ("old", "fresh", "parsed"):
            await tracker.initialize_document(document_id)
            await tracker.transition(document_id, DocumentState.PARSING)
        await tracker.transition("parsed", DocumentState.PARSED)
        await _age(store, "old", 10)
        await _age(store, "parsed", 10)

        result = await tracker.reset_stuck_documents()

        assert result.document_ids == ["old"]
        record = await store.get_document("old")
        assert record.state == DocumentState.PENDING
        assert record.error_message == STUCK_MESSAGE
        assert record.parse_started_at is None
        assert await tracker.get_document_state("fresh") == DocumentState.PARSING
        assert await tracker.get_document_state("parsed") == DocumentState.PARSED

    @pytest.mark.asyncio
    async def test_stuck_threshold_override(self):
        store = MemoryGraphStore()
        tracker = LifecycleTracker(store)
        await tracker.initialize_document("d1")
        await tracker.transition("d1", DocumentState.PARSING)
        await _age(store, "d1", 2)

        assert (await tracker.reset_stuck_documents()).reset == 0
        assert (await tracker.reset_stuck_documents(threshold_minutes=1)).reset == 1


class TestNodeTransitions:
    """Tests for bulk content-node transitions."""

    async def _tracker(self) -> LifecycleTracker:
        store = MemoryGraphStore()
        now = datetime.now(timezone.utc)
        await store.add_content_nodes([
            NodeRecord(uuid="n1", document_id="d1", content="a", state_changed_at=now),
            NodeRecord(uuid="n2", document_id="d1", content="b", state_changed_at=now),
            NodeRecord(uuid="n3", document_id="d2", content="c", state_changed_at=now),
        ])
        return LifecycleTracker(store)

    @pytest.mark.asyncio
    async def test_moves_only_the_documents_nodes(self):
        tracker = await self._tracker()

        moved = await tracker.transition_nodes("d1", NodeState.LINKED)

        assert moved == 2
        counts = await tracker.count_nodes_by_state()
        assert counts["linked"] == 2
        assert counts["pending"] == 1
        assert counts["skip"] == 0
        needing = await tracker.get_nodes_needing_embedding()
        assert {n.uuid for n in needing} == {"n1", "n2"}

    @pytest.mark.asyncio
    async def test_invalid_from_state_rejected(self):
        tracker = await self._tracker()
        with pytest.raises(InvalidTransitionError):
            await tracker.transition_nodes("d1", NodeState.READY, from_states=[NodeState.PENDING])

    @pytest.mark.asyncio
    async def test_ready_records_model(self):
        tracker = await self._tracker()
        await tracker.transition_nodes("d1", NodeState.LINKED)

        moved = await tracker.transition_nodes(
            "d1", NodeState.READY, embedding_model="text-embedding-3-small"
        )

        assert moved == 2
        ready = await tracker.get_nodes_in_state(NodeState.READY, document_id="d1")
        assert {n.embedding_model for n in ready} == {"text-embedding-3-small"}
        assert all(n.embedded_at is not None for n in ready)

    @pytest.mark.asyncio
    async def test_error_increments_node_retries(self):
        tracker = await self._tracker()

        await tracker.transition_nodes("d2", NodeState.ERROR, error_message="timeout")

        errored = await tracker.get_nodes_in_state([NodeState.ERROR])
        assert [(n.uuid, n.retry_count, n.error_type) for n in errored] == [
            ("n3", 1, LifecycleErrorType.EMBED)
        ]

    @pytest.mark.asyncio
    async def test_mark_node_embedded(self):
        tracker = await self._tracker()

        assert await tracker.mark_node_embedded("n1", [0.1, 0.2], "openai", "m") is True
        assert await tracker.mark_node_embedded("missing", [0.1], "openai", "m") is False
        ready = await tracker.get_nodes_in_state(NodeState.READY)
        assert [n.uuid for n in ready] == ["n1"]
