"""
Lifecycle Types

Typed processing-state records for documents and content nodes.

    pending -> parsing -> parsed -> linking -> linked -> embedding -> ready

`error` is reachable from every non-terminal state; `ready` and `error`
return to `pending` on reset or retry.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class DocumentState(str, Enum):
    """Per-document processing stage."""

    PENDING = "pending"
    PARSING = "parsing"
    PARSED = "parsed"
    LINKING = "linking"
    LINKED = "linked"
    EMBEDDING = "embedding"
    READY = "ready"
    ERROR = "error"


class NodeState(str, Enum):
    """Per-content-node processing stage."""

    PENDING = "pending"
    LINKED = "linked"
    EMBEDDING = "embedding"
    READY = "ready"
    ERROR = "error"
    SKIP = "skip"


class LifecycleErrorType(str, Enum):
    """Stage at which processing failed."""

    PARSE = "parse"
    LINK = "link"
    EMBED = "embed"


class DocumentRecord(BaseModel):
    """
    Lifecycle record for one document.

    Attributes:
        document_id: Document identifier
        project_id: Owning project
        state: Current stage
        state_changed_at: Time of the last transition
        content_hash: Hash of the content last initialized
        error_type: Failing stage, when state is error
        error_message: Failure description
        retry_count: Number of times the document entered error
    """

    document_id: str
    project_id: str | None = None
    state: DocumentState = DocumentState.PENDING
    state_changed_at: datetime
    content_hash: str | None = None
    error_type: LifecycleErrorType | None = None
    error_message: str | None = None
    retry_count: int = 0
    parse_started_at: datetime | None = None
    parsed_at: datetime | None = None
    linked_at: datetime | None = None
    embedded_at: datetime | None = None


class NodeRecord(BaseModel):
    """Lifecycle record for one content node inside a document."""

    uuid: str
    document_id: str
    label: str = "Content"
    content: str | None = None
    state: NodeState = NodeState.PENDING
    state_changed_at: datetime
    error_type: LifecycleErrorType | None = None
    error_message: str | None = None
    retry_count: int = 0
    embedded_at: datetime | None = None
    embedding_provider: str | None = None
    embedding_model: str | None = None
    embedding: list[float] | None = Field(default=None, repr=False)
