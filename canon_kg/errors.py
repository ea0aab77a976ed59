"""
Exception Taxonomy

    CanonKGError
    ├── ConstraintViolationError   store rejected a write on a uniqueness key
    ├── StoreUnavailableError      graph store cannot be reached
    ├── OracleError
    │   ├── OracleMalformedResponse   response unusable for this batch
    │   └── OracleUnavailableError    oracle cannot be reached
    ├── EmbeddingError
    └── LifecycleError
        ├── InvalidTransitionError
        └── DocumentNotFoundError

ConstraintViolationError is an expected outcome when concurrent writers race
to create the same canonical entity or tag; callers recover by re-reading.
"""

from __future__ import annotations

from typing import Any


class CanonKGError(Exception):
    """Base class for all canon_kg errors."""


class ConstraintViolationError(CanonKGError):
    """A write collided with an existing node on a uniqueness key."""

    def __init__(self, label: str, key: dict[str, Any], message: str | None = None) -> None:
        self.label = label
        self.key = key
        super().__init__(message or f"{label} already exists for {key}")


class StoreUnavailableError(CanonKGError):
    """The graph store could not be reached."""


class OracleError(CanonKGError):
    """Base class for semantic-matching oracle failures."""


class OracleMalformedResponse(OracleError):
    """The oracle answered, but the answer cannot be applied."""


class OracleUnavailableError(OracleError):
    """The oracle could not be reached."""


class EmbeddingError(CanonKGError):
    """The embedding provider failed."""


class LifecycleError(CanonKGError):
    """Base class for lifecycle tracker errors."""


class InvalidTransitionError(LifecycleError):
    """A state change not present in the transition table."""

    def __init__(self, current: str, target: str, subject: str | None = None) -> None:
        self.current = current
        self.target = target
        self.subject = subject
        where = f" for {subject}" if subject else ""
        super().__init__(f"Invalid transition{where}: {current} -> {target}")


class DocumentNotFoundError(LifecycleError):
    """No lifecycle record exists for the document."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")
