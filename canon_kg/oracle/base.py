"""
Semantic Matching Oracle Interface

The oracle judges whether differently written names refer to the same
real-world thing. Requests and responses use list indices, so each call is
stateless and can be issued for disjoint batches.

Implementations raise:
    OracleMalformedResponse  when a response cannot be applied
    OracleUnavailableError   when the oracle cannot be reached
"""

from abc import ABC, abstractmethod

from canon_kg.types import (
    CanonicalEntity,
    EntityKind,
    EntityMatchResponse,
    EntityMention,
    Tag,
    TagGroupResponse,
)


class SemanticMatcher(ABC):
    """Abstract interface for the semantic-matching oracle."""

    @abstractmethod
    async def match_entities(
        self,
        kind: EntityKind,
        mentions: list[EntityMention],
        canonicals: list[CanonicalEntity],
    ) -> EntityMatchResponse:
        """Match a batch of mentions against the candidate canonicals of one kind."""
        ...

    @abstractmethod
    async def group_tags(self, tags: list[Tag]) -> TagGroupResponse:
        """Group tags that are variants of the same label."""
        ...
