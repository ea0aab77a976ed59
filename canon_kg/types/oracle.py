"""
Semantic Matching Models

Structured request/response shapes exchanged with the semantic-matching
oracle. All cross-references are indices into the lists sent with the
request, so responses stay small and batch-local.
"""

from pydantic import BaseModel, Field

from canon_kg.types.tags import TagCategory


class EntityMatch(BaseModel):
    """A mention judged to refer to an existing canonical entity."""

    mention_index: int = Field(description="Index of the mention in the NEW ENTITIES list")
    canonical_index: int = Field(
        description="Index of the matching entity in the EXISTING CANONICAL ENTITIES list"
    )
    similarity: float = Field(
        description="Confidence that both refer to the same real-world entity (0.0-1.0)"
    )
    reason: str = Field(default="", description="Brief explanation of the match")


class EntityMatchResponse(BaseModel):
    """Oracle decision for one batch of mentions."""

    matches: list[EntityMatch] = Field(
        default_factory=list,
        description="Mentions that match an existing canonical entity",
    )
    new_canonicals: list[int] = Field(
        default_factory=list,
        description="Indices of mentions that are genuinely new entities",
    )


class TagGroup(BaseModel):
    """A set of tags judged to be variants of the same label."""

    canonical_tag: str = Field(
        description="Suggested canonical form (lowercase, hyphenated)"
    )
    category: TagCategory | None = Field(
        default=None,
        description="Category: topic, technology, domain, audience, type, or other",
    )
    variant_indices: list[int] = Field(
        description="Indices of every tag in this group, including the canonical one"
    )
    reason: str = Field(default="", description="Why these tags are the same")


class TagGroupResponse(BaseModel):
    """Oracle grouping of a tag list."""

    groups: list[TagGroup] = Field(
        default_factory=list,
        description="Groups of tags that should be merged (only groups with 2+ tags)",
    )
