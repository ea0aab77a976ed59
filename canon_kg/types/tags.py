"""
Tag Types

Tags are lowercase, hyphenated thematic labels attached to content nodes.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class TagCategory(str, Enum):
    """Tag classification."""

    TOPIC = "topic"
    TECHNOLOGY = "technology"
    DOMAIN = "domain"
    AUDIENCE = "audience"
    TYPE = "type"
    OTHER = "other"


def normalize_tag_name(name: str) -> str:
    """Lowercase and join words with hyphens: "Machine Learning" -> "machine-learning"."""
    return "-".join(name.strip().lower().split())


class Tag(BaseModel):
    """
    A persisted tag.

    Unique on normalized_name. usage_count only grows, or is summed when
    tags are merged.
    """

    uuid: str
    name: str
    normalized_name: str
    category: TagCategory = TagCategory.OTHER
    aliases: list[str] = Field(default_factory=list)
    usage_count: int = 0
    project_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    embedding: list[float] | None = None
    embedding_hash: str | None = None
    embedded_at: datetime | None = None
