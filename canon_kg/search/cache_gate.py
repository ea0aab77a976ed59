"""
Embedding Cache Gate

Deterministic embedding text and content hashes for registry nodes.

A record is re-embedded only when the hash of its current text differs
from the hash stored with its last embedding, so embedding cost follows
the number of changed records rather than corpus size.
"""

from __future__ import annotations

import hashlib
from typing import Callable, TypeVar

from canon_kg.types import CanonicalEntity, Tag

T = TypeVar("T", CanonicalEntity, Tag)


def hash_content(text: str) -> str:
    """First 16 hex characters of the SHA-256 of the text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def build_entity_text(entity: CanonicalEntity) -> str:
    """
    Build embedding text for a canonical entity.

    Format:
        {name}
        Aliases: {a}, {b}      (only when aliases exist)
        Type: {kind}
    """
    parts = [entity.name]
    aliases = [a for a in entity.aliases if a != entity.name]
    if aliases:
        parts.append(f"Aliases: {', '.join(aliases)}")
    parts.append(f"Type: {entity.entity_kind.value}")
    return "\n".join(parts)


def build_tag_text(tag: Tag) -> str:
    """Build embedding text for a tag: name, aliases, category."""
    parts = [tag.name]
    if tag.aliases:
        parts.append(f"Aliases: {', '.join(tag.aliases)}")
    parts.append(f"Category: {tag.category.value}")
    return "\n".join(parts)


def needs_embedding(content_hash: str, stored_hash: str | None) -> bool:
    return stored_hash is None or stored_hash != content_hash


def select_stale(
    records: list[T],
    build_text: Callable[[T], str],
) -> tuple[list[tuple[T, str, str]], int]:
    """
    Split records into those needing an embedding and those up to date.

    Returns:
        ([(record, text, hash), ...] for stale records, count of fresh records)
    """
    stale: list[tuple[T, str, str]] = []
    fresh = 0
    for record in records:
        text = build_text(record)
        content_hash = hash_content(text)
        if needs_embedding(content_hash, record.embedding_hash):
            stale.append((record, text, content_hash))
        else:
            fresh += 1
    return stale, fresh
