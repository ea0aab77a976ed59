"""
Entity and Tag Resolution

Modules:
    canonical_form: Deterministic display-name selection per kind
    entity_resolver: Cross-document mention -> canonical resolution
    tag_resolver: Tag normalization and merging
"""

from canon_kg.resolution.canonical_form import (
    pick_canonical_generic_name,
    pick_canonical_name,
    pick_canonical_org_name,
    pick_canonical_person_name,
    pick_canonical_tag,
)
from canon_kg.resolution.entity_resolver import EntityResolver
from canon_kg.resolution.tag_resolver import TagResolver

__all__ = [
    "EntityResolver",
    "TagResolver",
    "pick_canonical_generic_name",
    "pick_canonical_name",
    "pick_canonical_org_name",
    "pick_canonical_person_name",
    "pick_canonical_tag",
]
