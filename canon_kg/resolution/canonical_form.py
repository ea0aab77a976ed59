"""
Canonical Form Selection

Picks the display name for a set of name variants that refer to the same
entity or tag. Pure and deterministic: every rule ends in an alphabetical
tie-break, so permuting the input never changes the output.

Rules by kind:
    Person        title/degree > longer > more name parts > usage
                  > mixed case > alphabetical
    Organization  longer > legal suffix > not all-caps (len > 4) > usage
                  > alphabetical
    Other kinds   longer > usage > alphabetical
    Tag           longer > no digits > has hyphen > already lowercase
                  > alphabetical; output lowercased and hyphenated
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from canon_kg.types.entities import EntityKind, NameCandidate
from canon_kg.types.tags import normalize_tag_name

_TITLE_PREFIX = re.compile(r"^(Dr\.?|Prof\.?|Mr\.?|Mrs\.?|Ms\.?|Sir|Dame|Lord|Lady)\s+", re.IGNORECASE)
_DEGREE_SUFFIX = re.compile(r",\s*(PhD|MD|JD|MBA|MSc|BSc|MA|BA|Esq\.?)$", re.IGNORECASE)
_LEGAL_SUFFIX = re.compile(r"\s+(Inc\.?|LLC|Ltd\.?|Corp\.?|Co\.?|GmbH|SA|AG|PLC)$", re.IGNORECASE)
_DIGIT = re.compile(r"\d")

NameInput = NameCandidate | str


def _coerce(candidates: Iterable[NameInput]) -> list[NameCandidate]:
    """Accept plain strings, drop blank names."""
    result: list[NameCandidate] = []
    for candidate in candidates:
        if isinstance(candidate, str):
            candidate = NameCandidate(name=candidate)
        name = candidate.name.strip()
        if name:
            result.append(NameCandidate(name=name, usage_count=candidate.usage_count))
    return result


def _alphabetical(name: str) -> tuple[str, str]:
    return (name.casefold(), name)


def _is_mixed_case(name: str) -> bool:
    return name != name.upper() and name != name.lower()


def _has_title(name: str) -> bool:
    return bool(_TITLE_PREFIX.search(name) or _DEGREE_SUFFIX.search(name))


def _person_key(candidate: NameCandidate) -> tuple:
    name = candidate.name
    return (
        not _has_title(name),
        -len(name),
        -len(name.split()),
        -candidate.usage_count,
        not _is_mixed_case(name),
        _alphabetical(name),
    )


def _organization_key(candidate: NameCandidate) -> tuple:
    name = candidate.name
    all_caps = name == name.upper() and len(name) > 4
    return (
        -len(name),
        not _LEGAL_SUFFIX.search(name),
        all_caps,
        -candidate.usage_count,
        _alphabetical(name),
    )


def _generic_key(candidate: NameCandidate) -> tuple:
    return (-len(candidate.name), -candidate.usage_count, _alphabetical(candidate.name))


def _tag_key(name: str) -> tuple:
    return (
        -len(name),
        bool(_DIGIT.search(name)),
        "-" not in name,
        name != name.lower(),
        _alphabetical(name),
    )


def pick_canonical_person_name(candidates: Iterable[NameInput]) -> str:
    """Prefer the most complete, most formal form of a person's name."""
    coerced = _coerce(candidates)
    if not coerced:
        return ""
    return min(coerced, key=_person_key).name


def pick_canonical_org_name(candidates: Iterable[NameInput]) -> str:
    """Prefer the full legal name of an organization."""
    coerced = _coerce(candidates)
    if not coerced:
        return ""
    return min(coerced, key=_organization_key).name


def pick_canonical_generic_name(candidates: Iterable[NameInput]) -> str:
    """Prefer the longest name, then the most used."""
    coerced = _coerce(candidates)
    if not coerced:
        return ""
    return min(coerced, key=_generic_key).name


def pick_canonical_tag(names: Iterable[NameInput]) -> str:
    """
    Pick the canonical tag name among variants.

    The winner is returned normalized: "Machine Learning" -> "machine-learning".
    Usage counts are ignored; the surviving tag node is chosen separately.
    """
    coerced = _coerce(names)
    if not coerced:
        return ""
    best = min((c.name for c in coerced), key=_tag_key)
    return normalize_tag_name(best)


def pick_canonical_name(kind: EntityKind | str, candidates: Iterable[NameInput]) -> str:
    """
    Pick the canonical display name for an entity kind.

    Args:
        kind: Entity kind (or "Tag")
        candidates: Name variants, as strings or NameCandidate with usage counts

    Returns:
        The winning name, or "" when no non-blank candidate was given
    """
    value = kind.value if isinstance(kind, EntityKind) else kind
    if value == EntityKind.PERSON.value:
        return pick_canonical_person_name(candidates)
    if value == EntityKind.ORGANIZATION.value:
        return pick_canonical_org_name(candidates)
    if value == "Tag":
        return pick_canonical_tag(candidates)
    return pick_canonical_generic_name(candidates)
