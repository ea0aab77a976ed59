"""
LLM-backed Semantic Matcher

Builds the entity-matching and tag-grouping prompts and asks an LLMProvider
for structured output. Prompt construction lives here so the resolution
engines can be driven by any SemanticMatcher.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from canon_kg.errors import OracleMalformedResponse, OracleUnavailableError
from canon_kg.oracle.base import SemanticMatcher
from canon_kg.types import (
    CanonicalEntity,
    EntityKind,
    EntityMatchResponse,
    EntityMention,
    Tag,
    TagGroupResponse,
)

if TYPE_CHECKING:
    from canon_kg.providers.base import LLMProvider

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# LLM Prompts
# -----------------------------------------------------------------------------

_ENTITY_MATCH_SYSTEM_PROMPT = """\
You are resolving entities for a cross-document knowledge graph.

Your task: for each entity in the NEW ENTITIES list, decide whether it is the
same real-world entity as one of the EXISTING CANONICAL ENTITIES.

## MATCH - same real-world entity, different surface form:
- Full and short names: "Microsoft Corporation" = "Microsoft"
- Common abbreviations: "JS" = "JavaScript", "NYC" = "New York City"
- Titles and honorifics: "Dr. John Smith" = "John Smith"
- Spelling and alias variants listed in parentheses

## DO NOT MATCH - same or similar name, different entity:
- Homonyms across domains: "Apple" (company) vs "Apple" (fruit)
- "Python" (language) vs "Python" (snake)
- Different people sharing a surname: "John Smith" vs "James Smith"

## Output Rules
- For a match, report the new entity index, the canonical index, a
  similarity between 0.0 and 1.0, and a short reason
- Only match when confident (similarity 0.8 or higher). Creating a new
  canonical entity is better than merging two distinct entities
- Every new entity that matches nothing goes into new_canonicals
- Use only indices that appear in the lists"""

_ENTITY_MATCH_USER_TEMPLATE = """\
ENTITY TYPE: {kind}

NEW ENTITIES:
{mention_list}

EXISTING CANONICAL ENTITIES:
{canonical_list}

Match these {kind} entities to existing canonical entities or mark them as new."""

_TAG_GROUP_SYSTEM_PROMPT = """\
You are deduplicating thematic tags.

Your task: find tags that name the SAME concept and should be merged.

## SAME concept despite different:
- Capitalization: "Machine Learning" = "machine learning"
- Spacing or hyphens: "machine-learning" = "machine learning"
- Abbreviations: "ML" = "machine-learning", "JS" = "javascript"
- Plurals: "api" = "apis"

## For each group:
- Suggest a canonical form (lowercase, hyphenated, full words preferred)
- List the indices of every tag in the group
- Pick a category:
    topic       general subject areas (ai, web-development)
    technology  languages, frameworks, tools (typescript, react, neo4j)
    domain      industries or application areas (healthcare, finance)
    audience    target readers (beginners, data-scientists)
    type        content types (tutorial, reference, guide)
    other       anything else

## Output Rules
- Only group tags when you are confident they are the same concept
- Omit tags that have no equivalent"""

_TAG_GROUP_USER_TEMPLATE = """\
TAGS ({count}):
{tag_list}

Group these tags by semantic equivalence."""


def format_entity_list(entities: list[EntityMention] | list[CanonicalEntity]) -> str:
    """Render entities as "[i] name (aliases: a, b)" lines."""
    lines = []
    for i, entity in enumerate(entities):
        aliases = [a for a in entity.aliases if a != entity.name]
        alias_part = f" (aliases: {', '.join(aliases)})" if aliases else ""
        lines.append(f"[{i}] {entity.name}{alias_part}")
    return "\n".join(lines)


def format_tag_list(tags: list[Tag]) -> str:
    """Render tags as '[i] "name" (category: c, usage: u)' lines."""
    return "\n".join(
        f'[{i}] "{tag.name}" (category: {tag.category.value}, usage: {tag.usage_count})'
        for i, tag in enumerate(tags)
    )


class LLMSemanticMatcher(SemanticMatcher):
    """
    Semantic matcher backed by an LLMProvider's structured output.

    Usage:
        matcher = LLMSemanticMatcher(OpenAILLMProvider(model="gpt-4o-mini"))
        response = await matcher.match_entities(kind, mentions, canonicals)
    """

    def __init__(self, llm_provider: "LLMProvider", temperature: float = 0.2) -> None:
        self.llm = llm_provider
        self.temperature = temperature

    async def _call(self, prompt: str, schema, system: str):
        try:
            response = await self.llm.generate_structured(
                prompt, schema, system=system, temperature=self.temperature
            )
        except ValueError as e:
            # pydantic ValidationError and LangChain OutputParserException
            raise OracleMalformedResponse(f"Unparseable {schema.__name__}: {e}") from e
        except Exception as e:
            raise OracleUnavailableError(f"LLM call failed: {e}") from e

        if not isinstance(response, schema):
            raise OracleMalformedResponse(
                f"Expected {schema.__name__}, got {type(response).__name__}"
            )
        return response

    async def match_entities(
        self,
        kind: EntityKind,
        mentions: list[EntityMention],
        canonicals: list[CanonicalEntity],
    ) -> EntityMatchResponse:
        prompt = _ENTITY_MATCH_USER_TEMPLATE.format(
            kind=kind.value,
            mention_list=format_entity_list(mentions),
            canonical_list=format_entity_list(canonicals),
        )
        logger.debug(
            f"Matching {len(mentions)} {kind.value} mentions against {len(canonicals)} canonicals"
        )
        return await self._call(prompt, EntityMatchResponse, _ENTITY_MATCH_SYSTEM_PROMPT)

    async def group_tags(self, tags: list[Tag]) -> TagGroupResponse:
        prompt = _TAG_GROUP_USER_TEMPLATE.format(
            count=len(tags),
            tag_list=format_tag_list(tags),
        )
        return await self._call(prompt, TagGroupResponse, _TAG_GROUP_SYSTEM_PROMPT)
