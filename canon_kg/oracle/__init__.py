"""
Semantic Matching Oracle

Modules:
    base: SemanticMatcher interface
    llm: LLMSemanticMatcher (prompts + structured output)
"""

from canon_kg.oracle.base import SemanticMatcher
from canon_kg.oracle.llm import LLMSemanticMatcher

__all__ = ["LLMSemanticMatcher", "SemanticMatcher"]
