"""
Provider Abstractions

Interfaces for the external model services used by CanonKG:
    - LLMProvider: structured generation for the semantic-matching oracle
    - EmbeddingProvider: vectors for registry search

Implementations:
    llm.OpenAILLMProvider
    embedding.OpenAIEmbeddingProvider
"""

from canon_kg.providers.base import EmbeddingProvider, LLMProvider

__all__ = ["EmbeddingProvider", "LLMProvider"]
