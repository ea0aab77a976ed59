"""
Model Provider Interfaces

LLMProvider backs the semantic-matching oracle; EmbeddingProvider backs
registry search and embedding maintenance. Both are stateless from the
caller's view and may be shared by concurrent resolution and search calls.
"""

from abc import ABC, abstractmethod
from typing import TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class LLMProvider(ABC):
    """Structured-output model used by LLMSemanticMatcher."""

    @abstractmethod
    async def generate_structured(
        self,
        prompt: str,
        schema: type[T],
        *,
        system: str | None = None,
        temperature: float = 0.0,
    ) -> T:
        """
        Return an instance of schema for the prompt.

        Implementations raise whatever their client raises; a response that
        does not fit the schema surfaces as pydantic.ValidationError.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...


class EmbeddingProvider(ABC):
    """Vector source for canonical entities, tags, queries and content nodes."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """One vector per text, in input order."""
        ...

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Vector size; the store's vector indexes are created with it."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @property
    def provider_name(self) -> str:
        """Recorded on content nodes next to the model name."""
        return type(self).__name__
