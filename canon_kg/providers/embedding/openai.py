"""
OpenAI Embeddings (LangChain OpenAIEmbeddings)

Vectors for registry search. Canonical entities and tags are embedded from
short descriptive texts, so requests are small; the vector index dimension
must equal `dimensions`, which text-embedding-3 models can truncate to.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from canon_kg.providers.base import EmbeddingProvider

if TYPE_CHECKING:
    from langchain_openai import OpenAIEmbeddings

logger = logging.getLogger(__name__)

NATIVE_DIMENSIONS = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
}

# Only text-embedding-3 models accept a dimensions parameter
_TRUNCATABLE = ("text-embedding-3-small", "text-embedding-3-large")


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Args:
        api_key: OpenAI API key. If None, uses OPENAI_API_KEY environment variable.
        model: Embedding model name
        dimensions: Requested vector size; defaults to the model's native size
        timeout: Seconds before an embedding request is abandoned
        max_retries: Client-side retries for transient API errors
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        timeout: float | None = 30.0,
        max_retries: int = 2,
    ) -> None:
        native = NATIVE_DIMENSIONS.get(model)
        if dimensions is not None and native is not None and dimensions != native:
            if model not in _TRUNCATABLE or dimensions > native:
                raise ValueError(
                    f"{model} produces {native}-dimensional vectors; "
                    f"cannot serve {dimensions}"
                )
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions or native or 1536
        # Send dimensions only when truncating
        self._truncate = native is not None and self._dimensions != native
        self._timeout = timeout
        self._max_retries = max_retries
        self._client: OpenAIEmbeddings | None = None

    def _get_client(self) -> "OpenAIEmbeddings":
        if self._client is not None:
            return self._client

        try:
            from langchain_openai import OpenAIEmbeddings
        except ImportError:
            raise ImportError(
                "OpenAI embeddings require the 'langchain-openai' package. "
                "Install with: pip install langchain-openai"
            )

        kwargs: dict[str, Any] = {
            "model": self._model,
            "timeout": self._timeout,
            "max_retries": self._max_retries,
        }
        if self._truncate:
            kwargs["dimensions"] = self._dimensions
        if self._api_key:
            from pydantic import SecretStr
            kwargs["api_key"] = SecretStr(self._api_key)

        self._client = OpenAIEmbeddings(**kwargs)
        return self._client

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "openai"

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in one request; output order matches input."""
        if not texts:
            return []
        client = self._get_client()
        # embed_documents is synchronous
        vectors = await asyncio.to_thread(client.embed_documents, texts)
        logger.debug(f"Embedded {len(texts)} texts with {self._model}")
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        """Embed a search query or a single registry record."""
        client = self._get_client()
        return await asyncio.to_thread(client.embed_query, text)
