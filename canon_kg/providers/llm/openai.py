"""
OpenAI Matching Model (LangChain ChatOpenAI)

Backs the semantic-matching oracle. Every call is a single structured-output
request; the response schema is the oracle's pydantic model, so the model
answers with index references instead of free text.

The core never times out oracle calls itself. The request timeout and the
client retry budget configured here are the only bound on a matching call.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

from canon_kg.providers.base import LLMProvider

if TYPE_CHECKING:
    from langchain_openai import ChatOpenAI
    from pydantic import BaseModel

T = TypeVar("T", bound="BaseModel")

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAILLMProvider(LLMProvider):
    """
    Structured-output chat model for entity matching and tag grouping.

    Args:
        api_key: OpenAI API key. If None, uses OPENAI_API_KEY environment variable.
        model: Chat model name
        timeout: Seconds before a matching request is abandoned
        max_retries: Client-side retries for transient API errors
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float | None = 60.0,
        max_retries: int = 2,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._max_retries = max_retries
        # One client per temperature; matching and grouping may differ
        self._clients: dict[float, ChatOpenAI] = {}

    def _client_for(self, temperature: float) -> "ChatOpenAI":
        if temperature in self._clients:
            return self._clients[temperature]

        try:
            from langchain_openai import ChatOpenAI
        except ImportError:
            raise ImportError(
                "The OpenAI matching model requires the 'langchain-openai' package. "
                "Install with: pip install langchain-openai"
            )

        kwargs: dict[str, Any] = {
            "model": self._model,
            "temperature": temperature,
            "timeout": self._timeout,
            "max_retries": self._max_retries,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key

        client = ChatOpenAI(**kwargs)
        self._clients[temperature] = client
        return client

    @property
    def model_name(self) -> str:
        return self._model

    async def generate_structured(
        self,
        prompt: str,
        schema: type[T],
        *,
        system: str | None = None,
        temperature: float = 0.0,
    ) -> T:
        """
        Ask the model for an instance of schema.

        Errors from the client (timeouts, connection failures, schema
        validation) propagate unchanged; the oracle layer classifies them.
        """
        from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

        messages: list[BaseMessage] = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))

        start = time.perf_counter_ns()
        structured = self._client_for(temperature).with_structured_output(schema)
        result = await structured.ainvoke(messages)
        elapsed_ms = (time.perf_counter_ns() - start) // 1_000_000

        logger.debug(
            f"{self._model} -> {schema.__name__} in {elapsed_ms}ms "
            f"(prompt {len(prompt)} chars)"
        )
        return result  # type: ignore[return-value]
