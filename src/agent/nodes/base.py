"""Base class for LLM-backed agent nodes.

Provides shared infrastructure:
    - LLM client injection
    - _ask(messages, cancel): plain chat call raced against a cancel token
    - _structured_with_fallback(messages, model_class, parse): structured LLM call with text-parse fallback
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel

from infra.cancellation import CancelToken
from infra.llm_client import BaseLLMClient, LLMClientError
from infra.models import ChatCompletion, ChatMessage


T = TypeVar("T", bound=BaseModel)


class BaseNode(ABC):
    """Abstract base for LangGraph agent nodes that talk to the reasoning service."""

    def __init__(self, llm_client: BaseLLMClient) -> None:
        self.llm_client = llm_client

    @abstractmethod
    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """Execute this node and return state updates."""

    async def _ask(
        self,
        messages: List[ChatMessage],
        cancel: Optional[CancelToken] = None,
        context: Optional[str] = None,
    ) -> ChatCompletion:
        """Chat call that raises ``OperationCancelled`` as soon as ``cancel`` fires."""
        call = self.llm_client.chat(messages, context=context)
        if cancel is None:
            return await call
        return await cancel.guard(call)

    async def _structured_with_fallback(
        self,
        messages: List[ChatMessage],
        model_class: Type[T],
        parse: Callable[[str], T],
        cancel: Optional[CancelToken] = None,
        context: Optional[str] = None,
    ) -> T:
        """Call LLM for structured output; fall back to a text call + ``parse`` on failure.

        Raises:
            LLMClientError: When the text-mode call fails as well.
        """
        call = self.llm_client.complete_structured(messages, model_class, context=context)
        try:
            return await (cancel.guard(call) if cancel is not None else call)
        except LLMClientError:
            logger.warning(f"Structured output failed [{context}], falling back to text parse")

        completion = await self._ask(messages, cancel, context)
        return parse(completion.content)
