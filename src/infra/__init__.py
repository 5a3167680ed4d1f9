"""Provider-agnostic infrastructure layer: LLM client, cancellation, logging."""

from infra.cancellation import CancelToken, OperationCancelled
from infra.llm_client import BaseLLMClient, LLMClientError, create_llm_client
from infra.models import ChatCompletion, ChatMessage, Intent, RoutedIntent

__all__ = [
    "BaseLLMClient",
    "CancelToken",
    "ChatCompletion",
    "ChatMessage",
    "Intent",
    "LLMClientError",
    "OperationCancelled",
    "RoutedIntent",
    "create_llm_client",
]
