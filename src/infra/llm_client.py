"""Provider-agnostic async client for the reasoning service.

Architecture:
    BaseLLMClient (ABC)
        OpenAIClient          -- hosted OpenAI-compatible API (OpenAI, OpenRouter) via AsyncOpenAI
        LocalInferenceClient  -- local OpenAI-compatible endpoint (e.g. Ollama, llama.cpp)

Both implementations wrap ``AsyncOpenAI`` for plain chat and an
instructor-patched client for structured output.

Factory:
    create_llm_client(settings) -> BaseLLMClient
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type, TypeVar

import instructor
import openai
from loguru import logger
from openai import AsyncOpenAI
from pydantic import BaseModel

from infra.models import ChatCompletion, ChatMessage, messages_as_dicts
from utils.config import Settings


T = TypeVar("T", bound=BaseModel)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
LOCAL_BASE_URL = "http://localhost:11434/v1"

# Transient HTTP errors worth retrying (gateway/server-side failures)
_RETRYABLE_CODES = (502, 503, 504)
_MAX_RETRIES = 2
_RETRY_BASE_DELAY = 5.0  # seconds, doubles each retry


class LLMClientError(Exception):
    """Raised on reasoning-service errors (rate limiting, network, bad response)."""
    pass


def _status_code(e: Exception) -> Optional[int]:
    if isinstance(e, openai.APIStatusError):
        return e.status_code
    return None


def _is_retryable(e: Exception) -> bool:
    """Return True if the error signals a transient server-side failure."""
    if isinstance(e, (openai.APIConnectionError, openai.APITimeoutError)):
        return True
    code = _status_code(e)
    if code is not None:
        return code in _RETRYABLE_CODES
    error_str = str(e)
    return any(str(c) in error_str for c in _RETRYABLE_CODES)


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class BaseLLMClient(ABC):
    """Interface every reasoning provider implementation must satisfy.

    The orchestrator and agent nodes depend only on this interface, so tests
    can substitute an in-memory fake.
    """

    model: str
    temperature: float
    max_tokens: int

    @abstractmethod
    async def chat(
        self,
        messages: List[ChatMessage],
        context: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ChatCompletion:
        """Send a chat-completions request and return the reply text and usage.

        Args:
            messages: Ordered conversation, system prompt first.
            context: Optional label for log messages.
            temperature: Per-call temperature override.

        Raises:
            LLMClientError: On API failures including rate limiting.
        """

    @abstractmethod
    async def complete_structured(
        self,
        messages: List[ChatMessage],
        response_model: Type[T],
        context: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> T:
        """Call the LLM and return a validated Pydantic instance.

        Raises:
            LLMClientError: On API failures or unparseable output.
        """


# ---------------------------------------------------------------------------
# Shared retry mixin
# ---------------------------------------------------------------------------

class _RetryMixin:
    """Shared retry / backoff classification."""

    _max_retries: int = _MAX_RETRIES
    _retry_base_delay: float = _RETRY_BASE_DELAY

    def _handle_error(
        self,
        e: Exception,
        attempt: int,
        context_str: str,
    ) -> Optional[float]:
        """Classify an exception and return the retry delay, or raise.

        Returns the sleep duration if the call should be retried, raises otherwise.
        """
        error_str = str(e)

        # Rate limit: fail immediately
        if isinstance(e, openai.RateLimitError) or _status_code(e) == 429 or "429" in error_str:
            logger.error(f"LLM rate limited{context_str}: {error_str}")
            raise LLMClientError("Rate limited (429)") from e

        # Transient server error: retry with backoff
        if _is_retryable(e) and attempt < self._max_retries:
            delay = self._retry_base_delay * (2 ** attempt)
            logger.warning(
                f"LLM transient error{context_str} (attempt {attempt + 1}/"
                f"{self._max_retries + 1}): {error_str}, retrying in {delay:.0f}s"
            )
            return delay

        # Non-retryable
        logger.error(f"LLM API error{context_str}: {error_str}")
        raise LLMClientError(f"API request failed: {error_str}") from e


# ---------------------------------------------------------------------------
# OpenAI-compatible implementations
# ---------------------------------------------------------------------------

class _OpenAICompatibleClient(_RetryMixin, BaseLLMClient):
    """Common request loop for every OpenAI-compatible endpoint."""

    _log_label = "LLM"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
        default_headers: Optional[Dict[str, str]] = None,
        raw_client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.api_url = api_url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        # Raw client for text-mode calls
        self._raw_client = raw_client or AsyncOpenAI(
            base_url=api_url,
            api_key=api_key,
            default_headers=default_headers,
            timeout=timeout,
        )
        # Instructor-wrapped client for structured output
        self._instructor_client: Any = instructor.from_openai(
            self._raw_client, mode=instructor.Mode.JSON
        )

    def _log_request(self, kind: str, messages: List[ChatMessage], context_str: str) -> None:
        user_prompt = next((m.content for m in reversed(messages) if m.role == "user"), "")
        logger.debug(
            f"{self._log_label}_{kind}{context_str}:\n{'-'*60}\n{user_prompt[:500]}\n{'-'*60}"
        )

    async def chat(
        self,
        messages: List[ChatMessage],
        context: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ChatCompletion:
        effective_temp = temperature if temperature is not None else self.temperature
        context_str = f" [{context}]" if context else ""
        self._log_request("CHAT", messages, context_str)

        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            try:
                response = await self._raw_client.chat.completions.create(
                    model=self.model,
                    messages=messages_as_dicts(messages),
                    temperature=effective_temp,
                    max_tokens=self.max_tokens,
                )
            except Exception as e:
                last_error = e
                delay = self._handle_error(e, attempt, context_str)
                if delay is not None:
                    await asyncio.sleep(delay)
                continue

            if not response.choices or response.choices[0].message.content is None:
                raise LLMClientError(f"Response missing message content{context_str}")

            usage = response.usage
            completion = ChatCompletion(
                content=response.choices[0].message.content,
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
            )
            logger.debug(
                f"{self._log_label}_CHAT{context_str}: "
                f"tokens prompt={completion.prompt_tokens} completion={completion.completion_tokens}"
            )
            return completion

        raise LLMClientError(
            f"API request failed after {self._max_retries + 1} attempts"
        ) from last_error

    async def complete_structured(
        self,
        messages: List[ChatMessage],
        response_model: Type[T],
        context: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> T:
        effective_temp = temperature if temperature is not None else self.temperature
        context_str = f" [{context}]" if context else ""
        self._log_request("STRUCTURED", messages, context_str)

        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            try:
                return await self._instructor_client.chat.completions.create(
                    model=self.model,
                    messages=messages_as_dicts(messages),
                    temperature=effective_temp,
                    max_tokens=self.max_tokens,
                    response_model=response_model,
                )
            except Exception as e:
                last_error = e
                delay = self._handle_error(e, attempt, context_str)
                if delay is not None:
                    await asyncio.sleep(delay)

        raise LLMClientError(
            f"API request failed after {self._max_retries + 1} attempts"
        ) from last_error


class OpenAIClient(_OpenAICompatibleClient):
    """Hosted OpenAI-compatible API (api.openai.com, OpenRouter, Azure-style proxies)."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 500,
        raw_client: Optional[AsyncOpenAI] = None,
    ) -> None:
        headers = None
        if api_url.startswith(OPENROUTER_BASE_URL):
            headers = {"X-Title": "value-investor-agent"}
        super().__init__(
            api_url=api_url,
            api_key=api_key,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=60.0,
            default_headers=headers,
            raw_client=raw_client,
        )


class LocalInferenceClient(_OpenAICompatibleClient):
    """Local OpenAI-compatible inference server (e.g. Ollama, llama.cpp)."""

    _log_label = "LOCAL"

    def __init__(
        self,
        api_url: str = LOCAL_BASE_URL,
        api_key: str = "local",
        model: str = "llama3.1",
        temperature: float = 0.2,
        max_tokens: int = 500,
        raw_client: Optional[AsyncOpenAI] = None,
    ) -> None:
        super().__init__(
            api_url=api_url,
            # Local servers often accept any non-empty key value
            api_key=api_key or "local",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=120.0,  # local inference can be slower
            raw_client=raw_client,
        )
        logger.info(f"LocalInferenceClient: {self.api_url} | model={self.model}")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_llm_client(config: Settings) -> BaseLLMClient:
    """Instantiate the right client for ``config.llm_provider``.

    Returns:
        A concrete BaseLLMClient implementation.

    Raises:
        ValueError: For an unknown provider name.
    """
    provider = config.llm_provider.strip().lower()

    if provider == "local":
        base_url = config.openai_base_url
        if base_url.startswith("https://api.openai.com"):
            base_url = LOCAL_BASE_URL
        return LocalInferenceClient(
            api_url=base_url,
            api_key=config.openai_api_key,
            model=config.openai_model,
            temperature=config.openai_temperature,
            max_tokens=config.openai_max_tokens,
        )
    if provider == "openrouter":
        base_url = config.openai_base_url
        if base_url.startswith("https://api.openai.com"):
            base_url = OPENROUTER_BASE_URL
        return OpenAIClient(
            api_url=base_url,
            api_key=config.openai_api_key,
            model=config.openai_model,
            temperature=config.openai_temperature,
            max_tokens=config.openai_max_tokens,
        )
    if provider == "openai":
        return OpenAIClient(
            api_url=config.openai_base_url,
            api_key=config.openai_api_key,
            model=config.openai_model,
            temperature=config.openai_temperature,
            max_tokens=config.openai_max_tokens,
        )

    raise ValueError(
        f"Unknown LLM provider '{config.llm_provider}'. "
        "Supported values: 'openai', 'openrouter', 'local'."
    )
