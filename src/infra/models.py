"""Shared Pydantic schemas used across the agent."""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """One turn of a chat-completions conversation."""

    role: str
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatCompletion(BaseModel):
    """Text reply from the reasoning service plus token usage."""

    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class Intent(str, Enum):
    RUN = "run"
    STATUS = "status"
    ANALYZE = "analyze"
    JOBS = "jobs"
    CHAT = "chat"


class RoutedIntent(BaseModel):
    """Structured LLM output for routing a free-text operator message."""

    intent: Intent = Field(
        default=Intent.CHAT,
        description=(
            "status: asking about status/health/what is running. "
            "run: asking to run/start a pipeline or job. "
            "analyze: explicit ticker/company analysis request. "
            "jobs: asking which jobs or pipelines exist. "
            "chat: everything else."
        ),
    )
    argument: str = Field(
        default="",
        description=(
            "Empty for status, jobs and chat. For analyze, the ticker symbol if clear "
            "(e.g. AAPL). For run, the job or pipeline name, kept concise."
        ),
    )


def messages_as_dicts(messages: List[ChatMessage]) -> List[Dict[str, str]]:
    return [m.as_dict() for m in messages]
