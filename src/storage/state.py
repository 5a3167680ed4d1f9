"""Durable agent bookkeeping.

The whole state is one JSON document. ``save`` writes a temp file next to the
target and renames it over the destination, so a reader or a crash mid-write
never sees a partial file. ``load`` never fails: a missing or unreadable file
yields a fresh state.
"""

import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_serializer

from infra.models import ChatMessage

PathLike = Union[str, Path]


def write_atomic(path: PathLike, content: str) -> None:
    """Write ``content`` to ``path`` via temp file + rename in the same directory."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class AgentState(BaseModel):
    """Cycle counters, reasoning cooldown, conversation and dedup sets."""

    last_cycle_at: Optional[datetime] = None
    last_reasoning_call_at: Optional[datetime] = None
    cycle_count: int = Field(default=0, ge=0)
    last_summary: str = ""
    conversation: List[ChatMessage] = Field(default_factory=list)
    #: document source name → ids already surfaced by a successful reasoning call
    seen_document_ids: Dict[str, Set[str]] = Field(default_factory=dict)

    @field_serializer("seen_document_ids")
    def _serialize_seen(self, value: Dict[str, Set[str]]) -> Dict[str, List[str]]:
        return {source: sorted(ids) for source, ids in sorted(value.items())}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def from_json(cls, text: str) -> "AgentState":
        """Parse a saved document; invalid content yields a fresh state."""
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            logger.warning(f"Agent state unreadable, starting fresh: {e.error_count()} error(s)")
            return cls()

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def load(cls, path: PathLike) -> "AgentState":
        state_path = Path(path)
        if not state_path.exists():
            logger.info(f"No agent state at {state_path}, starting fresh")
            return cls()
        try:
            text = state_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read agent state {state_path}: {e}")
            return cls()
        return cls.from_json(text)

    def save(self, path: PathLike) -> None:
        write_atomic(path, self.to_json())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mark_cycle_complete(self, summary: Optional[str] = None) -> None:
        """Stamp a finished heartbeat cycle. ``None`` keeps the previous summary."""
        self.last_cycle_at = datetime.now(timezone.utc)
        self.cycle_count += 1
        if summary is not None:
            self.last_summary = summary

    def mark_reasoning_attempt(self) -> None:
        """Record a reasoning call *before* it is issued so the cooldown survives a crash."""
        self.last_reasoning_call_at = datetime.now(timezone.utc)

    def add_message(self, role: str, content: str, max_turns: int) -> None:
        self.conversation.append(ChatMessage(role=role, content=content))
        if max_turns > 0 and len(self.conversation) > max_turns:
            del self.conversation[: len(self.conversation) - max_turns]

    def is_seen(self, source: str, doc_id: str) -> bool:
        return doc_id in self.seen_document_ids.get(source, set())

    def mark_seen(self, source: str, doc_ids: Iterable[str]) -> None:
        ids = [d for d in doc_ids if d and d.strip()]
        if ids:
            self.seen_document_ids.setdefault(source, set()).update(ids)

    def reasoning_cooldown_elapsed(self, min_minutes: int, now: Optional[datetime] = None) -> bool:
        """True when a heartbeat reasoning call is allowed without new documents."""
        if min_minutes <= 0 or self.last_reasoning_call_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        elapsed = (now - self.last_reasoning_call_at).total_seconds()
        return elapsed >= min_minutes * 60
