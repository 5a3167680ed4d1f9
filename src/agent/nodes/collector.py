"""Collector node: gathers unseen documents and decides whether a reasoning call is due."""

from typing import Any, Dict, List, Mapping

from loguru import logger

from agent.state import CycleState
from storage import context_docs
from storage.context_docs import ContextDoc


class DocumentCollectorNode:
    def __init__(self, sources: Mapping[str, str], max_docs_per_source: int, cooldown_minutes: int) -> None:
        """
        Args:
            sources: Source name → context docs file path.
            max_docs_per_source: Cap on unseen documents taken from each source.
            cooldown_minutes: Minimum gap between reasoning calls when nothing is new.
        """
        self.sources = dict(sources)
        self.max_docs_per_source = max_docs_per_source
        self.cooldown_minutes = cooldown_minutes

    async def __call__(self, state: CycleState) -> Dict[str, Any]:
        agent_state = state["agent_state"]
        new_docs: Dict[str, List[ContextDoc]] = {}
        for source, path in self.sources.items():
            seen = agent_state.seen_document_ids.get(source, set())
            new_docs[source] = context_docs.load_unseen(path, seen, self.max_docs_per_source)

        has_new = any(new_docs.values())
        cooldown_elapsed = agent_state.reasoning_cooldown_elapsed(self.cooldown_minutes)
        due = has_new or cooldown_elapsed

        counts = ", ".join(f"{source}={len(docs)}" for source, docs in new_docs.items())
        if due:
            logger.info(f"Reasoning due (new docs: {counts}; cooldown elapsed: {cooldown_elapsed})")
        else:
            logger.info(f"Skipping reasoning (no new docs; cooldown {self.cooldown_minutes}m)")
        return {"new_docs": new_docs, "reasoning_due": due}
