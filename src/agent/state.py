"""State definitions for the LangGraph heartbeat workflow."""

from typing import Dict, List, Optional, TypedDict

from infra.cancellation import CancelToken
from storage.context_docs import ContextDoc
from storage.state import AgentState


class CycleState(TypedDict, total=False):
    """State passed between nodes of one heartbeat cycle."""

    agent_state: AgentState
    cancel: CancelToken
    pipeline_ok: bool
    #: source name → unseen documents collected this cycle
    new_docs: Dict[str, List[ContextDoc]]
    reasoning_due: bool
    #: reply text, or the failure placeholder; None when no call was made
    summary: Optional[str]
    reasoning_ok: bool
    error: Optional[str]
