"""Operator command router.

Maps one inbound text to one reply. Slash commands are matched by
case-insensitive prefix; anything else is free-form chat (optionally
classified first by the intent router). Every handler catches its own
errors and replies ``Error: <message>``; only cancellation propagates.
"""

from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from agent.nodes.router import IntentRouterNode
from agent.prompts.analysis_prompt import build_ticker_request
from agent.prompts.context_prompt import build_system_context, top_tickers
from infra.cancellation import CancelToken, OperationCancelled
from infra.llm_client import BaseLLMClient
from infra.models import ChatMessage, Intent
from jobs.engine import JobEngine
from storage.state import AgentState
from utils.config import Settings

Persist = Callable[[AgentState], Awaitable[None]]

STOP_USAGE = "Usage: /stop <job-name|pipeline:name>"
ANALYZE_USAGE = "Usage: /analyze TICKER (e.g. /analyze AAPL)"
STATUS_PREVIEW_CHARS = 200

HELP_TEXT = "\n".join(
    [
        "Commands",
        "/jobs - list jobs, pipelines and running work",
        "/run - start the default pipeline",
        "/run pipeline [name] - start a pipeline",
        "/run <job-name> - start a single job",
        "/stop <job-name|pipeline:name> - cancel a running job or pipeline",
        "/status - agent status",
        "/analyze TICKER - focused analysis of one ticker",
        "Anything else is answered as chat.",
    ]
)


def _strip_prefix(text: str, prefix: str) -> str:
    return text[len(prefix):].strip()


class CommandRouter:
    """Dispatches operator text to the matching handler and returns the reply."""

    def __init__(
        self,
        config: Settings,
        engine: JobEngine,
        llm_client: BaseLLMClient,
        persist: Optional[Persist] = None,
        intent_router: Optional[IntentRouterNode] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.llm_client = llm_client
        self.persist = persist
        self.intent_router = intent_router
        self._handlers: Dict[str, Callable[[str, AgentState, CancelToken], Awaitable[str]]] = {
            "/jobs": self._jobs,
            "/run": self._run,
            "/stop": self._stop,
            "/status": self._status,
            "/analyze": self._analyze,
            "/help": self._help,
        }

    async def handle(self, text: str, agent_state: AgentState, cancel: CancelToken) -> Optional[str]:
        """Return the reply for ``text``, or None for an empty message."""
        text = (text or "").strip()
        if not text:
            return None

        lowered = text.lower()
        for prefix, handler in self._handlers.items():
            if lowered.startswith(prefix):
                return await self._guarded(prefix, handler, text, agent_state, cancel)

        if not text.startswith("/") and self.intent_router is not None:
            return await self._routed(text, agent_state, cancel)
        return await self._guarded("chat", self._chat, text, agent_state, cancel)

    async def _guarded(
        self,
        name: str,
        handler: Callable[[str, AgentState, CancelToken], Awaitable[str]],
        text: str,
        agent_state: AgentState,
        cancel: CancelToken,
    ) -> str:
        try:
            return await handler(text, agent_state, cancel)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.error(f"{name} error: {e}")
            return f"Error: {e}"

    async def _routed(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        result = await self.intent_router({"text": text, "cancel": cancel})
        routed = result["intent"]
        arg = routed.argument.strip()

        if routed.intent == Intent.RUN:
            command = f"/run {arg}" if arg else "/run"
            return await self._guarded("/run", self._run, command, agent_state, cancel)
        if routed.intent == Intent.STATUS:
            return await self._guarded("/status", self._status, "/status", agent_state, cancel)
        if routed.intent == Intent.ANALYZE:
            command = f"/analyze {arg}" if arg else "/analyze"
            return await self._guarded("/analyze", self._analyze, command, agent_state, cancel)
        if routed.intent == Intent.JOBS:
            return await self._guarded("/jobs", self._jobs, "/jobs", agent_state, cancel)
        return await self._guarded("chat", self._chat, text, agent_state, cancel)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _jobs(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        catalog = self.engine.catalog
        jobs = catalog.job_names
        pipelines = catalog.pipeline_names
        lines = [
            "Jobs",
            f"Available jobs ({len(jobs)}): {', '.join(jobs)}",
            f"Available pipelines ({len(pipelines)}): {', '.join(pipelines)}",
        ]
        running = self.engine.list_running()
        if not running:
            lines.append("Running: none")
        else:
            lines.append("Running:")
            lines.extend(f"- {r.key} ({r.status.value})" for r in running)
        return "\n".join(lines)

    async def _run(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        default = self.config.agent_default_pipeline
        remainder = _strip_prefix(text, "/run")

        if not remainder:
            return self._start_pipeline(default, cancel)

        if remainder.lower().startswith("pipeline"):
            name = _strip_prefix(remainder, "pipeline") or default
            return self._start_pipeline(name, cancel)

        if self.engine.start_job(remainder, cancel):
            return f"Started job: {remainder}"
        return f"Could not start job: {remainder} (unknown or already running)"

    def _start_pipeline(self, name: str, cancel: CancelToken) -> str:
        if self.engine.start_pipeline(name, cancel):
            return f"Started pipeline: {name}"
        return f"Could not start pipeline: {name} (unknown or already running)"

    async def _stop(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        target = _strip_prefix(text, "/stop")
        if not target:
            return STOP_USAGE
        if self.engine.cancel(target):
            return f"Cancellation requested: {target}"
        return f"Not running: {target}"

    async def _status(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        if agent_state.last_cycle_at is None:
            last_cycle = "never"
        else:
            last_cycle = agent_state.last_cycle_at.strftime("%Y-%m-%d %H:%M:%S") + " UTC"

        tickers = top_tickers(self.config.important_tickers_path, 5)
        summary = agent_state.last_summary
        if not summary:
            preview = "(none yet)"
        elif len(summary) > STATUS_PREVIEW_CHARS:
            preview = summary[:STATUS_PREVIEW_CHARS] + "..."
        else:
            preview = summary

        return "\n".join(
            [
                "Status",
                f"Last cycle: {last_cycle}",
                f"Cycle count: {agent_state.cycle_count}",
                f"Conversation turns: {len(agent_state.conversation)}",
                f"Top tickers: {', '.join(tickers) if tickers else '(none)'}",
                f"Last analysis: {preview}",
                self._running_summary(),
            ]
        )

    def _running_summary(self) -> str:
        running = self.engine.list_running()
        if not running:
            return "Running jobs: none"
        return "Running jobs: " + ", ".join(f"{r.key} ({r.status.value})" for r in running)

    async def _analyze(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        ticker = _strip_prefix(text, "/analyze").upper()
        if not ticker:
            return ANALYZE_USAGE

        request = build_ticker_request(ticker)
        messages = [
            ChatMessage(role="system", content=build_system_context(self.config)),
            ChatMessage(role="user", content=request),
        ]
        completion = await cancel.guard(self.llm_client.chat(messages, context=f"analyze {ticker}"))
        await self._remember(agent_state, request, completion.content)
        return completion.content

    async def _help(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        return HELP_TEXT

    async def _chat(self, text: str, agent_state: AgentState, cancel: CancelToken) -> str:
        messages: List[ChatMessage] = [
            ChatMessage(role="system", content=build_system_context(self.config))
        ]
        messages.extend(agent_state.conversation)
        messages.append(ChatMessage(role="user", content=text))

        completion = await cancel.guard(self.llm_client.chat(messages, context="chat"))
        await self._remember(agent_state, text, completion.content)
        return completion.content

    async def _remember(self, agent_state: AgentState, user_text: str, reply: str) -> None:
        max_turns = self.config.agent_max_conversation_turns
        agent_state.add_message("user", user_text, max_turns)
        agent_state.add_message("assistant", reply, max_turns)
        if self.persist is not None:
            await self.persist(agent_state)
