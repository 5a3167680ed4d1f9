"""Prompt template for the intent router node."""

import json

from infra.models import Intent, RoutedIntent

ROUTER_SYSTEM = """You route Telegram user messages to one intent.
Return exactly one line:
INTENT=<run|status|analyze|jobs|chat>;ARG=<text>
Rules:
- status: asking status/health/what is running
- run: asking to run/start pipeline/job
- analyze: explicit ticker/company analysis request
- jobs: asking which jobs/pipelines exist
- chat: everything else
For status/jobs/chat use empty ARG.
For analyze ARG should be ticker if clear (e.g. AAPL), otherwise empty.
For run keep ARG concise."""

# Older routing prompts used "task" for the job listing intent
_ALIASES = {"task": Intent.JOBS}


def build_router_prompt(text: str) -> str:
    return f"Message: {text}"


def _to_intent(value: str) -> Intent:
    value = value.strip().lower()
    if value in _ALIASES:
        return _ALIASES[value]
    try:
        return Intent(value)
    except ValueError:
        return Intent.CHAT


def parse_intent_line(raw: str) -> RoutedIntent:
    """Parse ``INTENT=<x>;ARG=<y>`` (or a JSON object) into a ``RoutedIntent``.

    Unparseable input routes to chat.
    """
    raw = (raw or "").strip()
    if not raw:
        return RoutedIntent()

    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return RoutedIntent(
                intent=_to_intent(str(data.get("intent", ""))),
                argument=str(data.get("argument") or data.get("arg") or "").strip(),
            )

    intent = Intent.CHAT
    argument = ""
    for part in raw.splitlines()[0].split(";"):
        key, sep, value = part.partition("=")
        if not sep:
            continue
        key = key.strip().lower()
        if key == "intent":
            intent = _to_intent(value)
        elif key == "arg":
            argument = value.strip()
    return RoutedIntent(intent=intent, argument=argument)
