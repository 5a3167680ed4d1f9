"""User prompts for heartbeat summaries and ticker analysis."""

from typing import Dict, List

from storage.context_docs import ContextDoc, render

CYCLE_INSTRUCTION = (
    "Analyze the latest data and surface the top 3-5 most actionable investment insights. "
    "Focus on recent changes and avoid repeating previously reported points."
)

NO_NEW_DOCS_INSTRUCTION = (
    "No newly-seen docs were detected. Provide only genuinely new or changed conclusions."
)

SOURCE_LABELS = {"dataroma": "Dataroma", "vic": "VIC"}


def _label(source: str) -> str:
    return SOURCE_LABELS.get(source, source.title())


def build_cycle_request(new_docs: Dict[str, List[ContextDoc]]) -> str:
    """Build the heartbeat request.

    Args:
        new_docs: Source name → documents not yet surfaced, in source order.

    Returns:
        Prompt listing per-source counts, then the new documents grouped by source.
    """
    lines = [CYCLE_INSTRUCTION, ""]
    for source, docs in new_docs.items():
        lines.append(f"New {_label(source)} docs this cycle: {len(docs)}")

    if not any(new_docs.values()):
        lines.append(NO_NEW_DOCS_INSTRUCTION)
        return "\n".join(lines) + "\n"

    for source, docs in new_docs.items():
        if not docs:
            continue
        lines.extend(["", f"=== NEW {_label(source).upper()} DOCS ==="])
        for doc in docs:
            lines.extend([render(doc), ""])
    return "\n".join(lines).rstrip() + "\n"


def build_ticker_request(ticker: str) -> str:
    return (
        f"Provide a thorough, actionable analysis of {ticker} based on all available data. "
        "Include: recent investor activity, key financial metrics, valuation, risks, "
        "and a clear recommendation."
    )
