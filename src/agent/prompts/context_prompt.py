"""System prompt assembled from the data the collection jobs leave in ``out_dir``."""

import json
from pathlib import Path
from typing import Any, List, Optional

from loguru import logger

from storage import context_docs
from utils.config import Settings

PREAMBLE = (
    "You are a proactive investment research assistant. You have access to the user's "
    "portfolio and investment research data.\n"
    "Analyze the data and provide actionable insights. Be concise, specific, and data-driven."
)

NO_DATA = "(no data available)"
TRUNCATED_SUFFIX = "\n[... truncated ...]"


def truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` including the truncation marker."""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - len(TRUNCATED_SUFFIX))] + TRUNCATED_SUFFIX


def _read(path: str) -> Optional[str]:
    if not path or not Path(path).is_file():
        return None
    try:
        return Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Could not read {path}: {e}")
        return None


def _format_score(score: Any) -> str:
    if isinstance(score, bool) or score is None:
        return json.dumps(score)
    if isinstance(score, (int, float)):
        return f"{score:.2f}".rstrip("0").rstrip(".")
    return str(score)


def _tickers_section(path: str, budget: int) -> str:
    content = _read(path)
    if content is None:
        return NO_DATA
    try:
        items = json.loads(content)
    except json.JSONDecodeError:
        return NO_DATA
    if not isinstance(items, list) or not items:
        return NO_DATA

    lines = [f"{'Ticker':<10} {'Score':>10}", "-" * 22]
    for item in items:
        if not isinstance(item, dict):
            continue
        ticker = item.get("ticker") or ""
        if not isinstance(ticker, str) or not ticker:
            continue
        score = _format_score(item["score"]) if "score" in item else "?"
        lines.append(f"{ticker:<10} {score:>10}")
    return truncate("\n".join(lines), budget)


def _overview_section(path: str, budget: int) -> str:
    content = _read(path)
    if content is None:
        return NO_DATA

    blocks: List[str] = []
    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(record, dict):
            continue
        lines: List[str] = []
        ticker = record.get("ticker")
        if isinstance(ticker, str) and ticker:
            lines.append(f"[{ticker}]")
        for key, value in record.items():
            if key.lower() == "ticker":
                continue
            rendered = value if isinstance(value, str) else json.dumps(value)
            lines.append(f"  {key}: {rendered}")
        blocks.append("\n".join(lines))

    result = "\n\n".join(blocks).rstrip()
    return truncate(result, budget) if result else NO_DATA


def _docs_section(path: str, budget: int) -> str:
    content = _read(path)
    if content is None:
        return NO_DATA
    docs = context_docs.parse(content)
    if not docs:
        return NO_DATA
    result = "\n\n".join(context_docs.render(doc) for doc in docs).rstrip()
    return truncate(result, budget) if result else NO_DATA


def build_system_context(config: Settings) -> str:
    """Preamble plus one section per data file, each capped at a fifth of the context budget."""
    budget = config.agent_max_context_chars // 5
    sections = [
        ("IMPORTANT TICKERS", _tickers_section(config.important_tickers_path, budget)),
        ("FINANCIAL OVERVIEW", _overview_section(config.financial_overview_path, budget)),
        ("DATAROMA INVESTOR MOVES", _docs_section(config.dataroma_context_path, budget)),
        ("VIC IDEAS", _docs_section(config.vic_context_path, budget)),
        ("FOXLAND CONTEXT", _docs_section(config.foxland_context_path, budget)),
    ]
    parts = [PREAMBLE, ""]
    for title, body in sections:
        parts.extend([f"=== {title} ===", body, ""])
    return "\n".join(parts).rstrip() + "\n"


def safe_system_context(config: Settings) -> str:
    """``build_system_context`` degraded to the bare preamble on any failure."""
    try:
        return build_system_context(config)
    except Exception as e:
        logger.warning(f"Context build failed, using preamble only: {e}")
        return PREAMBLE


def top_tickers(path: str, top: int = 5) -> List[str]:
    """First ``top`` tickers from the ranked tickers JSON (empty on any problem)."""
    content = _read(path)
    if content is None or top <= 0:
        return []
    try:
        items = json.loads(content)
    except json.JSONDecodeError:
        return []
    if not isinstance(items, list):
        return []

    tickers: List[str] = []
    for item in items:
        ticker = item.get("ticker") if isinstance(item, dict) else None
        if isinstance(ticker, str) and ticker.strip():
            tickers.append(ticker.strip())
            if len(tickers) >= top:
                break
    return tickers
