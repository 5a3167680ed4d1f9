"""Reader for the ``=== DOC <id> ===`` text files written by the collection jobs.

Block layout::

    === DOC dataroma/00001 ===
    investor: Some Fund
    title: Q3 moves
    ---
    free-form body

Header keys are lowercased. The ``---`` separator and body are optional.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Set, Union

from loguru import logger

_DOC_HEADER = re.compile(r"^=== DOC (.+?) ===\s*$", re.MULTILINE)
_BODY_SEPARATOR = "\n---\n"


@dataclass(frozen=True)
class ContextDoc:
    doc_id: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""


def parse(text: str) -> List[ContextDoc]:
    """Split ``text`` into documents, in file order."""
    if not text or not text.strip():
        return []

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    matches = list(_DOC_HEADER.finditer(text))
    docs: List[ContextDoc] = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        block = text[match.end():end].strip("\n")

        header_part, _, body = block.partition(_BODY_SEPARATOR)
        headers: Dict[str, str] = {}
        for line in header_part.split("\n"):
            key, sep, value = line.strip().partition(":")
            key = key.strip().lower()
            if sep and key:
                headers[key] = value.strip()

        docs.append(ContextDoc(match.group(1).strip(), headers, body.strip()))
    return docs


def load(path: Union[str, Path]) -> List[ContextDoc]:
    """Parse the file at ``path``; a missing or blank path yields ``[]``."""
    if not path or not Path(path).is_file():
        return []
    return parse(Path(path).read_text(encoding="utf-8", errors="replace"))


def load_unseen(path: Union[str, Path], seen: Set[str], max_docs: int) -> List[ContextDoc]:
    """Documents from ``path`` whose id is not in ``seen``, capped at ``max_docs``.

    Read errors are logged and treated as an empty source.
    """
    try:
        docs = load(path)
    except OSError as e:
        logger.warning(f"Could not read context docs {path}: {e}")
        return []

    unseen: List[ContextDoc] = []
    for doc in docs:
        if not doc.doc_id or doc.doc_id in seen:
            continue
        unseen.append(doc)
        if len(unseen) >= max_docs:
            break
    return unseen


def render(doc: ContextDoc) -> str:
    """Render one document as ``[id]`` + ``key: value`` lines + body."""
    lines = [f"[{doc.doc_id}]"]
    lines.extend(f"{key}: {value}" for key, value in doc.headers.items())
    if doc.body.strip():
        lines.append(doc.body.strip())
    return "\n".join(lines)
