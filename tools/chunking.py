"""
Text chunking strategies and the ``chunk`` step kind.
"""

from __future__ import annotations

import math
import re
from typing import Any, Callable, Dict, List, Optional

STRATEGIES = ("fixed", "sentence", "paragraph", "recursive", "markdown")
DEFAULT_SIZE = 512
DEFAULT_OVERLAP = 50
DEFAULT_MIN_SIZE = 20

RECURSIVE_SEPARATORS = ("\n\n", "\n", ". ", "! ", "? ", "; ", ", ", " ")

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+(?=[A-ZÀ-ɏ\"])")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_HEADING_RE = re.compile(r"^(#{1,6}\s.+)$", re.MULTILINE)


def split_sentences(text: str) -> List[str]:
    return [part.strip() for part in _SENTENCE_BOUNDARY_RE.split(text) if part.strip()]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def chunk_fixed(text: str, size: int, overlap: int, min_size: int) -> List[str]:
    step = max(size - overlap, 1)
    chunks: List[str] = []
    start = 0
    while start < len(text):
        end = start + size
        chunks.append(text[start:end].strip())
        if end >= len(text):
            break
        start += step
    return [chunk for chunk in chunks if len(chunk) >= min_size]


def group_units(units: List[str], size: int, overlap: int, min_size: int) -> List[str]:
    """Pack sentences or paragraphs into chunks, carrying trailing units as overlap."""

    chunks: List[str] = []
    current: List[str] = []
    current_len = 0

    for unit in units:
        add_len = len(unit) + 1 if current else len(unit)
        if current and current_len + add_len > size:
            chunks.append(" ".join(current).strip())
            carried: List[str] = []
            carried_len = 0
            if overlap > 0:
                for previous in reversed(current):
                    if carried_len + len(previous) + 1 > overlap:
                        break
                    carried.insert(0, previous)
                    carried_len += len(previous) + 1
            current, current_len = carried, carried_len
            add_len = len(unit) + 1 if current else len(unit)
        current.append(unit)
        current_len += add_len

    if current:
        tail = " ".join(current).strip()
        if len(tail) >= min_size:
            chunks.append(tail)
    return chunks


def chunk_sentence(text: str, size: int, overlap: int, min_size: int) -> List[str]:
    return group_units(split_sentences(text), size, overlap, min_size)


def chunk_paragraph(text: str, size: int, overlap: int, min_size: int) -> List[str]:
    paragraphs = [part.strip() for part in _PARAGRAPH_RE.split(text) if part.strip()]
    return group_units(paragraphs, size, overlap, min_size)


def recursive_split(text: str, separators: tuple, size: int, min_size: int) -> List[str]:
    if len(text) <= size:
        stripped = text.strip()
        return [stripped] if len(stripped) >= min_size else []

    separator = next((sep for sep in separators if sep in text), None)
    if separator is None:
        pieces = (text[i : i + size].strip() for i in range(0, len(text), size))
        return [piece for piece in pieces if len(piece) >= min_size]

    remaining = separators[separators.index(separator) + 1 :]
    chunks: List[str] = []
    current = ""
    for part in text.split(separator):
        candidate = f"{current}{separator}{part}" if current else part
        if len(candidate) <= size:
            current = candidate
            continue
        if len(current.strip()) >= min_size:
            chunks.append(current.strip())
        if len(part) > size:
            chunks.extend(recursive_split(part, remaining, size, min_size))
            current = ""
        else:
            current = part

    if len(current.strip()) >= min_size:
        chunks.append(current.strip())
    return chunks


def chunk_recursive(text: str, size: int, overlap: int, min_size: int) -> List[str]:
    return recursive_split(text, RECURSIVE_SEPARATORS, size, min_size)


def chunk_markdown(text: str, size: int, overlap: int, min_size: int) -> List[str]:
    sections: List[Dict[str, str]] = []
    last = 0

    def attach(content: str) -> None:
        content = content.strip()
        if not content:
            return
        if sections:
            sections[-1]["content"] += "\n\n" + content
        else:
            sections.append({"heading": "", "content": content})

    for match in _HEADING_RE.finditer(text):
        attach(text[last : match.start()])
        sections.append({"heading": match.group(1), "content": ""})
        last = match.end()
    attach(text[last:])

    chunks: List[str] = []
    for section in sections:
        body = section["content"].strip()
        full = f"{section['heading']}\n\n{body}" if section["heading"] else body
        if not full or len(full) < min_size:
            continue
        if len(full) <= size:
            chunks.append(full)
            continue
        for index, piece in enumerate(chunk_recursive(body, size, overlap, min_size)):
            if index == 0 and section["heading"]:
                piece = f"{section['heading']}\n\n{piece}"
            chunks.append(piece)
    return chunks


_STRATEGY_FUNCS: Dict[str, Callable[[str, int, int, int], List[str]]] = {
    "fixed": chunk_fixed,
    "sentence": chunk_sentence,
    "paragraph": chunk_paragraph,
    "recursive": chunk_recursive,
    "markdown": chunk_markdown,
}


def chunk_text(
    text: str,
    *,
    strategy: str = "recursive",
    size: int = DEFAULT_SIZE,
    overlap: int = DEFAULT_OVERLAP,
    min_size: int = DEFAULT_MIN_SIZE,
) -> List[str]:
    if strategy not in _STRATEGY_FUNCS:
        raise ValueError(
            f"Unknown chunking strategy: {strategy}. Available: {', '.join(STRATEGIES)}"
        )
    if not text or not text.strip():
        return []
    return _STRATEGY_FUNCS[strategy](text, size, overlap, min_size)


def _int_option(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _heading_of(content: str) -> Optional[str]:
    first_line = content.split("\n", 1)[0]
    match = _HEADING_RE.match(first_line)
    return match.group(1).lstrip("#").strip() if match else None


def execute_chunk(
    inputs: Dict[str, Any],
    defaults: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    text = inputs.get("text")
    if text is None:
        raise ValueError('chunk: "text" input is required')
    if not isinstance(text, str):
        text = str(text)

    strategy = inputs.get("strategy") or "recursive"
    size = _int_option(inputs.get("size"), DEFAULT_SIZE) or DEFAULT_SIZE
    overlap = _int_option(inputs.get("overlap"), DEFAULT_OVERLAP)
    min_size = _int_option(inputs.get("minSize"), DEFAULT_MIN_SIZE)
    source = inputs.get("source")

    pieces = chunk_text(text, strategy=strategy, size=size, overlap=overlap, min_size=min_size)
    chunks: List[Dict[str, Any]] = []
    for index, content in enumerate(pieces):
        metadata: Dict[str, Any] = {"strategy": strategy, "estimatedTokens": estimate_tokens(content)}
        heading = _heading_of(content) if strategy == "markdown" else None
        if heading:
            metadata["heading"] = heading
        entry: Dict[str, Any] = {"index": index, "content": content, "charCount": len(content)}
        if source:
            entry["source"] = source
        entry["metadata"] = metadata
        chunks.append(entry)

    total_chars = sum(chunk["charCount"] for chunk in chunks)
    return {
        "chunks": chunks,
        "totalChunks": len(chunks),
        "strategy": strategy,
        "avgChunkSize": round(total_chars / len(chunks)) if chunks else 0,
    }
