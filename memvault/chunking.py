"""Document chunking for extraction.

Splits text that would overflow a model's context into overlapping chunks cut
at paragraph, line or sentence boundaries, and merges the per-chunk
extraction output back into one de-duplicated list.

Budgets are in characters, not tokens, and deliberately conservative
(roughly 4 characters per English token, 1.5 per CJK token).
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from memvault.logging_config import log_chunking
from memvault.types import TextChunk

logger = logging.getLogger(__name__)

# Characters reserved for the system prompt and output schema boilerplate
PROMPT_OVERHEAD = 3000

DEFAULT_CONTEXT_LIMIT = 20000
DEFAULT_OVERLAP = 500
MIN_EFFECTIVE_CHUNK_SIZE = 100
MAX_OVERLAP_FRACTION = 0.1

# Boundary search windows, as fractions of the effective chunk size
BREAK_MIN_FRACTION = 0.5
SENTENCE_MIN_FRACTION = 0.7

# Exact model names
MODEL_CONTEXT_LIMITS: Dict[str, int] = {
    "gemini-3-pro-preview": 400_000,
    "gemini-3-flash-preview": 400_000,
    "gemini-pro": 12_000,
    "gemini-flash": 400_000,
    "deepseek-chat": 25_000,
    "deepseek-reasoner": 25_000,
}


@dataclass(frozen=True)
class ModelLimitRule:
    """Substring rule: names containing ``contains`` (and not ``excludes``) get ``limit``."""

    contains: str
    limit: int
    excludes: Optional[str] = None

    def matches(self, model: str) -> bool:
        if self.contains not in model:
            return False
        return self.excludes is None or self.excludes not in model


# Tried in order after exact lookup fails
MODEL_LIMIT_RULES: Tuple[ModelLimitRule, ...] = (
    ModelLimitRule("gemini-3-pro", MODEL_CONTEXT_LIMITS["gemini-3-pro-preview"]),
    ModelLimitRule("gemini-3-flash", MODEL_CONTEXT_LIMITS["gemini-3-flash-preview"]),
    ModelLimitRule("gemini-pro", MODEL_CONTEXT_LIMITS["gemini-pro"], excludes="gemini-3"),
    ModelLimitRule("deepseek", MODEL_CONTEXT_LIMITS["deepseek-chat"]),
)

# Sentence ends: CJK full stops anywhere, ASCII ones only before whitespace or end of text
_SENTENCE_END = re.compile(r"(?:[。！？]|[.!?](?=\s|$))\s*")


def get_model_context_limit(model: Optional[str]) -> int:
    """Character budget for a model name: exact match, then rules, then default."""
    if not model or not isinstance(model, str):
        return DEFAULT_CONTEXT_LIMIT
    name = model.strip().lower()
    if name in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[name]
    for rule in MODEL_LIMIT_RULES:
        if rule.matches(name):
            return rule.limit
    return DEFAULT_CONTEXT_LIMIT


def should_chunk(text: Optional[str], model: Optional[str]) -> bool:
    """True when ``text`` would not fit the model's budget after prompt overhead."""
    if not text:
        return False
    return len(text) > get_model_context_limit(model) - PROMPT_OVERHEAD


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _find_boundary(text: str, start: int, chunk_end: int, effective: int) -> int:
    """Pick the end of the chunk starting at ``start``.

    Preference: paragraph break, line break (both past 50% of the window),
    sentence end (past 70%), else a hard cut at ``chunk_end``.
    """
    min_break = start + effective * BREAK_MIN_FRACTION

    paragraph = text.rfind("\n\n", start, chunk_end)
    if paragraph >= 0 and paragraph >= min_break:
        return paragraph + 2

    line = text.rfind("\n", start, chunk_end)
    if line >= 0 and line >= min_break:
        return line + 1

    last_sentence_end = -1
    for match in _SENTENCE_END.finditer(text, start):
        if match.start() >= chunk_end:
            break
        last_sentence_end = min(match.end(), chunk_end)
    if last_sentence_end >= start + effective * SENTENCE_MIN_FRACTION:
        return last_sentence_end

    return chunk_end


def chunk_text(
    text: Optional[str], max_chunk_size: int, overlap: int = DEFAULT_OVERLAP
) -> List[TextChunk]:
    """Split text into overlapping chunks sized for a model budget.

    Args:
        text: Source text.
        max_chunk_size: Model budget in characters; PROMPT_OVERHEAD is
            subtracted to get the usable chunk size (never below 100).
        overlap: Characters repeated at the start of each following chunk,
            capped at 10% of the usable chunk size.

    Returns:
        Chunks ordered by chunk_index covering the whole text; the last
        chunk ends at ``len(text)``. Empty text gives an empty list.
    """
    if not text or not isinstance(text, str):
        return []

    effective = max(
        MIN_EFFECTIVE_CHUNK_SIZE,
        _as_int(max_chunk_size, DEFAULT_CONTEXT_LIMIT) - PROMPT_OVERHEAD,
    )
    length = len(text)
    if length <= effective:
        return [TextChunk(text=text, start_index=0, end_index=length, chunk_index=0)]

    effective_overlap = max(
        0, min(_as_int(overlap, DEFAULT_OVERLAP), int(effective * MAX_OVERLAP_FRACTION))
    )

    chunks: List[TextChunk] = []
    start = 0
    while start < length:
        chunk_end = start + effective
        if chunk_end >= length:
            chunks.append(TextChunk(text[start:], start, length, len(chunks)))
            break

        end = _find_boundary(text, start, chunk_end, effective)
        chunks.append(TextChunk(text[start:end], start, end, len(chunks)))
        start = max(end - effective_overlap, start + 1)

    logger.debug("Split %d chars into %d chunks (size=%d)", length, len(chunks), effective)
    return chunks


def chunk_for_model(
    text: Optional[str], model: Optional[str], overlap: int = DEFAULT_OVERLAP
) -> List[TextChunk]:
    """Chunk ``text`` using the budget of ``model``."""
    chunks = chunk_text(text, get_model_context_limit(model), overlap)
    log_chunking(len(text or ""), len(chunks), model)
    return chunks


def _identifier(item: Any) -> str:
    if isinstance(item, dict):
        content, title = item.get("content"), item.get("title")
    else:
        content, title = getattr(item, "content", None), getattr(item, "title", None)
    for value in (content, title):
        if isinstance(value, str) and value:
            return value.strip().lower()
    return ""


def merge_extraction_results(per_chunk_results: Iterable[Any]) -> List[Any]:
    """Flatten per-chunk extraction output, dropping empties and duplicates.

    Items are identified by ``content`` (else ``title``), stripped and
    case-folded; the first occurrence in chunk order wins. Non-list chunk
    entries and None items are skipped.
    """
    merged: List[Any] = []
    seen = set()
    for chunk_results in per_chunk_results or []:
        if not isinstance(chunk_results, (list, tuple)):
            continue
        for item in chunk_results:
            if item is None:
                continue
            key = _identifier(item)
            if not key or key in seen:
                continue
            seen.add(key)
            merged.append(item)
    return merged


def order_chunk_results(pairs: Iterable[Tuple[int, Sequence[Any]]]) -> List[Sequence[Any]]:
    """Restore chunk order for results gathered concurrently.

    Takes ``(chunk_index, results)`` pairs in arrival order and returns the
    result lists sorted by chunk index, ready for ``merge_extraction_results``.
    """
    return [results for _, results in sorted(pairs, key=lambda pair: pair[0])]
