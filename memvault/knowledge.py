"""Knowledge base helpers: content hashing and keyword retrieval."""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from memvault.types import MemoryStatus

logger = logging.getLogger(__name__)

TAG_MATCH_SCORE = 3.0
TITLE_MATCH_SCORE = 5.0
WORD_MATCH_SCORE = 0.5
MIN_QUERY_WORD_LENGTH = 3

DEFAULT_LIMIT = 5
MAX_LIMIT = 100
CONTEXT_PREVIEW_CHARS = 200


def content_hash(content: Optional[str]) -> str:
    """Hash stripped, lower-cased content for deduplication.

    Empty content hashes to an empty string.
    """
    if not content:
        return ""
    return hashlib.sha256(content.strip().lower().encode("utf-8")).hexdigest()


def _clamp_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, (int, float)) or not limit:
        return DEFAULT_LIMIT
    return max(1, min(int(limit), MAX_LIMIT))


def _score(item: Dict[str, Any], query: str, word_patterns: Sequence["re.Pattern[str]"]) -> float:
    title = str(item.get("title") or "")
    haystack = f"{title} {item.get('content') or ''}".lower()
    score = 0.0

    tags = item.get("tags")
    if isinstance(tags, list):
        for tag in tags:
            if isinstance(tag, str) and tag:
                tag = tag.lower()
                if tag in query or query in tag:
                    score += TAG_MATCH_SCORE

    if query in title.lower():
        score += TITLE_MATCH_SCORE

    for pattern in word_patterns:
        score += len(pattern.findall(haystack)) * WORD_MATCH_SCORE
    return score


def retrieve_relevant_knowledge(
    query: Optional[str], items: Sequence[Any], limit: int = DEFAULT_LIMIT
) -> List[Dict[str, Any]]:
    """Rank ACTIVE knowledge items against a free-text query.

    Scoring: +3 per tag that contains or is contained in the query, +5 when
    the title contains the query, +0.5 per occurrence of each query word
    longer than two characters in title or content. Items scoring zero are
    dropped.

    Args:
        query: Search text; empty or whitespace-only returns [].
        items: Knowledge item dicts (None entries and incomplete items skipped).
        limit: Maximum results, clamped to [1, 100].

    Returns:
        Items sorted by descending score; ties keep input order.
    """
    if not query or not query.strip():
        return []

    needle = query.lower()
    words = [w for w in needle.split() if len(w) >= MIN_QUERY_WORD_LENGTH]
    patterns = [re.compile(re.escape(w)) for w in words]

    scored = []
    for item in items or []:
        if not isinstance(item, dict) or item.get("status") != MemoryStatus.ACTIVE.value:
            continue
        if item.get("title") is None or item.get("content") is None:
            continue
        score = _score(item, needle, patterns)
        if score > 0:
            scored.append((score, item))

    scored.sort(key=lambda pair: pair[0], reverse=True)
    results = [item for _, item in scored[: _clamp_limit(limit)]]
    logger.debug("Knowledge query %r matched %d of %d items", query, len(scored), len(items or []))
    return results


def format_knowledge_context(items: Optional[Sequence[Any]]) -> str:
    """Render knowledge items as prompt context, one ``[TYPE] title`` block each."""
    blocks = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        if item.get("type") is None or item.get("title") is None or item.get("content") is None:
            continue
        content = str(item["content"])
        if len(content) > CONTEXT_PREVIEW_CHARS:
            content = content[:CONTEXT_PREVIEW_CHARS] + "..."
        blocks.append(f"[{item['type']}] {item['title']}\n{content}")
    return "\n\n".join(blocks)
