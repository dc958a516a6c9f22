"""Text similarity metrics used for duplicate detection.

All functions are total: they accept any two values (None and non-strings
included), never raise, and return a float in [0, 1]. None is treated like an
empty string, so two None inputs are identical (1.0) and None against
non-empty text is 0.0.

The ``combined`` weights (0.4 jaccard, 0.4 cosine, 0.2 levenshtein) are fixed
constants, not settings.
"""

import logging
import math
from collections import Counter
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

JACCARD_WEIGHT = 0.4
COSINE_WEIGHT = 0.4
LEVENSHTEIN_WEIGHT = 0.2

# Above this length the O(n*m) edit distance is replaced by an estimate
LEVENSHTEIN_MAX_LENGTH = 500


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return str(value)
    except Exception as e:
        logger.debug("Swallowed %s converting %s to text: %s", type(e).__name__, type(value), e)
        return ""


def _tokens(value: Any) -> List[str]:
    return _text(value).lower().split()


def _unit(value: float) -> float:
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return max(0.0, min(1.0, value))


def jaccard(a: Any, b: Any) -> float:
    """Token-set overlap: |A ∩ B| / |A ∪ B| over lowercase whitespace tokens."""
    set_a = set(_tokens(a))
    set_b = set(_tokens(b))
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    return _unit(len(set_a & set_b) / len(set_a | set_b))


def cosine(a: Any, b: Any) -> float:
    """Cosine of the term-frequency vectors of both texts."""
    counts_a = Counter(_tokens(a))
    counts_b = Counter(_tokens(b))
    if not counts_a and not counts_b:
        return 1.0
    if not counts_a or not counts_b:
        return 0.0

    dot = sum(count * counts_b[word] for word, count in counts_a.items())
    norm_a = math.sqrt(sum(c * c for c in counts_a.values()))
    norm_b = math.sqrt(sum(c * c for c in counts_b.values()))
    denominator = norm_a * norm_b
    if denominator == 0:
        return 0.0
    return _unit(dot / denominator)


def edit_distance(a: str, b: str) -> int:
    """Classic Levenshtein distance (insert/delete/substitute, cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def _ratio(x: float, y: float) -> float:
    high = max(x, y)
    if high == 0:
        return 1.0
    return min(x, y) / high


def _approximate_levenshtein(a: str, b: str) -> float:
    """Bounded-cost estimate for long texts.

    Uses the length ratio (an upper bound on the exact similarity, since the
    edit distance is at least the length difference) scaled by how alike the
    word counts and mean word lengths are.
    """
    words_a = a.split()
    words_b = b.split()
    mean_a = sum(len(w) for w in words_a) / len(words_a) if words_a else 0.0
    mean_b = sum(len(w) for w in words_b) / len(words_b) if words_b else 0.0
    shape = (_ratio(len(words_a), len(words_b)) + _ratio(mean_a, mean_b)) / 2
    return _ratio(len(a), len(b)) * shape


def levenshtein(a: Any, b: Any) -> float:
    """Normalized edit similarity: ``1 - distance / max(len(a), len(b))``.

    Case-insensitive. Exact below LEVENSHTEIN_MAX_LENGTH characters,
    approximate above it.
    """
    text_a = _text(a).lower()
    text_b = _text(b).lower()
    max_len = max(len(text_a), len(text_b))
    if max_len == 0:
        return 1.0
    if text_a == text_b:
        return 1.0
    if not text_a or not text_b:
        return 0.0
    if max_len > LEVENSHTEIN_MAX_LENGTH:
        return _unit(_approximate_levenshtein(text_a, text_b))
    return _unit(1 - edit_distance(text_a, text_b) / max_len)


def combined(a: Any, b: Any) -> float:
    """Weighted blend of jaccard, cosine and levenshtein, clamped to [0, 1]."""
    try:
        score = (
            jaccard(a, b) * JACCARD_WEIGHT
            + cosine(a, b) * COSINE_WEIGHT
            + levenshtein(a, b) * LEVENSHTEIN_WEIGHT
        )
    except Exception as e:
        logger.warning("Similarity computation failed (%s): %s", type(e).__name__, e)
        return 0.0
    return _unit(score)


METHODS: Dict[str, Callable[[Any, Any], float]] = {
    "jaccard": jaccard,
    "cosine": cosine,
    "levenshtein": levenshtein,
    "combined": combined,
}


def calculate_similarity(a: Any, b: Any, method: str = "combined") -> float:
    """Dispatch to one of the metrics by name.

    Raises:
        ValueError: If ``method`` is not one of METHODS.
    """
    metric = METHODS.get(method)
    if metric is None:
        raise ValueError(f"Unknown similarity method: {method!r} (expected one of {sorted(METHODS)})")
    return metric(a, b)
