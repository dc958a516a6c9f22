"""Quality scoring for extracted candidates.

Maps the extraction collaborator's confidence signals onto a single [0, 1]
score. Inputs come straight from a language model, so every value is clamped
and anything non-finite or missing falls back to a neutral 0.5.
"""

import math
from typing import Any, Dict, Optional

CONFIDENCE_WEIGHT = 0.4
EVIDENCE_WEIGHT = 0.3
GENERALIZATION_WEIGHT = 0.2
CONSISTENCY_WEIGHT = 0.1

NEUTRAL = 0.5


def clamp_unit(value: Any, default: float = NEUTRAL) -> float:
    """Clamp ``value`` into [0, 1], using ``default`` for non-finite or non-numeric input."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return max(0.0, min(1.0, float(value)))


def quality_score(
    confidence: Any,
    evidence_strength: Any,
    indicators: Optional[Dict[str, Any]] = None,
) -> float:
    """Combine extraction signals into a quality score.

    Args:
        confidence: Model's confidence in the fact.
        evidence_strength: How strongly the source text supports it.
        indicators: Optional ``{"generalization": x, "consistency": y}``;
            absent keys (or an absent dict) count as 0.5.

    Returns:
        ``confidence*0.4 + evidence*0.3 + generalization*0.2 + consistency*0.1``
        in [0, 1].
    """
    indicators = indicators if isinstance(indicators, dict) else {}
    score = (
        clamp_unit(confidence) * CONFIDENCE_WEIGHT
        + clamp_unit(evidence_strength) * EVIDENCE_WEIGHT
        + clamp_unit(indicators.get("generalization")) * GENERALIZATION_WEIGHT
        + clamp_unit(indicators.get("consistency")) * CONSISTENCY_WEIGHT
    )
    return clamp_unit(score, 0.0)
