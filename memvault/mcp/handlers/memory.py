"""Handlers for memory tools: similarity, find_similar, quality_score."""

import json
from typing import Any, Dict

from memvault.consolidation import find_similar
from memvault.mcp.sanitize import validate_schema
from memvault.quality import quality_score
from memvault.similarity import calculate_similarity
from memvault.types import CandidateInsight

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_memory_similarity(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return validate_schema("memory_similarity", arguments)


def validate_memory_find_similar(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized = validate_schema("memory_find_similar", arguments)
    if not sanitized["content"].strip():
        raise ValueError("content must not be blank")
    return sanitized


def validate_memory_quality_score(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return validate_schema("memory_quality_score", arguments)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_memory_similarity(args: Dict[str, Any]) -> str:
    method = args.get("method", "combined")
    score = calculate_similarity(args["text_a"], args["text_b"], method)
    return json.dumps({"method": method, "similarity": round(score, 4)}, indent=2)


def handle_memory_find_similar(args: Dict[str, Any]) -> str:
    proposed = {"content": args["content"]}
    if args.get("category"):
        proposed["category"] = args["category"]
    candidate = CandidateInsight(summary=args["content"], proposed_record=proposed)
    matches = find_similar(candidate, args["records"], args.get("threshold", 0.7))
    if not matches:
        return "No similar memories found."
    payload = []
    for match in matches:
        entry = match.to_dict()
        entry["similarity"] = round(match.similarity, 4)
        if match.record is not None:
            entry["content"] = match.record.content
        payload.append(entry)
    return json.dumps(payload, indent=2, ensure_ascii=False)


def handle_memory_quality_score(args: Dict[str, Any]) -> str:
    indicators = {
        key: args[key] for key in ("generalization", "consistency") if args.get(key) is not None
    }
    score = quality_score(args["confidence"], args["evidence_strength"], indicators)
    return json.dumps({"quality_score": round(score, 4)}, indent=2)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

HANDLERS = {
    "memory_similarity": handle_memory_similarity,
    "memory_find_similar": handle_memory_find_similar,
    "memory_quality_score": handle_memory_quality_score,
}

VALIDATORS = {
    "memory_similarity": validate_memory_similarity,
    "memory_find_similar": validate_memory_find_similar,
    "memory_quality_score": validate_memory_quality_score,
}
