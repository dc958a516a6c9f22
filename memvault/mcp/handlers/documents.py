"""Handlers for document tools: document_chunk, backup_validate."""

import json
from typing import Any, Dict

from memvault.backup import loads_package, validate_package
from memvault.chunking import chunk_for_model, chunk_text, get_model_context_limit
from memvault.config import load_settings
from memvault.mcp.sanitize import validate_schema

PREVIEW_CHARS = 80

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_document_chunk(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return validate_schema("document_chunk", arguments)


def validate_backup_validate(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized = validate_schema("backup_validate", arguments)
    if isinstance(sanitized["package"], str):
        try:
            sanitized["package"] = loads_package(sanitized["package"])
        except json.JSONDecodeError as e:
            raise ValueError(f"package is not valid JSON: {e}") from e
    return sanitized


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_document_chunk(args: Dict[str, Any]) -> str:
    text = args["text"]
    overlap = args.get("overlap", 500)
    if args.get("max_chunk_size"):
        budget = args["max_chunk_size"]
        chunks = chunk_text(text, budget, overlap)
    else:
        model = args.get("model") or load_settings().default_model
        budget = get_model_context_limit(model)
        chunks = chunk_for_model(text, model, overlap)

    entries = []
    for chunk in chunks:
        entry = {
            "index": chunk.chunk_index,
            "start": chunk.start_index,
            "end": chunk.end_index,
            "length": len(chunk.text),
        }
        if args.get("include_text"):
            entry["text"] = chunk.text
        else:
            entry["preview"] = chunk.text[:PREVIEW_CHARS]
        entries.append(entry)
    return json.dumps(
        {"budget": budget, "chunk_count": len(chunks), "chunks": entries},
        indent=2,
        ensure_ascii=False,
    )


def handle_backup_validate(args: Dict[str, Any]) -> str:
    result = validate_package(args["package"])
    payload = {
        "valid": result.valid,
        "errors": [{"field": i.field, "message": i.message} for i in result.errors],
        "warnings": [{"field": i.field, "message": i.message} for i in result.warnings],
    }
    if result.metadata:
        payload["itemCounts"] = result.metadata.get("itemCounts")
        payload["version"] = result.metadata.get("version")
    return json.dumps(payload, indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

HANDLERS = {
    "document_chunk": handle_document_chunk,
    "backup_validate": handle_backup_validate,
}

VALIDATORS = {
    "document_chunk": validate_document_chunk,
    "backup_validate": validate_backup_validate,
}
