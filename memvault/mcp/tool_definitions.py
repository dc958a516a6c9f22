"""MCP tool schema definitions for memvault.

Each Tool() defines the name, description, and JSON Schema for one MCP tool.
Validators and handlers live in memvault.mcp.handlers.
"""

from mcp.types import Tool

from memvault.similarity import METHODS
from memvault.types import VALID_CATEGORY_VALUES

SIMILARITY_METHODS = sorted(METHODS)
CATEGORIES = sorted(VALID_CATEGORY_VALUES)

_UNIT = {"type": "number", "minimum": 0, "maximum": 1}

TOOLS = [
    Tool(
        name="memory_similarity",
        description="Score how similar two texts are (0-1). Methods: jaccard (word sets), cosine (word frequencies), levenshtein (edit distance), combined (weighted blend, default).",
        inputSchema={
            "type": "object",
            "properties": {
                "text_a": {"type": "string", "description": "First text"},
                "text_b": {"type": "string", "description": "Second text"},
                "method": {
                    "type": "string",
                    "enum": SIMILARITY_METHODS,
                    "description": "Similarity metric (default: combined)",
                    "default": "combined",
                },
            },
            "required": ["text_a", "text_b"],
            "additionalProperties": False,
        },
    ),
    Tool(
        name="memory_find_similar",
        description="Find active memory records similar to a candidate fact, best match first. Only records in the candidate's category are compared when a category is given.",
        inputSchema={
            "type": "object",
            "properties": {
                "content": {"type": "string", "minLength": 1, "description": "Candidate fact"},
                "category": {
                    "type": "string",
                    "enum": CATEGORIES,
                    "description": "Candidate category (optional)",
                },
                "records": {
                    "type": "array",
                    "items": {"type": "object"},
                    "description": "Existing memory records in backup JSON shape",
                },
                "threshold": {
                    **_UNIT,
                    "description": "Minimum combined similarity (default: 0.7)",
                    "default": 0.7,
                },
            },
            "required": ["content", "records"],
            "additionalProperties": False,
        },
    ),
    Tool(
        name="memory_quality_score",
        description="Compute the quality score of an extracted candidate from its confidence, evidence strength and optional quality indicators.",
        inputSchema={
            "type": "object",
            "properties": {
                "confidence": {**_UNIT, "description": "Extraction confidence"},
                "evidence_strength": {**_UNIT, "description": "Strength of supporting evidence"},
                "generalization": {**_UNIT, "description": "Generalization indicator (default 0.5)"},
                "consistency": {**_UNIT, "description": "Consistency indicator (default 0.5)"},
            },
            "required": ["confidence", "evidence_strength"],
            "additionalProperties": False,
        },
    ),
    Tool(
        name="document_chunk",
        description="Split a long document into overlapping chunks sized for a model's context, cut at paragraph, line or sentence boundaries.",
        inputSchema={
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Document text"},
                "model": {
                    "type": "string",
                    "description": "Model name used to pick the chunk budget",
                },
                "max_chunk_size": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Explicit character budget (overrides model)",
                },
                "overlap": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Characters repeated between chunks (default: 500, capped at 10% of chunk size)",
                    "default": 500,
                },
                "include_text": {
                    "type": "boolean",
                    "description": "Include chunk text in the output (default: false)",
                    "default": False,
                },
            },
            "required": ["text"],
            "additionalProperties": False,
        },
    ),
    Tool(
        name="backup_validate",
        description="Validate a memvault backup package and report field-scoped errors and warnings.",
        inputSchema={
            "type": "object",
            "properties": {
                "package": {
                    "type": ["object", "string"],
                    "description": "Backup package, as an object or its JSON text",
                },
            },
            "required": ["package"],
            "additionalProperties": False,
        },
    ),
]

TOOL_SCHEMAS = {tool.name: tool.inputSchema for tool in TOOLS}
