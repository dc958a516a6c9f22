"""Input validation helpers for MCP tool arguments."""

from typing import Any, Dict

from jsonschema import Draft7Validator

from memvault.mcp.tool_definitions import TOOL_SCHEMAS

_VALIDATORS: Dict[str, Draft7Validator] = {}


def validate_schema(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Check ``arguments`` against the tool's input schema.

    Returns a copy with schema defaults filled in for absent properties.

    Raises:
        ValueError: On the first schema violation, naming its path.
    """
    schema = TOOL_SCHEMAS.get(name)
    if schema is None:
        raise ValueError(f"Unknown tool: {name}")

    validator = _VALIDATORS.get(name)
    if validator is None:
        validator = Draft7Validator(schema)
        _VALIDATORS[name] = validator

    errors = sorted(validator.iter_errors(arguments), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        path = ".".join(str(part) for part in first.path) or "(root)"
        raise ValueError(f"Schema validation failed at {path}: {first.message}")

    sanitized = dict(arguments)
    for key, prop in schema.get("properties", {}).items():
        if key not in sanitized and "default" in prop:
            sanitized[key] = prop["default"]
    return sanitized
