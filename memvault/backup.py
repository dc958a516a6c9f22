"""Backup packages: export, validation and import.

A package is a JSON envelope::

    {
        "metadata": {"version", "exportDate", "appVersion", "dataSize",
                     "itemCounts": {six counts}, "checksum"},
        "data": {"memories": [...], "knowledge": [...], "sessions": [...],
                 "uploads": [...], "proposals": [...], "history": [...]},
        "compressed": false
    }

``dataSize`` is the UTF-8 size of the package serialized with a zero size
and no checksum; ``checksum`` is the SHA-256 hex of the package serialized
with everything but the checksum populated.

Validation never raises: it collects field-scoped issues so the caller can
decide whether to proceed. Per-item structure is checked with JSON Schema.
"""

import copy
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from jsonschema import Draft7Validator

from memvault import __version__
from memvault.reconcile import ImportOptions, apply_import, count_new_records, detect_conflicts
from memvault.types import (
    COLLECTIONS,
    Dataset,
    MemoryStatus,
    ProposalStatus,
    VALID_CATEGORY_VALUES,
    VALID_KNOWLEDGE_TYPE_VALUES,
    VALID_PROPOSAL_STATUS_VALUES,
    VALID_STATUS_VALUES,
    empty_dataset,
    utc_now,
)

logger = logging.getLogger(__name__)

PACKAGE_VERSION = "1.0.0"

# =============================================================================
# Item schemas
# =============================================================================

_ID = {"type": "string", "minLength": 1}
_TEXT = {"type": "string", "minLength": 1}

ITEM_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "memories": {
        "type": "object",
        "required": ["id", "content", "category", "layer", "confidence", "evidence", "status"],
        "properties": {
            "id": _ID,
            "content": _TEXT,
            "category": {"enum": sorted(VALID_CATEGORY_VALUES)},
            "layer": {"type": "integer", "minimum": 0, "maximum": 4},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "evidence": {"type": "array"},
            "status": {"enum": sorted(VALID_STATUS_VALUES)},
        },
    },
    "knowledge": {
        "type": "object",
        "required": ["id", "title", "content", "type", "tags"],
        "properties": {
            "id": _ID,
            "title": _TEXT,
            "content": _TEXT,
            "type": {"enum": sorted(VALID_KNOWLEDGE_TYPE_VALUES)},
            "tags": {"type": "array"},
        },
    },
    "sessions": {
        "type": "object",
        "required": ["id", "messages"],
        "properties": {
            "id": _ID,
            "messages": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["role", "content"],
                    "properties": {"role": {"enum": ["user", "assistant"]}, "content": _TEXT},
                },
            },
        },
    },
    "uploads": {
        "type": "object",
        "required": ["id", "filename"],
        "properties": {"id": _ID, "filename": _TEXT},
    },
    "proposals": {
        "type": "object",
        "required": ["id", "summary", "status"],
        "properties": {
            "id": _ID,
            "summary": _TEXT,
            "status": {"enum": sorted(VALID_PROPOSAL_STATUS_VALUES)},
        },
    },
    "history": {
        "type": "object",
        "required": ["id", "timestamp", "affectedMemoryIds"],
        "properties": {"id": _ID, "timestamp": _TEXT, "affectedMemoryIds": {"type": "array"}},
    },
}

METADATA_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["version", "exportDate", "itemCounts"],
    "properties": {
        "version": _TEXT,
        "exportDate": _TEXT,
        "itemCounts": {"type": "object"},
    },
}

_VALIDATORS = {name: Draft7Validator(schema) for name, schema in ITEM_SCHEMAS.items()}
_METADATA_VALIDATOR = Draft7Validator(METADATA_SCHEMA)


# =============================================================================
# Results
# =============================================================================


@dataclass
class ValidationIssue:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class ImportResult:
    """Outcome of importing a package; never raised, always returned."""

    success: bool
    imported: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in COLLECTIONS})
    conflicts: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    data: Optional[Dataset] = None


@dataclass
class ExportOptions:
    include_archived: bool = True
    include_rejected: bool = True
    data_types: Iterable[str] = COLLECTIONS


# =============================================================================
# Export
# =============================================================================


def dumps_package(package: Mapping[str, Any]) -> str:
    return json.dumps(package, indent=2, ensure_ascii=False)


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_checksum(package: Mapping[str, Any]) -> str:
    """SHA-256 of the package serialized without its checksum field."""
    unsigned = dict(package)
    unsigned["metadata"] = {k: v for k, v in package.get("metadata", {}).items() if k != "checksum"}
    return _sha256(dumps_package(unsigned))


def verify_checksum(package: Mapping[str, Any]) -> bool:
    metadata = package.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("checksum"):
        return False
    return compute_checksum(package) == metadata["checksum"]


def _backfill_summary(proposal: Dict[str, Any]) -> Dict[str, Any]:
    summary = proposal.get("summary")
    if isinstance(summary, str) and summary:
        return proposal
    proposed = proposal.get("proposedMemory") or {}
    fallback = (
        proposal.get("reasoning")
        or (proposed.get("content") if isinstance(proposed, dict) else None)
        or f"Proposal {proposal.get('id') or 'unknown'}"
    )
    return {**proposal, "summary": fallback}


def build_export_package(
    dataset: Mapping[str, Any],
    options: Optional[ExportOptions] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a signed backup package from a dataset.

    Args:
        dataset: The six collections (missing ones export as empty).
        options: Filters for archived memories, rejected proposals and
            which collections to include.
        now: Export timestamp (defaults to utc_now()).

    Returns:
        The package dict, with dataSize and checksum populated.
    """
    options = options or ExportOptions()
    selected = set(options.data_types)
    data = empty_dataset()
    for name in COLLECTIONS:
        if name in selected:
            data[name] = [copy.deepcopy(item) for item in dataset.get(name) or [] if item is not None]

    if not options.include_archived:
        data["memories"] = [
            m for m in data["memories"] if m.get("status") != MemoryStatus.ARCHIVED.value
        ]
    if not options.include_rejected:
        data["proposals"] = [
            p for p in data["proposals"] if p.get("status") != ProposalStatus.REJECTED.value
        ]
    data["proposals"] = [_backfill_summary(p) for p in data["proposals"]]

    package: Dict[str, Any] = {
        "metadata": {
            "version": PACKAGE_VERSION,
            "exportDate": now or utc_now(),
            "appVersion": __version__,
            "dataSize": 0,
            "itemCounts": {name: len(data[name]) for name in COLLECTIONS},
        },
        "data": data,
        "compressed": False,
    }
    package["metadata"]["dataSize"] = len(dumps_package(package).encode("utf-8"))
    package["metadata"]["checksum"] = compute_checksum(package)
    logger.info(
        "Built export package: %d bytes, %s",
        package["metadata"]["dataSize"],
        package["metadata"]["itemCounts"],
    )
    return package


# =============================================================================
# Validation
# =============================================================================


def _path(prefix: str, parts: Iterable[Any]) -> str:
    path = prefix
    for part in parts:
        path += f"[{part}]" if isinstance(part, int) else f".{part}"
    return path


def _schema_issues(validator: Draft7Validator, instance: Any, prefix: str) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    seen = set()
    for error in sorted(validator.iter_errors(instance), key=lambda e: list(e.absolute_path)):
        base = _path(prefix, error.absolute_path)
        if error.validator == "required" and isinstance(error.instance, dict):
            fields = [f"{base}.{key}" for key in error.validator_value if key not in error.instance]
            message = "Missing required field"
        else:
            fields = [base]
            message = error.message
        for name in fields:
            if name not in seen:
                seen.add(name)
                issues.append(ValidationIssue(name, message))
    return issues


def validate_package(obj: Any) -> ValidationResult:
    """Check a parsed package for structure, schemas and version.

    Errors: non-object root, missing/invalid metadata, missing data object,
    non-array collections, items failing their schema. Warnings: version
    mismatch, checksum mismatch, item counts disagreeing with the data.
    """
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    if not isinstance(obj, dict):
        errors.append(ValidationIssue("root", "Invalid JSON structure: root must be an object"))
        return ValidationResult(False, errors, warnings)

    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        errors.append(ValidationIssue("metadata", "Missing or invalid metadata"))
        metadata = None
    else:
        errors.extend(_schema_issues(_METADATA_VALIDATOR, metadata, "metadata"))

    data = obj.get("data")
    if not isinstance(data, dict):
        errors.append(ValidationIssue("data", "Missing or invalid data object"))
        return ValidationResult(False, errors, warnings, metadata)

    for name in COLLECTIONS:
        items = data.get(name)
        if items is None:
            continue
        if not isinstance(items, list):
            errors.append(ValidationIssue(f"data.{name}", f"{name} must be an array"))
            continue
        for index, item in enumerate(items):
            errors.extend(_schema_issues(_VALIDATORS[name], item, f"data.{name}[{index}]"))

    if metadata is not None:
        version = metadata.get("version")
        if isinstance(version, str) and version != PACKAGE_VERSION:
            warnings.append(
                ValidationIssue(
                    "metadata.version",
                    f"Package version ({version}) differs from current version "
                    f"({PACKAGE_VERSION}). Some features may not be compatible.",
                )
            )
        if metadata.get("checksum") and not verify_checksum(obj):
            warnings.append(
                ValidationIssue("metadata.checksum", "Checksum does not match package contents")
            )
        counts = metadata.get("itemCounts")
        if isinstance(counts, dict):
            for name in COLLECTIONS:
                items = data.get(name)
                if isinstance(items, list) and name in counts and counts[name] != len(items):
                    warnings.append(
                        ValidationIssue(
                            f"metadata.itemCounts.{name}",
                            f"Declared {counts[name]} items but found {len(items)}",
                        )
                    )

    return ValidationResult(not errors, errors, warnings, metadata)


# =============================================================================
# Import
# =============================================================================


def loads_package(text: Union[str, bytes]) -> Any:
    """Parse package JSON. Raises json.JSONDecodeError on malformed input."""
    return json.loads(text)


def import_package(
    source: Union[str, bytes, Mapping[str, Any]],
    current: Mapping[str, Any],
    options: Optional[ImportOptions] = None,
) -> ImportResult:
    """Validate a package and reconcile it with the current dataset.

    Args:
        source: Package JSON text or an already parsed package.
        current: Local dataset.
        options: Import strategy (default merge/new).

    Returns:
        ImportResult; ``data`` holds the reconciled dataset when
        ``success`` is True. Invalid input yields ``success=False`` with
        field-scoped errors instead of an exception.
    """
    options = options or ImportOptions()
    if isinstance(source, (str, bytes)):
        try:
            package = loads_package(source)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Rejected backup package: invalid JSON (%s)", e)
            return ImportResult(success=False, errors=[f"Invalid JSON format: {e}"])
    else:
        package = copy.deepcopy(dict(source))

    validation = validate_package(package)
    warnings = [issue.message for issue in validation.warnings]
    if not validation.valid:
        logger.warning("Rejected backup package: %d validation errors", len(validation.errors))
        return ImportResult(
            success=False, errors=[str(issue) for issue in validation.errors], warnings=warnings
        )

    imported = {name: list(package["data"].get(name) or []) for name in COLLECTIONS}
    conflicts = detect_conflicts(current, imported)
    return ImportResult(
        success=True,
        imported=count_new_records(current, imported, options),
        conflicts=len(conflicts),
        warnings=warnings,
        data=apply_import(current, imported, options),
    )
