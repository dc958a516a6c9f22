"""Import reconciliation across the six dataset collections.

Conflicts are id collisions between an imported record and a local one. The
same reconciliation routine runs for every collection; the only thing that
varies per collection is its ``CollectionSpec`` (how to read and replace a
record id), so the six collections cannot drift apart in behavior.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from memvault.logging_config import log_import
from memvault.types import COLLECTIONS, ConflictRecord, Dataset, new_id

logger = logging.getLogger(__name__)

STRATEGIES = ("replace", "merge", "append")
CONFLICT_RESOLUTIONS = ("new", "old", "merge")


def record_id(record: Any) -> Optional[str]:
    """Read the id of a JSON-shaped record."""
    if isinstance(record, dict):
        value = record.get("id")
    else:
        value = getattr(record, "id", None)
    return value if isinstance(value, str) and value else None


def with_record_id(record: Dict[str, Any], value: str) -> Dict[str, Any]:
    """Return a copy of ``record`` carrying a different id."""
    return {**record, "id": value}


@dataclass(frozen=True)
class CollectionSpec:
    """How to identify records of one collection."""

    name: str
    id_of: Callable[[Any], Optional[str]] = record_id
    with_id: Callable[[Dict[str, Any], str], Dict[str, Any]] = with_record_id


COLLECTION_SPECS = tuple(CollectionSpec(name) for name in COLLECTIONS)


@dataclass
class ImportOptions:
    """How imported collections are combined with local ones.

    strategy:
        ``replace`` discards local data; ``merge`` keeps local records and
        adds new ids; ``append`` adds everything, re-keying colliding ids.
    conflict_resolution (merge only):
        ``new`` overwrites the local record in place, ``old`` keeps it,
        ``merge`` overlays the imported fields onto the local record.
    """

    strategy: str = "merge"
    conflict_resolution: str = "new"

    def __post_init__(self):
        if self.strategy not in STRATEGIES:
            raise ValueError(f"strategy must be one of {STRATEGIES}, got {self.strategy!r}")
        if self.conflict_resolution not in CONFLICT_RESOLUTIONS:
            raise ValueError(
                f"conflict_resolution must be one of {CONFLICT_RESOLUTIONS}, "
                f"got {self.conflict_resolution!r}"
            )


def _items(dataset: Optional[Mapping[str, Any]], name: str) -> List[Any]:
    if not dataset:
        return []
    items = dataset.get(name)
    return list(items) if isinstance(items, (list, tuple)) else []


# =============================================================================
# Conflict detection
# =============================================================================


def detect_collection_conflicts(
    spec: CollectionSpec, existing: Sequence[Any], imported: Sequence[Any]
) -> List[ConflictRecord]:
    """Imported records of one collection whose id is already present locally."""
    by_id: Dict[str, Any] = {}
    for record in existing:
        rid = spec.id_of(record)
        if rid is not None and rid not in by_id:
            by_id[rid] = record

    conflicts = []
    for record in imported:
        rid = spec.id_of(record)
        if rid is not None and rid in by_id:
            conflicts.append(
                ConflictRecord(
                    collection=spec.name, record_id=rid, existing=by_id[rid], incoming=record
                )
            )
    return conflicts


def detect_conflicts(existing: Mapping[str, Any], imported: Mapping[str, Any]) -> List[ConflictRecord]:
    """Flag every imported record whose id already exists, across all collections.

    No resolution is decided here; both versions are carried for review.
    """
    conflicts: List[ConflictRecord] = []
    for spec in COLLECTION_SPECS:
        conflicts.extend(
            detect_collection_conflicts(spec, _items(existing, spec.name), _items(imported, spec.name))
        )
    return conflicts


# =============================================================================
# Reconciliation
# =============================================================================


def _merge_collection(
    spec: CollectionSpec, current: List[Any], imported: List[Any], resolution: str
) -> List[Any]:
    result = list(current)
    position: Dict[str, int] = {}
    for index, record in enumerate(result):
        rid = spec.id_of(record)
        if rid is not None and rid not in position:
            position[rid] = index

    for record in imported:
        rid = spec.id_of(record)
        if rid is None or rid not in position:
            if rid is not None:
                position[rid] = len(result)
            result.append(record)
        elif resolution == "new":
            result[position[rid]] = record
        elif resolution == "merge":
            result[position[rid]] = {**result[position[rid]], **record}
        # "old": keep the local record
    return result


def _append_collection(
    spec: CollectionSpec,
    current: List[Any],
    imported: List[Any],
    id_factory: Callable[[], str],
) -> List[Any]:
    result = list(current)
    taken = {rid for rid in (spec.id_of(r) for r in result) if rid is not None}

    for record in imported:
        rid = spec.id_of(record)
        if rid is None or rid in taken:
            fresh = id_factory()
            while fresh in taken:
                fresh = id_factory()
            logger.debug("Re-keyed %s record %r as %r", spec.name, rid, fresh)
            record = spec.with_id(record, fresh)
            rid = fresh
        taken.add(rid)
        result.append(record)
    return result


def reconcile_collection(
    spec: CollectionSpec,
    current: Sequence[Any],
    imported: Sequence[Any],
    options: ImportOptions,
    id_factory: Callable[[], str] = new_id,
) -> List[Any]:
    """Combine one collection according to ``options``. Inputs are not mutated."""
    current, imported = list(current), list(imported)
    if options.strategy == "replace":
        return imported
    if options.strategy == "merge":
        return _merge_collection(spec, current, imported, options.conflict_resolution)
    return _append_collection(spec, current, imported, id_factory)


def apply_import(
    current: Mapping[str, Any],
    imported: Mapping[str, Any],
    options: Optional[ImportOptions] = None,
    id_factory: Callable[[], str] = new_id,
) -> Dataset:
    """Combine a local dataset with an imported one.

    Args:
        current: Local collections (missing collections count as empty).
        imported: Imported collections.
        options: Strategy and conflict resolution (default merge/new).
        id_factory: Source of fresh ids for re-keyed records in append mode.

    Returns:
        A new dataset with all six collections.
    """
    options = options or ImportOptions()
    result: Dataset = {}
    for spec in COLLECTION_SPECS:
        result[spec.name] = reconcile_collection(
            spec, _items(current, spec.name), _items(imported, spec.name), options, id_factory
        )

    counts = {name: len(result[name]) for name in COLLECTIONS}
    log_import(options.strategy, counts, len(detect_conflicts(current, imported)))
    return result


def count_new_records(
    current: Mapping[str, Any], imported: Mapping[str, Any], options: ImportOptions
) -> Dict[str, int]:
    """Per-collection number of imported records that the strategy will add.

    replace and append take every imported record; merge only those whose id
    is not yet present locally.
    """
    counts: Dict[str, int] = {}
    for spec in COLLECTION_SPECS:
        incoming = _items(imported, spec.name)
        if options.strategy != "merge":
            counts[spec.name] = len(incoming)
            continue
        local = {spec.id_of(r) for r in _items(current, spec.name)}
        counts[spec.name] = sum(1 for r in incoming if spec.id_of(r) not in local)
    return counts
