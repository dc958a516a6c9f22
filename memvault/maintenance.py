"""Storage maintenance: usage estimates and retention cleanup.

Cleanup never mutates its input. It trims the append-only collections to
their most recent entries, drops stale rejected proposals and archives
memories that nobody has confirmed or touched in a long time.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from memvault.types import COLLECTIONS, Dataset, MemoryStatus, ProposalStatus, parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SIZE = 2 * 1024 * 1024
MAX_CLEANUP_ROUNDS = 5

# Floors and shrink factor for quota-driven cleanup rounds
AGGRESSIVE_KEEP_FRACTION = 0.7
AGGRESSIVE_MIN_SESSIONS = 20
AGGRESSIVE_MIN_HISTORY = 50
AGGRESSIVE_MIN_UPLOADS = 10
AGGRESSIVE_REJECTED_DAYS = 7

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class CleanupOptions:
    keep_recent_sessions: int = 100
    keep_recent_history: int = 200
    keep_recent_uploads: int = 50
    delete_rejected_after_days: int = 30
    # 0 disables archiving
    archive_after_days: int = 90


@dataclass
class CleanupResult:
    cleaned: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in COLLECTIONS})
    data: Dataset = field(default_factory=dict)


@dataclass
class StorageUsage:
    total: int
    by_collection: Dict[str, int]
    breakdown: str


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def _json_size(value: Any) -> int:
    return len(json.dumps(value, ensure_ascii=False).encode("utf-8"))


def estimate_storage_usage(dataset: Mapping[str, Any]) -> StorageUsage:
    """Approximate serialized size of each collection."""
    sizes = {name: _json_size(list(dataset.get(name) or [])) for name in COLLECTIONS}
    breakdown = ", ".join(f"{name}: {format_size(size)}" for name, size in sizes.items())
    return StorageUsage(total=sum(sizes.values()), by_collection=sizes, breakdown=breakdown)


def _timestamp(item: Any, key: str) -> datetime:
    value = item.get(key) if isinstance(item, dict) else None
    return parse_datetime(value) or _EPOCH


def _keep_recent(items: List[Any], keep: int, key: str) -> List[Any]:
    if len(items) <= keep:
        return items
    ordered = sorted(items, key=lambda item: _timestamp(item, key), reverse=True)
    return ordered[: max(0, keep)]


def _proposal_time(proposal: Dict[str, Any]) -> datetime:
    metadata = proposal.get("extractionMetadata")
    if isinstance(metadata, dict):
        return parse_datetime(metadata.get("timestamp")) or _EPOCH
    return _EPOCH


def cleanup_storage(
    dataset: Mapping[str, Any],
    options: Optional[CleanupOptions] = None,
    now: Optional[datetime] = None,
) -> CleanupResult:
    """Apply retention rules to a dataset.

    Args:
        dataset: Current collections (not modified).
        options: Retention limits (defaults: 100 sessions, 200 history
            entries, 50 uploads, rejected proposals kept 30 days, memories
            archived after 90 days).
        now: Reference time (defaults to the current UTC time).

    Returns:
        CleanupResult with per-collection removal counts (archived count for
        memories) and the cleaned dataset.
    """
    options = options or CleanupOptions()
    now = now or datetime.now(timezone.utc)
    data: Dataset = {name: list(dataset.get(name) or []) for name in COLLECTIONS}
    result = CleanupResult(data=data)

    cutoff = now - timedelta(days=options.delete_rejected_after_days)
    before = len(data["proposals"])
    data["proposals"] = [
        p
        for p in data["proposals"]
        if not (
            isinstance(p, dict)
            and p.get("status") == ProposalStatus.REJECTED.value
            and _proposal_time(p) <= cutoff
        )
    ]
    result.cleaned["proposals"] = before - len(data["proposals"])

    for name, keep, key in (
        ("sessions", options.keep_recent_sessions, "lastMessageAt"),
        ("history", options.keep_recent_history, "timestamp"),
        ("uploads", options.keep_recent_uploads, "uploadedAt"),
    ):
        before = len(data[name])
        data[name] = _keep_recent(data[name], keep, key)
        result.cleaned[name] = before - len(data[name])

    if options.archive_after_days > 0:
        archive_before = now - timedelta(days=options.archive_after_days)
        archived = 0
        memories = []
        for memory in data["memories"]:
            if (
                isinstance(memory, dict)
                and memory.get("status") == MemoryStatus.ACTIVE.value
                and not memory.get("confirmedByHuman")
                and _timestamp(memory, "updatedAt") < archive_before
            ):
                memory = {**memory, "status": MemoryStatus.ARCHIVED.value}
                archived += 1
            memories.append(memory)
        data["memories"] = memories
        result.cleaned["memories"] = archived

    logger.info("Storage cleanup removed %s", result.cleaned)
    return result


def auto_cleanup_on_quota_error(
    dataset: Mapping[str, Any],
    target_size: int = DEFAULT_TARGET_SIZE,
    now: Optional[datetime] = None,
) -> Tuple[Dataset, int]:
    """Shrink a dataset below ``target_size`` bytes, if possible.

    Runs up to five cleanup rounds, each keeping 70% of the append-only
    collections (with floors) and deleting rejected proposals older than a
    week. Stops early once under target.

    Returns:
        ``(cleaned_dataset, freed_bytes)``.
    """
    data: Dataset = {name: list(dataset.get(name) or []) for name in COLLECTIONS}
    for round_number in range(MAX_CLEANUP_ROUNDS):
        usage = estimate_storage_usage(data)
        if usage.total < target_size:
            break
        logger.debug("Quota cleanup round %d at %d bytes", round_number + 1, usage.total)
        options = CleanupOptions(
            keep_recent_sessions=max(
                AGGRESSIVE_MIN_SESSIONS, int(len(data["sessions"]) * AGGRESSIVE_KEEP_FRACTION)
            ),
            keep_recent_history=max(
                AGGRESSIVE_MIN_HISTORY, int(len(data["history"]) * AGGRESSIVE_KEEP_FRACTION)
            ),
            keep_recent_uploads=max(
                AGGRESSIVE_MIN_UPLOADS, int(len(data["uploads"]) * AGGRESSIVE_KEEP_FRACTION)
            ),
            delete_rejected_after_days=AGGRESSIVE_REJECTED_DAYS,
        )
        data = cleanup_storage(data, options, now).data

    freed = estimate_storage_usage(dataset).total - estimate_storage_usage(data).total
    logger.info("Quota cleanup freed %s", format_size(max(freed, 0)))
    return data, freed
