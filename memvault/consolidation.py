"""Consolidation: merge a candidate into an existing memory or create a new one.

A candidate that is near enough to an active record of the same category is
folded into it (evidence united, confidence recomputed, layer raised); any
other candidate becomes a new record. Every decision produces exactly one
audit entry. Nothing here mutates its inputs; callers receive new record
lists and decide what to persist.

The merged-confidence weights (0.6 existing, 0.4 proposal, 0.1 evidence) are
fixed constants, like the similarity weights in ``memvault.similarity``.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from memvault.chunking import chunk_for_model, chunk_text, merge_extraction_results, order_chunk_results
from memvault.logging_config import log_consolidation
from memvault.protocols import ExtractionInProgressError, ExtractionService
from memvault.quality import clamp_unit
from memvault.similarity import combined
from memvault.types import (
    MAX_EVIDENCE_ITEMS,
    CandidateInsight,
    Dataset,
    EvolutionRecord,
    HistoryType,
    MemoryCategory,
    MemoryRecord,
    MemoryStatus,
    ProposalStatus,
    ProposalType,
    SimilarityMatch,
    dedup_evidence,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

EXISTING_CONFIDENCE_WEIGHT = 0.6
PROPOSAL_WEIGHT = 0.4
EVIDENCE_COUNT_WEIGHT = 0.1
EVIDENCE_SATURATION = 5  # evidence items at which the evidence bonus is maxed

NEAR_DUPLICATE_SIMILARITY = 0.9
RECOMMEND_MERGE_SIMILARITY = 0.8

# Candidates scoring below this are dropped when the quality filter is on
MIN_QUALITY_SCORE = 0.5

DESCRIPTION_PREVIEW_CHARS = 25

RecordLike = Union[MemoryRecord, Dict[str, Any], None]


class ConsolidationAction(str, Enum):
    MERGE = "MERGE"
    CREATE = "CREATE"


@dataclass
class ConsolidationConfig:
    """Thresholds for the consolidation decision."""

    similarity_threshold: float = 0.7  # minimum to report a match at all
    auto_merge_threshold: float = 0.85  # minimum to merge without review
    min_confidence_threshold: float = 0.6
    quality_filter_enabled: bool = True
    default_confidence: float = 0.8


DEFAULT_CONSOLIDATION_CONFIG = ConsolidationConfig()


@dataclass
class ConsolidationResult:
    """Outcome of one consolidation decision."""

    action: ConsolidationAction
    record: MemoryRecord
    records: List[MemoryRecord]
    audit: EvolutionRecord
    matches: List[SimilarityMatch] = field(default_factory=list)


@dataclass
class TriageResult:
    """Outcome of running a batch of raw extraction items through triage."""

    records: List[MemoryRecord]
    proposals: List[Dict[str, Any]] = field(default_factory=list)
    audit: List[EvolutionRecord] = field(default_factory=list)
    rejected: List[CandidateInsight] = field(default_factory=list)

    @property
    def merged_count(self) -> int:
        return len(self.audit)


# =============================================================================
# Similarity search
# =============================================================================


def _as_record(item: RecordLike) -> Optional[MemoryRecord]:
    if item is None:
        return None
    if isinstance(item, MemoryRecord):
        return item
    if isinstance(item, dict):
        try:
            return MemoryRecord.from_dict(item)
        except (TypeError, ValueError) as e:
            logger.warning("Skipping malformed memory record %r: %s", item.get("id"), e)
            return None
    return None


def _reason_for(similarity: float) -> str:
    if similarity >= NEAR_DUPLICATE_SIMILARITY:
        return "near-duplicate"
    if similarity >= RECOMMEND_MERGE_SIMILARITY:
        return "recommend merge"
    return "moderate — review"


def find_similar(
    candidate: CandidateInsight,
    existing_records: Iterable[RecordLike],
    threshold: float = 0.7,
) -> List[SimilarityMatch]:
    """Find active records similar to the candidate, best first.

    Only ACTIVE records are considered, and only those sharing the candidate's
    category when it has one. None entries and records without content are
    skipped.

    Args:
        candidate: The candidate insight.
        existing_records: MemoryRecord objects or their dict form.
        threshold: Minimum combined similarity to report.

    Returns:
        SimilarityMatch list sorted by descending similarity.
    """
    content = candidate.content
    if not content:
        return []
    category = candidate.category

    matches: List[SimilarityMatch] = []
    for item in existing_records or []:
        record = _as_record(item)
        if record is None or record.status != MemoryStatus.ACTIVE:
            continue
        if category is not None and record.category != category:
            continue
        if not record.content:
            continue
        similarity = combined(content, record.content)
        if similarity >= threshold:
            matches.append(
                SimilarityMatch(
                    record_id=record.id,
                    similarity=similarity,
                    reason=_reason_for(similarity),
                    record=record,
                )
            )

    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches


# =============================================================================
# Merge arithmetic
# =============================================================================


def merged_confidence(
    existing: MemoryRecord, candidate: CandidateInsight, evidence_count_after_merge: int
) -> float:
    """Confidence of a record after absorbing a candidate.

    ``min(1, existing*0.6 + candidate.confidence*candidate.evidence_strength*0.4
    + min(n/5, 1)*0.1)`` where n is the evidence count after the merge.
    """
    evidence_weight = max(0.0, min(evidence_count_after_merge / EVIDENCE_SATURATION, 1.0))
    proposal_weight = clamp_unit(candidate.confidence, 0.8) * clamp_unit(
        candidate.evidence_strength, 0.7
    )
    merged = (
        clamp_unit(existing.confidence, 0.0) * EXISTING_CONFIDENCE_WEIGHT
        + proposal_weight * PROPOSAL_WEIGHT
        + evidence_weight * EVIDENCE_COUNT_WEIGHT
    )
    return min(1.0, merged)


def merge_evidence(
    existing: Sequence[str], incoming: Sequence[str], cap: int = MAX_EVIDENCE_ITEMS
) -> List[str]:
    """Union of both evidence lists, first occurrence order, last ``cap`` kept."""
    return dedup_evidence(list(existing or []) + list(incoming or []), cap)


def _preview(content: str) -> str:
    return f"{content[:DESCRIPTION_PREVIEW_CHARS]}..."


def _merge_record(
    existing: MemoryRecord, candidate: CandidateInsight, now: str
) -> MemoryRecord:
    evidence = merge_evidence(existing.evidence, candidate.evidence_context)
    content = existing.content
    if candidate.confidence > existing.confidence and candidate.content:
        content = candidate.content
    return replace(
        existing,
        content=content,
        layer=max(existing.layer, candidate.layer),
        evidence=evidence,
        confidence=merged_confidence(existing, candidate, len(evidence)),
        updated_at=now,
    )


def _create_record(
    candidate: CandidateInsight,
    config: ConsolidationConfig,
    now: str,
    confirmed_by_human: bool,
) -> MemoryRecord:
    proposed = candidate.proposed_record
    confidence = candidate.confidence if candidate.confidence else config.default_confidence
    return MemoryRecord(
        id=new_id(),
        content=candidate.content,
        category=candidate.category or MemoryCategory.GOAL,
        layer=candidate.layer,
        confidence=confidence,
        evidence=list(candidate.evidence_context),
        status=MemoryStatus.ACTIVE,
        is_sensitive=bool(proposed.get("isSensitive", False)),
        created_at=now,
        updated_at=now,
        confirmed_by_human=confirmed_by_human,
        metadata={"sourceTrack": "PASSIVE"},
    )


# =============================================================================
# Decision
# =============================================================================


def consolidate(
    candidate: CandidateInsight,
    existing_records: Iterable[RecordLike],
    config: ConsolidationConfig = DEFAULT_CONSOLIDATION_CONFIG,
    now: Optional[str] = None,
    confirmed_by_human: bool = True,
) -> ConsolidationResult:
    """Merge the candidate into its best match or create a new record.

    Args:
        candidate: Candidate being accepted.
        existing_records: Current records (MemoryRecord or dict form).
        config: Thresholds.
        now: Timestamp to stamp on changed records (defaults to utc_now()).
        confirmed_by_human: Whether a newly created record counts as confirmed.

    Returns:
        ConsolidationResult with the new record list (inputs are untouched)
        and exactly one audit entry.
    """
    now = now or utc_now()
    records = [r for r in (_as_record(item) for item in existing_records or []) if r is not None]
    matches = find_similar(candidate, records, config.similarity_threshold)

    if matches and matches[0].similarity >= config.auto_merge_threshold:
        best = matches[0]
        target = next(r for r in records if r.id == best.record_id)
        updated = _merge_record(target, candidate, now)
        new_records = [updated if r.id == target.id else r for r in records]
        audit = EvolutionRecord(
            change_description=f"Consolidated: {_preview(updated.content)}",
            affected_record_ids=[updated.id],
            type=HistoryType.CONSOLIDATION,
            timestamp=now,
        )
        log_consolidation(ConsolidationAction.MERGE.value, updated.id, best.similarity)
        return ConsolidationResult(ConsolidationAction.MERGE, updated, new_records, audit, matches)

    created = _create_record(candidate, config, now, confirmed_by_human)
    audit = EvolutionRecord(
        change_description=f"New pattern: {_preview(created.content)}",
        affected_record_ids=[created.id],
        type=HistoryType.IMPORT_SYNC,
        timestamp=now,
    )
    log_consolidation(ConsolidationAction.CREATE.value, created.id)
    return ConsolidationResult(
        ConsolidationAction.CREATE, created, records + [created], audit, matches
    )


def apply_to_dataset(result: ConsolidationResult, dataset: Dataset) -> Dataset:
    """Return a copy of ``dataset`` with the result's records and audit entry applied.

    Non-memory collections are shallow-copied; memories are replaced by the
    result's record list and the audit entry is appended to history.
    """
    updated = {name: list(items) for name, items in dataset.items()}
    updated["memories"] = [r.to_dict() for r in result.records]
    updated["history"] = list(dataset.get("history", [])) + [result.audit.to_dict()]
    return updated


def triage(
    raw_candidates: Iterable[Any],
    existing_records: Iterable[RecordLike],
    config: ConsolidationConfig = DEFAULT_CONSOLIDATION_CONFIG,
    evidence_context: Optional[List[str]] = None,
    existing_proposals: Optional[Iterable[Dict[str, Any]]] = None,
    model: Optional[str] = None,
    now: Optional[str] = None,
) -> TriageResult:
    """Sort freshly extracted items into rejected, auto-merged, and queued.

    Each raw item is clamped into a CandidateInsight. With the quality filter
    on, items below ``min_confidence_threshold`` or MIN_QUALITY_SCORE are
    rejected. Items whose best match reaches ``auto_merge_threshold`` are
    merged straight away; the rest become PENDING proposals (UPDATE when a
    match above ``similarity_threshold`` exists, NEW otherwise). A summary
    already pending is not queued twice.
    """
    now = now or utc_now()
    records = [r for r in (_as_record(item) for item in existing_records or []) if r is not None]
    pending = {
        p.get("summary")
        for p in existing_proposals or []
        if isinstance(p, dict) and p.get("status") == ProposalStatus.PENDING.value
    }
    result = TriageResult(records=records)

    for raw in raw_candidates or []:
        candidate = CandidateInsight.from_extraction(raw, evidence_context)
        if not candidate.content.strip():
            result.rejected.append(candidate)
            continue
        if config.quality_filter_enabled and (
            candidate.confidence < config.min_confidence_threshold
            or candidate.quality_score < MIN_QUALITY_SCORE
        ):
            logger.debug(
                "Rejected candidate (confidence=%.2f quality=%.2f)",
                candidate.confidence,
                candidate.quality_score,
            )
            result.rejected.append(candidate)
            continue

        matches = find_similar(candidate, result.records, config.similarity_threshold)
        if matches and matches[0].similarity >= config.auto_merge_threshold:
            decision = consolidate(candidate, result.records, config, now=now)
            result.records = decision.records
            result.audit.append(decision.audit)
            continue

        if candidate.summary in pending:
            continue
        pending.add(candidate.summary)
        candidate.similarity_matches = matches
        proposal_type = ProposalType.UPDATE if matches else ProposalType.NEW
        result.proposals.append(candidate.to_proposal(proposal_type, now=now, model=model))

    logger.info(
        "Triage: %d merged, %d queued, %d rejected",
        len(result.audit),
        len(result.proposals),
        len(result.rejected),
    )
    return result


# =============================================================================
# Single-flight guard
# =============================================================================


class ExtractionGuard:
    """Token allowing one extraction at a time.

    The caller owns the guard and passes it to whatever runs extractions;
    there is no module-level flag.

        guard = ExtractionGuard()
        with guard:
            results = [service.extract(c.text) for c in chunks]
    """

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    def acquire(self) -> None:
        """Take the guard without waiting.

        Raises:
            ExtractionInProgressError: If another extraction holds it.
        """
        if not self._lock.acquire(blocking=False):
            raise ExtractionInProgressError("An extraction is already in progress")

    def release(self) -> None:
        self._lock.release()

    def __enter__(self) -> "ExtractionGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


# =============================================================================
# Extraction pipeline
# =============================================================================


def extract_and_triage(
    text: str,
    service: ExtractionService,
    existing_records: Iterable[RecordLike],
    guard: ExtractionGuard,
    config: ConsolidationConfig = DEFAULT_CONSOLIDATION_CONFIG,
    model: Optional[str] = None,
    max_chunk_size: Optional[int] = None,
    existing_proposals: Optional[Iterable[Dict[str, Any]]] = None,
    now: Optional[str] = None,
) -> TriageResult:
    """Run a document through extraction and triage.

    The text is chunked for ``model`` (or ``max_chunk_size`` when given),
    each chunk is sent to ``service`` while ``guard`` is held, per-chunk
    results are merged in chunk order and the merged items are triaged
    against ``existing_records``.

    Raises:
        ExtractionInProgressError: If ``guard`` is already held.
    """
    if max_chunk_size:
        chunks = chunk_text(text, max_chunk_size)
    else:
        chunks = chunk_for_model(text, model)

    with guard:
        pairs = [(chunk.chunk_index, service.extract(chunk.text)) for chunk in chunks]

    items = merge_extraction_results(order_chunk_results(pairs))
    logger.info("Extracted %d items from %d chunks", len(items), len(chunks))
    return triage(
        items,
        existing_records,
        config,
        existing_proposals=existing_proposals,
        model=model,
        now=now,
    )
