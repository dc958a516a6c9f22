"""Tests for memvault.consolidation: similarity search, merge and triage."""

import threading

import pytest

from memvault.consolidation import (
    ConsolidationAction,
    ConsolidationConfig,
    ExtractionGuard,
    apply_to_dataset,
    consolidate,
    extract_and_triage,
    find_similar,
    merge_evidence,
    merged_confidence,
    triage,
)
from memvault.protocols import ExtractionInProgressError, ExtractionService
from memvault.types import (
    CandidateInsight,
    HistoryType,
    MemoryCategory,
    MemoryLayer,
    MemoryRecord,
    MemoryStatus,
)

NOW = "2025-06-01T12:00:00+00:00"


def candidate(content, category="PREFERENCE", confidence=0.9, evidence_strength=0.8, evidence=None, **extra):
    raw = {
        "content": content,
        "category": category,
        "confidence": confidence,
        "evidenceStrength": evidence_strength,
        **extra,
    }
    return CandidateInsight.from_extraction(raw, evidence or [])


class TestFindSimilar:
    """Similarity search over existing records."""

    def test_finds_identical_active_record(self, sample_memories):
        matches = find_similar(candidate("I love drinking coffee in the morning"), sample_memories)
        assert [m.record_id for m in matches] == ["mem-1"]
        assert matches[0].similarity == pytest.approx(1.0)
        assert matches[0].reason == "near-duplicate"

    def test_skips_archived_records(self, sample_memories):
        matches = find_similar(candidate("Prefers tea over coffee"), sample_memories)
        assert all(m.record_id != "mem-3" for m in matches)

    def test_skips_other_categories(self, sample_memories):
        matches = find_similar(
            candidate("I love drinking coffee in the morning", category="HABIT"), sample_memories
        )
        assert matches == []

    def test_no_category_compares_all(self, sample_memories):
        matches = find_similar(
            candidate("Never schedule meetings on Sunday", category=None), sample_memories
        )
        assert [m.record_id for m in matches] == ["mem-4"]

    def test_threshold_respected(self, sample_memories):
        for threshold in (0.0, 0.3, 0.7, 0.95):
            matches = find_similar(candidate("I love coffee"), sample_memories, threshold)
            assert all(m.similarity >= threshold for m in matches)
            assert all(m.record.status == MemoryStatus.ACTIVE for m in matches)

    @pytest.mark.parametrize("status", ["archived", "DELETED", None, "", 3])
    def test_unrecognized_status_is_not_active(self, memory_factory, status):
        records = [memory_factory("m1", "Prefers tea over coffee", status=status)]
        assert find_similar(candidate("Prefers tea over coffee"), records, 0.7) == []

    def test_lowercase_active_matches(self, memory_factory):
        records = [memory_factory("m1", "Prefers tea over coffee", status=" active ")]
        matches = find_similar(candidate("Prefers tea over coffee"), records, 0.7)
        assert [m.record_id for m in matches] == ["m1"]

    def test_consolidate_never_merges_into_unrecognized_status(self, memory_factory):
        records = [memory_factory("m1", "Prefers tea over coffee", status="archived")]
        result = consolidate(candidate("Prefers tea over coffee"), records, now=NOW)
        assert result.action == ConsolidationAction.CREATE
        kept = next(r for r in result.records if r.id == "m1")
        assert kept.status == MemoryStatus.ARCHIVED

    def test_sorted_best_first(self, memory_factory):
        records = [
            memory_factory("a", "I love drinking tea"),
            memory_factory("b", "I love drinking coffee"),
        ]
        matches = find_similar(candidate("I love drinking coffee"), records, 0.0)
        assert [m.record_id for m in matches] == ["b", "a"]

    def test_tolerates_none_and_empty_entries(self, memory_factory):
        records = [None, memory_factory("x", ""), memory_factory("y", "I love coffee")]
        matches = find_similar(candidate("I love coffee"), records)
        assert [m.record_id for m in matches] == ["y"]

    def test_empty_candidate_returns_nothing(self, sample_memories):
        assert find_similar(candidate(""), sample_memories, 0.0) == []


class TestMergeArithmetic:
    """Confidence and evidence merging."""

    def test_merged_confidence_formula(self):
        existing = MemoryRecord(id="m", content="x", confidence=0.7)
        cand = candidate("x", confidence=0.9, evidence_strength=0.8)
        assert merged_confidence(existing, cand, 2) == pytest.approx(0.42 + 0.288 + 0.04)

    def test_merged_confidence_monotonic_and_capped(self):
        existing = MemoryRecord(id="m", content="x", confidence=0.9)
        cand = candidate("x", confidence=1.0, evidence_strength=1.0)
        values = [merged_confidence(existing, cand, n) for n in range(12)]
        assert values == sorted(values)
        assert all(v <= 1.0 for v in values)
        assert values[-1] == 1.0

    def test_merge_evidence_dedups_and_caps(self):
        existing = [f"e{i}" for i in range(6)]
        incoming = ["e5", "n1", "n2", "n3", "n4"]
        merged = merge_evidence(existing, incoming)
        assert len(merged) == 8
        assert len(set(merged)) == 8
        assert merged[-4:] == ["n1", "n2", "n3", "n4"]


class TestConsolidate:
    """Merge-or-create decisions."""

    def test_merges_near_duplicate(self, sample_memories):
        cand = candidate("I love drinking coffee in the morning", evidence=["new quote"])
        result = consolidate(cand, sample_memories, now=NOW)

        assert result.action == ConsolidationAction.MERGE
        assert result.record.id == "mem-1"
        assert result.record.evidence == ["said so twice", "new quote"]
        assert result.record.confidence == pytest.approx(0.748)
        assert result.record.layer == MemoryLayer.L2
        assert len(result.records) == len(sample_memories)
        assert result.audit.type == HistoryType.CONSOLIDATION
        assert result.audit.affected_record_ids == ["mem-1"]
        assert result.audit.change_description == "Consolidated: I love drinking coffee in..."

    def test_merge_keeps_content_when_candidate_less_confident(self, memory_factory):
        records = [memory_factory("m", "I love drinking coffee daily", confidence=0.95)]
        cand = candidate("I love drinking coffee daily!", confidence=0.7)
        result = consolidate(cand, records, ConsolidationConfig(auto_merge_threshold=0.7))
        assert result.action == ConsolidationAction.MERGE
        assert result.record.content == "I love drinking coffee daily"

    def test_merge_raises_layer(self, sample_memories):
        cand = candidate("I love drinking coffee in the morning", layer=4)
        result = consolidate(cand, sample_memories)
        assert result.record.layer == MemoryLayer.L4

    def test_creates_new_record(self, sample_memories):
        cand = candidate("Enjoys painting watercolors on weekends", category="HABIT", evidence=["q"])
        result = consolidate(cand, sample_memories, now=NOW)

        assert result.action == ConsolidationAction.CREATE
        assert result.record.category == MemoryCategory.HABIT
        assert result.record.confidence == pytest.approx(0.9)
        assert result.record.evidence == ["q"]
        assert result.record.confirmed_by_human is True
        assert result.record.metadata == {"sourceTrack": "PASSIVE"}
        assert result.records[-1] is result.record
        assert len(result.records) == len(sample_memories) + 1
        assert result.audit.type == HistoryType.IMPORT_SYNC
        assert result.audit.change_description.startswith("New pattern: ")

    def test_create_without_category_defaults_to_goal(self):
        result = consolidate(candidate("Learn Rust", category=None), [])
        assert result.record.category == MemoryCategory.GOAL

    def test_inputs_not_mutated(self, sample_memories):
        before = [dict(m) for m in sample_memories]
        consolidate(candidate("I love drinking coffee in the morning", evidence=["z"]), sample_memories)
        assert sample_memories == before

    def test_apply_to_dataset(self, sample_dataset):
        result = consolidate(candidate("Enjoys painting", category="HABIT"), sample_dataset["memories"])
        updated = apply_to_dataset(result, sample_dataset)

        assert len(updated["memories"]) == len(sample_dataset["memories"]) + 1
        assert updated["history"][-1]["type"] == "IMPORT_SYNC"
        assert updated["history"][-1]["affectedMemoryIds"] == [result.record.id]
        assert updated["knowledge"] == sample_dataset["knowledge"]
        assert len(sample_dataset["history"]) == 1


class TestTriage:
    """Batch sorting of extraction output."""

    RAW = [
        {"content": "Likes things", "category": "PREFERENCE", "confidence": 0.3},
        {
            "content": "I love drinking coffee in the morning",
            "category": "PREFERENCE",
            "confidence": 0.9,
            "evidenceStrength": 0.8,
        },
        {
            "content": "Wants to run a marathon next spring",
            "category": "GOAL",
            "confidence": 0.9,
            "evidenceStrength": 0.8,
        },
        {
            "content": "Enjoys painting watercolors on weekends",
            "category": "HABIT",
            "confidence": 0.9,
            "evidenceStrength": 0.8,
        },
        {"content": "   ", "confidence": 1.0},
    ]

    def test_sorts_candidates(self, sample_memories):
        result = triage(self.RAW, sample_memories, evidence_context=["chat excerpt"], now=NOW)

        assert len(result.rejected) == 2
        assert result.merged_count == 1
        assert result.audit[0].affected_record_ids == ["mem-1"]

        by_summary = {p["summary"]: p for p in result.proposals}
        assert by_summary["Wants to run a marathon next spring"]["type"] == "UPDATE"
        assert by_summary["Enjoys painting watercolors on weekends"]["type"] == "NEW"
        assert all(p["status"] == "PENDING" for p in result.proposals)
        update = by_summary["Wants to run a marathon next spring"]
        assert update["similarityMatches"][0]["memoryId"] == "mem-2"

    def test_quality_filter_disabled_keeps_low_confidence(self, sample_memories):
        config = ConsolidationConfig(quality_filter_enabled=False)
        result = triage(self.RAW[:1], sample_memories, config)
        assert len(result.rejected) == 0
        assert len(result.proposals) == 1

    def test_pending_summaries_not_queued_twice(self, sample_memories):
        existing = [{"summary": "Enjoys painting watercolors on weekends", "status": "PENDING"}]
        result = triage(self.RAW[3:4] * 2, sample_memories, existing_proposals=existing)
        assert result.proposals == []

    def test_duplicates_within_batch_queued_once(self):
        result = triage(self.RAW[3:4] * 3, [])
        assert len(result.proposals) == 1

    def test_model_metadata(self):
        result = triage(self.RAW[3:4], [], model="gemini-3-pro-preview", now=NOW)
        meta = result.proposals[0]["extractionMetadata"]
        assert meta == {"model": "gemini-3-pro-preview", "timestamp": NOW, "extractionMethod": "CHAT"}


class TestExtractionGuard:
    """Single-flight extraction."""

    def test_second_acquire_fails(self):
        guard = ExtractionGuard()
        guard.acquire()
        with pytest.raises(ExtractionInProgressError):
            guard.acquire()
        guard.release()
        assert not guard.held

    def test_context_manager_releases_on_error(self):
        guard = ExtractionGuard()
        with pytest.raises(RuntimeError):
            with guard:
                assert guard.held
                raise RuntimeError("boom")
        assert not guard.held

    def test_concurrent_attempt_rejected(self):
        guard = ExtractionGuard()
        errors = []

        def worker():
            try:
                guard.acquire()
            except ExtractionInProgressError as e:
                errors.append(e)

        with guard:
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()
        assert len(errors) == 1


class FakeExtractionService:
    """Returns one repeated fact plus one fact unique to each chunk."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def extract(self, text):
        if self.fail:
            raise RuntimeError("model unavailable")
        self.calls.append(text)
        return [
            {
                "content": "Enjoys hiking on weekends",
                "category": "PREFERENCE",
                "confidence": 0.9,
                "evidenceStrength": 0.9,
            },
            {
                "content": f"Fact number {len(self.calls)}",
                "category": "GOAL",
                "confidence": 0.9,
                "evidenceStrength": 0.9,
            },
            {"content": "Low quality guess", "confidence": 0.2},
        ]


class TestExtractAndTriage:
    """Chunk, extract under the guard, merge, triage."""

    TEXT = "a" * 250

    def test_fake_service_satisfies_protocol(self):
        assert isinstance(FakeExtractionService(), ExtractionService)

    def test_one_call_per_chunk_and_merged_results(self):
        service = FakeExtractionService()
        result = extract_and_triage(
            self.TEXT, service, [], ExtractionGuard(), max_chunk_size=100, now=NOW
        )
        assert len(service.calls) == 3
        assert [p["summary"] for p in result.proposals] == [
            "Enjoys hiking on weekends",
            "Fact number 1",
            "Fact number 2",
            "Fact number 3",
        ]
        assert all(p["type"] == "NEW" for p in result.proposals)
        assert [c.summary for c in result.rejected] == ["Low quality guess"]

    def test_existing_match_is_merged(self, memory_factory):
        existing = [memory_factory("m-hike", "Enjoys hiking on weekends")]
        result = extract_and_triage(
            self.TEXT, FakeExtractionService(), existing, ExtractionGuard(), max_chunk_size=100, now=NOW
        )
        assert result.merged_count == 1
        assert result.audit[0].affected_record_ids == ["m-hike"]
        assert "Enjoys hiking on weekends" not in [p["summary"] for p in result.proposals]

    def test_short_text_uses_model_budget(self):
        service = FakeExtractionService()
        extract_and_triage("Short note.", service, [], ExtractionGuard(), model="gemini-pro")
        assert service.calls == ["Short note."]

    def test_held_guard_rejects_run(self):
        guard = ExtractionGuard()
        service = FakeExtractionService()
        with guard:
            with pytest.raises(ExtractionInProgressError):
                extract_and_triage(self.TEXT, service, [], guard, max_chunk_size=100)
        assert service.calls == []

    def test_guard_released_when_service_fails(self):
        guard = ExtractionGuard()
        with pytest.raises(RuntimeError):
            extract_and_triage(self.TEXT, FakeExtractionService(fail=True), [], guard)
        assert not guard.held
