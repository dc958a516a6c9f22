"""Tests for memvault.maintenance."""

import copy
import json
from datetime import datetime, timedelta, timezone

import pytest

from memvault.maintenance import (
    AGGRESSIVE_KEEP_FRACTION,
    AGGRESSIVE_MIN_HISTORY,
    MAX_CLEANUP_ROUNDS,
    CleanupOptions,
    auto_cleanup_on_quota_error,
    cleanup_storage,
    estimate_storage_usage,
    format_size,
)
from memvault.types import COLLECTIONS, empty_dataset

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days):
    return (NOW - timedelta(days=days)).isoformat()


class TestEstimateStorageUsage:
    def test_empty_dataset(self):
        usage = estimate_storage_usage(empty_dataset())
        assert usage.by_collection == {name: 2 for name in COLLECTIONS}
        assert usage.total == 12

    def test_sizes_are_utf8_json(self, sample_dataset):
        usage = estimate_storage_usage(sample_dataset)
        expected = len(json.dumps(sample_dataset["memories"], ensure_ascii=False).encode("utf-8"))
        assert usage.by_collection["memories"] == expected
        assert usage.total == sum(usage.by_collection.values())
        assert "memories:" in usage.breakdown

    @pytest.mark.parametrize(
        "size,expected",
        [(512, "512 B"), (2048, "2.00 KB"), (3 * 1024 * 1024, "3.00 MB")],
    )
    def test_format_size(self, size, expected):
        assert format_size(size) == expected


class TestCleanupStorage:
    """Retention rules."""

    def test_rejected_proposals(self):
        dataset = {
            "proposals": [
                {"id": "old", "status": "REJECTED", "extractionMetadata": {"timestamp": days_ago(45)}},
                {"id": "recent", "status": "REJECTED", "extractionMetadata": {"timestamp": days_ago(3)}},
                {"id": "undated", "status": "REJECTED"},
                {"id": "pending", "status": "PENDING"},
            ]
        }
        result = cleanup_storage(dataset, now=NOW)
        assert [p["id"] for p in result.data["proposals"]] == ["recent", "pending"]
        assert result.cleaned["proposals"] == 2

    def test_keeps_most_recent_sessions(self):
        dataset = {"sessions": [{"id": f"s{i}", "lastMessageAt": days_ago(i)} for i in range(5)]}
        result = cleanup_storage(dataset, CleanupOptions(keep_recent_sessions=2), now=NOW)
        assert [s["id"] for s in result.data["sessions"]] == ["s0", "s1"]
        assert result.cleaned["sessions"] == 3

    def test_history_and_uploads(self):
        dataset = {
            "history": [{"id": f"h{i}", "timestamp": days_ago(i)} for i in range(4)],
            "uploads": [{"id": f"u{i}", "uploadedAt": days_ago(10 - i)} for i in range(4)],
        }
        options = CleanupOptions(keep_recent_history=1, keep_recent_uploads=3)
        result = cleanup_storage(dataset, options, now=NOW)
        assert [h["id"] for h in result.data["history"]] == ["h0"]
        assert [u["id"] for u in result.data["uploads"]] == ["u3", "u2", "u1"]
        assert result.cleaned["history"] == 3
        assert result.cleaned["uploads"] == 1

    def test_under_limit_untouched(self, sample_dataset):
        result = cleanup_storage(sample_dataset, now=NOW)
        assert result.data["sessions"] == sample_dataset["sessions"]
        assert result.cleaned["sessions"] == 0

    def test_archives_stale_unconfirmed_memories(self, memory_factory):
        dataset = {
            "memories": [
                memory_factory("stale", "a", updatedAt=days_ago(120)),
                memory_factory("confirmed", "b", updatedAt=days_ago(120), confirmedByHuman=True),
                memory_factory("fresh", "c", updatedAt=days_ago(10)),
                memory_factory("pending", "d", updatedAt=days_ago(120), status="PENDING"),
            ]
        }
        result = cleanup_storage(dataset, now=NOW)
        statuses = {m["id"]: m["status"] for m in result.data["memories"]}
        assert statuses == {
            "stale": "ARCHIVED",
            "confirmed": "ACTIVE",
            "fresh": "ACTIVE",
            "pending": "PENDING",
        }
        assert result.cleaned["memories"] == 1
        assert dataset["memories"][0]["status"] == "ACTIVE"

    def test_archiving_disabled(self, memory_factory):
        dataset = {"memories": [memory_factory("stale", "a", updatedAt=days_ago(400))]}
        result = cleanup_storage(dataset, CleanupOptions(archive_after_days=0), now=NOW)
        assert result.data["memories"][0]["status"] == "ACTIVE"
        assert result.cleaned["memories"] == 0

    def test_input_not_mutated(self, sample_dataset):
        before = copy.deepcopy(sample_dataset)
        cleanup_storage(sample_dataset, CleanupOptions(keep_recent_history=0), now=NOW)
        assert sample_dataset == before


class TestAutoCleanup:
    """Quota-driven cleanup rounds."""

    @pytest.fixture
    def big_dataset(self):
        dataset = empty_dataset()
        dataset["history"] = [
            {"id": f"h{i}", "timestamp": days_ago(i % 30), "changeDescription": "x" * 200}
            for i in range(500)
        ]
        return dataset

    def test_shrinks_in_bounded_rounds(self, big_dataset):
        cleaned, freed = auto_cleanup_on_quota_error(big_dataset, target_size=1, now=NOW)
        expected = 500
        for _ in range(MAX_CLEANUP_ROUNDS):
            expected = max(AGGRESSIVE_MIN_HISTORY, int(expected * AGGRESSIVE_KEEP_FRACTION))
        assert len(cleaned["history"]) == expected
        assert expected < 100
        assert freed > 0
        assert len(big_dataset["history"]) == 500

    def test_stops_once_under_target(self, big_dataset):
        size = estimate_storage_usage(big_dataset).total
        cleaned, freed = auto_cleanup_on_quota_error(big_dataset, target_size=size + 1, now=NOW)
        assert freed == 0
        assert cleaned["history"] == big_dataset["history"]

    def test_respects_floors(self):
        dataset = empty_dataset()
        dataset["history"] = [{"id": f"h{i}", "timestamp": days_ago(i)} for i in range(60)]
        cleaned, _ = auto_cleanup_on_quota_error(dataset, target_size=1, now=NOW)
        assert len(cleaned["history"]) == 50
