"""
Pytest fixtures and test configuration for memvault tests.
"""

import logging
from typing import Any, Dict

import pytest

from memvault.types import empty_dataset

NOW = "2025-06-01T12:00:00+00:00"


def make_memory(id: str, content: str, **overrides) -> Dict[str, Any]:
    """Build a memory record in backup JSON shape."""
    record = {
        "id": id,
        "content": content,
        "category": "PREFERENCE",
        "layer": 2,
        "confidence": 0.7,
        "evidence": [],
        "status": "ACTIVE",
        "isSensitive": False,
        "createdAt": NOW,
        "updatedAt": NOW,
        "confirmedByHuman": False,
    }
    record.update(overrides)
    return record


@pytest.fixture
def memory_factory():
    return make_memory


@pytest.fixture
def sample_memories():
    """A small set of memories across categories and statuses."""
    return [
        make_memory("mem-1", "I love drinking coffee in the morning", evidence=["said so twice"]),
        make_memory("mem-2", "Wants to run a marathon next year", category="GOAL", layer=3),
        make_memory("mem-3", "Prefers tea over coffee", status="ARCHIVED"),
        make_memory("mem-4", "Never schedule meetings on Sunday", category="BOUNDARY"),
    ]


@pytest.fixture
def sample_dataset(sample_memories):
    """A dataset with a record in every collection."""
    dataset = empty_dataset()
    dataset["memories"] = sample_memories
    dataset["knowledge"] = [
        {
            "id": "k-1",
            "title": "Python style guide",
            "content": "Use four spaces for indentation in Python code.",
            "type": "REFERENCE",
            "tags": ["python", "style"],
            "status": "ACTIVE",
        }
    ]
    dataset["sessions"] = [
        {
            "id": "s-1",
            "title": "Morning chat",
            "messages": [{"role": "user", "content": "Hello"}],
            "lastMessageAt": NOW,
        }
    ]
    dataset["uploads"] = [{"id": "u-1", "filename": "notes.txt", "uploadedAt": NOW}]
    dataset["proposals"] = [
        {"id": "p-1", "summary": "Likes hiking", "status": "PENDING"},
        {
            "id": "p-2",
            "summary": "Dislikes mornings",
            "status": "REJECTED",
            "extractionMetadata": {"timestamp": "2025-01-01T00:00:00+00:00"},
        },
    ]
    dataset["history"] = [
        {
            "id": "h-1",
            "timestamp": NOW,
            "changeDescription": "New pattern: I love drinking coffee...",
            "affectedMemoryIds": ["mem-1"],
            "type": "IMPORT_SYNC",
        }
    ]
    return dataset


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point MEMVAULT_DATA_DIR at a temp directory."""
    monkeypatch.setenv("MEMVAULT_DATA_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def clean_memvault_logger():
    """Detach handlers from the memvault logger around a test."""
    logger = logging.getLogger("memvault")

    def _reset():
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)

    _reset()
    yield logger
    _reset()
