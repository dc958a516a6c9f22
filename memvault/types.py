"""
Shared record types for memvault.

These dataclasses are the vocabulary shared by the consolidation resolver,
the chunker, the import reconciler and the backup layer. Backup files and the
key-value store hold the camelCase JSON shape; ``to_dict``/``from_dict``
convert between the two.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string, returning None when unparsable."""
    if not s or not isinstance(s, str):
        return None
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# === Enums ===


class MemoryCategory(str, Enum):
    """What kind of fact a memory record holds."""

    GOAL = "GOAL"
    PREFERENCE = "PREFERENCE"
    HABIT = "HABIT"
    BOUNDARY = "BOUNDARY"
    VALUE = "VALUE"
    PROJECT = "PROJECT"
    PEOPLE = "PEOPLE"


class MemoryLayer(IntEnum):
    """Stability tier, from volatile working context to core identity."""

    L0 = 0  # Volatile
    L1 = 1  # Short-term
    L2 = 2  # Patterned
    L3 = 3  # Strategic
    L4 = 4  # Identity


class MemoryStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    REJECTED = "REJECTED"


class KnowledgeType(str, Enum):
    DOCUMENT = "DOCUMENT"
    REFERENCE = "REFERENCE"
    CONTEXT = "CONTEXT"
    FACT = "FACT"
    NOTE = "NOTE"


class HistoryType(str, Enum):
    """Audit entry types."""

    CONSOLIDATION = "CONSOLIDATION"
    CONFLICT = "CONFLICT"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"
    TTL_ARCHIVE = "TTL_ARCHIVE"
    IMPORT_SYNC = "IMPORT_SYNC"


class ProposalStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ProposalType(str, Enum):
    NEW = "NEW"
    UPDATE = "UPDATE"
    CONFLICT = "CONFLICT"


VALID_CATEGORY_VALUES = frozenset(c.value for c in MemoryCategory)
VALID_STATUS_VALUES = frozenset(s.value for s in MemoryStatus)
VALID_KNOWLEDGE_TYPE_VALUES = frozenset(k.value for k in KnowledgeType)
VALID_HISTORY_TYPE_VALUES = frozenset(h.value for h in HistoryType)
VALID_PROPOSAL_STATUS_VALUES = frozenset(p.value for p in ProposalStatus)

# Evidence snippets kept per record after a merge (most recent win)
MAX_EVIDENCE_ITEMS = 8

# The six collections of a dataset, in canonical order
COLLECTIONS = ("memories", "knowledge", "sessions", "uploads", "proposals", "history")

# A dataset maps each collection name to a list of JSON-shaped records
Dataset = Dict[str, List[Dict[str, Any]]]


def empty_dataset() -> Dataset:
    return {name: [] for name in COLLECTIONS}


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def coerce_category(value: Any, default: Optional[MemoryCategory] = None) -> Optional[MemoryCategory]:
    """Map an untrusted category value onto the enum."""
    if isinstance(value, MemoryCategory):
        return value
    if isinstance(value, str) and value.strip().upper() in VALID_CATEGORY_VALUES:
        return MemoryCategory(value.strip().upper())
    return default


def coerce_layer(value: Any, default: MemoryLayer = MemoryLayer.L1) -> MemoryLayer:
    """Map an untrusted layer value onto L0..L4, falling back to ``default``."""
    number = _finite(value)
    if number is None or number != int(number) or not 0 <= number <= 4:
        return default
    return MemoryLayer(int(number))


def coerce_status(value: Any, default: MemoryStatus = MemoryStatus.ARCHIVED) -> MemoryStatus:
    """Map an untrusted status onto the enum, case-insensitively.

    Unknown or missing values become ``default`` (ARCHIVED), never ACTIVE.
    """
    if isinstance(value, MemoryStatus):
        return value
    if isinstance(value, str):
        try:
            return MemoryStatus(value.strip().upper())
        except ValueError:
            pass
    return default


def dedup_evidence(items: List[Any], cap: int = MAX_EVIDENCE_ITEMS) -> List[str]:
    """Order-preserving dedup of evidence snippets, keeping the last ``cap``."""
    seen = set()
    result: List[str] = []
    for item in items:
        if not isinstance(item, str) or item in seen:
            continue
        seen.add(item)
        result.append(item)
    if cap > 0 and len(result) > cap:
        result = result[-cap:]
    return result


# === Memory Types ===


@dataclass
class MemoryRecord:
    """A stored fact or preference about the user.

    ``confidence`` is kept in [0, 1] and ``layer`` in L0..L4; ``evidence`` is
    de-duplicated and capped at MAX_EVIDENCE_ITEMS on construction.
    """

    id: str
    content: str
    category: MemoryCategory = MemoryCategory.GOAL
    layer: MemoryLayer = MemoryLayer.L1
    confidence: float = 0.8
    evidence: List[str] = field(default_factory=list)
    status: MemoryStatus = MemoryStatus.ACTIVE
    is_sensitive: bool = False
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    confirmed_by_human: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        confidence = _finite(self.confidence)
        self.confidence = 0.0 if confidence is None else max(0.0, min(1.0, confidence))
        self.layer = coerce_layer(self.layer)
        self.category = coerce_category(self.category, MemoryCategory.GOAL)
        self.status = coerce_status(self.status)
        self.evidence = dedup_evidence(list(self.evidence or []))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "content": self.content,
            "category": self.category.value,
            "layer": int(self.layer),
            "confidence": self.confidence,
            "evidence": list(self.evidence),
            "status": self.status.value,
            "isSensitive": self.is_sensitive,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "confirmedByHuman": self.confirmed_by_human,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryRecord":
        now = utc_now()
        return cls(
            id=data.get("id") or new_id(),
            content=data.get("content") or "",
            category=data.get("category"),
            layer=data.get("layer"),
            confidence=data.get("confidence", 0.0),
            evidence=data.get("evidence") or [],
            status=data.get("status", MemoryStatus.ACTIVE),
            is_sensitive=bool(data.get("isSensitive", False)),
            created_at=data.get("createdAt") or now,
            updated_at=data.get("updatedAt") or now,
            confirmed_by_human=bool(data.get("confirmedByHuman", False)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class SimilarityMatch:
    """An existing record found similar to a candidate."""

    record_id: str
    similarity: float
    reason: str
    record: Optional[MemoryRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"memoryId": self.record_id, "similarity": self.similarity, "reason": self.reason}


@dataclass
class CandidateInsight:
    """An unconfirmed fact proposed by the extraction collaborator."""

    summary: str
    reasoning: str = ""
    proposed_record: Dict[str, Any] = field(default_factory=dict)
    evidence_context: List[str] = field(default_factory=list)
    confidence: float = 0.7
    quality_score: float = 0.6
    evidence_strength: float = 0.6
    similarity_matches: List[SimilarityMatch] = field(default_factory=list)
    id: str = field(default_factory=new_id)

    @property
    def content(self) -> str:
        return self.proposed_record.get("content") or ""

    @property
    def category(self) -> Optional[MemoryCategory]:
        return coerce_category(self.proposed_record.get("category"))

    @property
    def layer(self) -> MemoryLayer:
        return coerce_layer(self.proposed_record.get("layer"))

    @classmethod
    def from_extraction(
        cls, raw: Dict[str, Any], evidence_context: Optional[List[str]] = None
    ) -> "CandidateInsight":
        """Build a candidate from one unvalidated extraction item.

        Numeric fields are clamped to [0, 1] (missing confidence defaults to
        0.7, missing evidence strength to 0.6), category and layer are mapped
        onto their enums, and the quality score is computed from the clamped
        signals.
        """
        from memvault.quality import clamp_unit, quality_score

        raw = raw if isinstance(raw, dict) else {}
        content = raw.get("content") if isinstance(raw.get("content"), str) else ""
        confidence = clamp_unit(raw.get("confidence"), 0.7)
        evidence_strength = clamp_unit(raw.get("evidenceStrength"), 0.6)
        indicators = raw.get("qualityIndicators")
        category = coerce_category(raw.get("category"))
        proposed: Dict[str, Any] = {
            "content": content,
            "layer": int(coerce_layer(raw.get("layer"))),
            "isSensitive": bool(raw.get("isSensitive", False)),
        }
        if category is not None:
            proposed["category"] = category.value
        return cls(
            summary=content,
            reasoning=raw.get("reasoning") if isinstance(raw.get("reasoning"), str) else "",
            proposed_record=proposed,
            evidence_context=[e for e in (evidence_context or []) if isinstance(e, str)],
            confidence=confidence,
            evidence_strength=evidence_strength,
            quality_score=quality_score(
                confidence, evidence_strength, indicators if isinstance(indicators, dict) else None
            ),
        )

    def to_proposal(
        self, proposal_type: ProposalType, now: Optional[str] = None, model: Optional[str] = None
    ) -> Dict[str, Any]:
        """Render as a PENDING proposal in the backup JSON shape."""
        proposal = {
            "id": self.id,
            "type": proposal_type.value,
            "summary": self.summary,
            "reasoning": self.reasoning,
            "proposedMemory": dict(self.proposed_record),
            "evidenceContext": list(self.evidence_context),
            "status": ProposalStatus.PENDING.value,
            "confidence": self.confidence,
            "qualityScore": self.quality_score,
            "evidenceStrength": self.evidence_strength,
            "similarityMatches": [m.to_dict() for m in self.similarity_matches],
        }
        if model:
            proposal["extractionMetadata"] = {
                "model": model,
                "timestamp": now or utc_now(),
                "extractionMethod": "CHAT",
            }
        return proposal


@dataclass
class EvolutionRecord:
    """One audit trail entry."""

    change_description: str
    affected_record_ids: List[str]
    type: HistoryType
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "changeDescription": self.change_description,
            "affectedMemoryIds": list(self.affected_record_ids),
            "type": self.type.value,
        }


# === Chunking / Import Types ===


@dataclass(frozen=True)
class TextChunk:
    """A slice ``text[start_index:end_index]`` of a source document."""

    text: str
    start_index: int
    end_index: int
    chunk_index: int


@dataclass
class ConflictRecord:
    """An imported record whose id already exists locally."""

    collection: str
    record_id: str
    existing: Dict[str, Any]
    incoming: Dict[str, Any]
    type: str = "id"

    @property
    def field(self) -> str:
        return f"{self.collection}[{self.record_id}]"
