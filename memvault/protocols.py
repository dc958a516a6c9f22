"""
memvault protocols - the contracts between the core and its collaborators.

The core never talks to a model provider or a storage engine directly. It
receives raw extraction output from an ``ExtractionService`` and hands
datasets to a ``KeyValueStore``; both are defined here as structural
protocols so any object with the right methods can be plugged in.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

# =============================================================================
# ERRORS
# =============================================================================


class MemvaultError(Exception):
    """Base for all memvault errors."""

    pass


class StorageError(MemvaultError):
    """Raised by persistence adapters on storage failures."""

    pass


class QuotaExceededError(StorageError):
    """Raised when a write would exceed the store's capacity.

    Callers catch this to trigger ``maintenance.auto_cleanup_on_quota_error``
    and retry.
    """

    def __init__(self, key: str, size: int, quota: int):
        self.key = key
        self.size = size
        self.quota = quota
        super().__init__(f"Quota exceeded writing {key!r}: {size} bytes over quota of {quota}")


class ExtractionInProgressError(MemvaultError):
    """Raised when an extraction guard is already held."""

    pass


# =============================================================================
# COLLABORATORS
# =============================================================================


@runtime_checkable
class ExtractionService(Protocol):
    """Proposes candidate facts from text.

    Returns unvalidated items shaped like::

        {"content": str, "category"?: str, "layer"?: int, "confidence"?: float,
         "evidenceStrength"?: float, "reasoning"?: str,
         "qualityIndicators"?: {"generalization"?: float, "consistency"?: float}}

    The core clamps and defaults every field of every item.
    """

    def extract(self, text: str) -> List[Dict[str, Any]]: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Opaque key -> JSON value store."""

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when the key is absent."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value.

        Raises:
            QuotaExceededError: If the store is full.
            StorageError: On any other write failure.
        """
        ...

    def remove(self, key: str) -> bool: ...

    def clear(self) -> None: ...

    def list_keys(self) -> List[str]: ...
