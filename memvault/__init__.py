"""
memvault - Personal memory consolidation and backup reconciliation.

Decides whether a candidate fact duplicates, updates, or extends existing
memories, chunks long documents for extraction, and merges backup packages
across devices without losing records.
"""

from importlib.metadata import PackageNotFoundError, version

from .consolidation import ConsolidationConfig, consolidate, find_similar, merged_confidence
from .reconcile import ImportOptions, apply_import, detect_conflicts

try:
    __version__ = version("memvault")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "ConsolidationConfig",
    "ImportOptions",
    "apply_import",
    "consolidate",
    "detect_conflicts",
    "find_similar",
    "merged_confidence",
]
