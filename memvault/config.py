"""Runtime settings for memvault.

Settings come from ``MEMVAULT_*`` environment variables with defaults that
match the application's shipped configuration. Unparsable values fall back to
the default with a warning rather than failing startup.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from memvault.consolidation import ConsolidationConfig

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "~/.memvault"
DEFAULT_MODEL = "gemini-3-pro-preview"


def get_data_dir() -> Path:
    """Return the data directory, honoring ``MEMVAULT_DATA_DIR``."""
    return Path(os.environ.get("MEMVAULT_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number, using %s", name, raw, default)
        return default
    if not 0.0 <= value <= 1.0:
        logger.warning("Ignoring %s=%r: must be within [0, 1], using %s", name, raw, default)
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    logger.warning("Ignoring %s=%r: not a boolean, using %s", name, raw, default)
    return default


@dataclass
class Settings:
    """User-facing thresholds and paths."""

    min_confidence_threshold: float = 0.6
    auto_merge_threshold: float = 0.85
    similarity_threshold: float = 0.7
    quality_filter_enabled: bool = True
    default_model: str = DEFAULT_MODEL
    data_dir: Path = field(default_factory=get_data_dir)

    def consolidation_config(self) -> "ConsolidationConfig":
        from memvault.consolidation import ConsolidationConfig

        return ConsolidationConfig(
            similarity_threshold=self.similarity_threshold,
            auto_merge_threshold=self.auto_merge_threshold,
            min_confidence_threshold=self.min_confidence_threshold,
            quality_filter_enabled=self.quality_filter_enabled,
        )


def load_settings(data_dir: Optional[Path] = None) -> Settings:
    """Build Settings from the environment."""
    defaults = Settings()
    return Settings(
        min_confidence_threshold=_env_float(
            "MEMVAULT_MIN_CONFIDENCE", defaults.min_confidence_threshold
        ),
        auto_merge_threshold=_env_float("MEMVAULT_AUTO_MERGE_THRESHOLD", defaults.auto_merge_threshold),
        similarity_threshold=_env_float("MEMVAULT_SIMILARITY_THRESHOLD", defaults.similarity_threshold),
        quality_filter_enabled=_env_bool("MEMVAULT_QUALITY_FILTER", defaults.quality_filter_enabled),
        default_model=os.environ.get("MEMVAULT_MODEL") or defaults.default_model,
        data_dir=Path(data_dir) if data_dir else get_data_dir(),
    )
