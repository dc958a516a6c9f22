"""Logging setup for memvault.

Every module logs through ``logging.getLogger(__name__)``, so all output lands
under the ``memvault`` logger. ``setup_memvault_logging`` attaches a dated file
handler to that logger; the ``log_*`` helpers emit one-line structured events
that are easy to grep out of the daily log.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from memvault.config import get_data_dir

LOGGER_NAME = "memvault"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_memvault_logging(
    level: Union[str, int] = "INFO", data_dir: Optional[Path] = None
) -> logging.Logger:
    """Attach a file handler writing to ``<data dir>/logs/local-YYYY-MM-DD.log``.

    Safe to call repeatedly: an existing handler for the same file is reused.

    Args:
        level: Level name (case-insensitive) or numeric level.
        data_dir: Override for the data directory (defaults to ``get_data_dir()``).

    Returns:
        The ``memvault`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        level = numeric if isinstance(numeric, int) else logging.INFO
    logger.setLevel(level)

    log_dir = Path(data_dir or get_data_dir()) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    log_file = (log_dir / f"local-{date}.log").resolve()

    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_file:
            return logger

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return logger


def log_consolidation(action: str, record_id: str, similarity: Optional[float] = None) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    if similarity is None:
        logger.info("consolidation action=%s record=%s", action, record_id)
    else:
        logger.info(
            "consolidation action=%s record=%s similarity=%.3f", action, record_id, similarity
        )


def log_import(strategy: str, counts: Dict[str, int], conflicts: int) -> None:
    summary = " ".join(f"{name}={count}" for name, count in counts.items())
    logging.getLogger(LOGGER_NAME).info(
        "import strategy=%s conflicts=%d %s", strategy, conflicts, summary
    )


def log_chunking(text_length: int, chunk_count: int, model: Optional[str] = None) -> None:
    logging.getLogger(LOGGER_NAME).info(
        "chunking length=%d chunks=%d model=%s", text_length, chunk_count, model or "default"
    )
