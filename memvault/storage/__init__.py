"""Key-value persistence adapters for memvault datasets.

Both adapters satisfy ``memvault.protocols.KeyValueStore``. The dataset is
stored as six keys, ``memvault_<collection>``, each holding a JSON array.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from memvault.protocols import KeyValueStore, QuotaExceededError, StorageError
from memvault.types import COLLECTIONS, Dataset

logger = logging.getLogger(__name__)

KEY_PREFIX = "memvault_"


def _encoded_size(key: str, value: Any) -> int:
    return len(key.encode("utf-8")) + len(json.dumps(value, ensure_ascii=False).encode("utf-8"))


class InMemoryStore:
    """Dict-backed store with an optional byte quota.

    Values are kept as their JSON text so callers never share mutable state
    with the store.
    """

    def __init__(self, quota: Optional[int] = None):
        self.quota = quota
        self._data: Dict[str, str] = {}

    def _used(self, excluding: Optional[str] = None) -> int:
        return sum(
            len(k.encode("utf-8")) + len(v.encode("utf-8"))
            for k, v in self._data.items()
            if k != excluding
        )

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key!r} is not JSON-serializable: {e}") from e
        if self.quota is not None:
            size = self._used(excluding=key) + _encoded_size(key, value)
            if size > self.quota:
                raise QuotaExceededError(key, size, self.quota)
        self._data[key] = text

    def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def list_keys(self) -> List[str]:
        return sorted(self._data)

    @property
    def used_bytes(self) -> int:
        return self._used()


class JsonDirectoryStore:
    """One ``<key>.json`` file per key inside a directory.

    Files are written atomically (temp file then replace) with 0600
    permissions.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create store directory {self.root}: {e}") from e

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            text = json.dumps(value, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key!r} is not JSON-serializable: {e}") from e
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(tmp, 0o600)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {e}") from e

    def remove(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to remove {path}: {e}") from e
        return True

    def clear(self) -> None:
        for key in self.list_keys():
            self.remove(key)

    def list_keys(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))


def collection_key(name: str) -> str:
    return f"{KEY_PREFIX}{name}"


def load_dataset(store: KeyValueStore) -> Dataset:
    """Read all six collections; missing or non-list values load as empty."""
    dataset: Dataset = {}
    for name in COLLECTIONS:
        value = store.get(collection_key(name))
        if value is not None and not isinstance(value, list):
            logger.warning("Ignoring %s: expected a list, got %s", name, type(value).__name__)
            value = None
        dataset[name] = value or []
    return dataset


def _restore(store: KeyValueStore, previous: Dict[str, Any], written: List[str]) -> None:
    for key in reversed(written):
        try:
            if previous[key] is None:
                store.remove(key)
            else:
                store.set(key, previous[key])
        except StorageError as e:
            logger.error("Rollback of %s failed: %s", key, e)


def save_dataset(store: KeyValueStore, dataset: Dataset) -> None:
    """Write all six collections, all or nothing.

    If any write fails, keys already written are restored to their previous
    values (or removed if they did not exist) before the error propagates.

    Raises:
        QuotaExceededError: If the store runs out of room.
        StorageError: On any other write failure.
    """
    keys = [collection_key(name) for name in COLLECTIONS]
    previous = {key: store.get(key) for key in keys}
    written: List[str] = []
    try:
        for name, key in zip(COLLECTIONS, keys):
            store.set(key, list(dataset.get(name) or []))
            written.append(key)
    except StorageError:
        logger.warning("Dataset save failed after %d of %d keys; rolling back", len(written), len(keys))
        _restore(store, previous, written)
        raise
    logger.debug("Saved dataset: %s", {name: len(dataset.get(name) or []) for name in COLLECTIONS})


__all__ = [
    "InMemoryStore",
    "JsonDirectoryStore",
    "KEY_PREFIX",
    "collection_key",
    "load_dataset",
    "save_dataset",
]
