"""
greasebox/bridge/storage.py

Persistent key/value store behind GM_setValue / GM_getValue / GM_deleteValue / GM_listValues.

The store is shared by every script of a run and written through to a JSON file on
every mutation; a failed write is logged and never surfaces to the page.
"""

import json
import os
from pathlib import Path
from typing import Any

from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


class StorageStore:
    """
    JSON-file backed key/value store.

    Usage:
        store = StorageStore.load("./gm_storage.json")
        store.set("count", 3)
        store.get("count")  # 3
    """

    def __init__(self, path: str | Path, data: dict[str, Any] | None = None) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = dict(data or {})

    @classmethod
    def load(cls, path: str | Path) -> "StorageStore":
        """
        Load the store from disk.

        A missing file yields an empty store. So does a corrupt or non-object file,
        after an error is logged; that file is overwritten on the next write.
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No existing GM storage file found at %s. Starting fresh.", path)
            return cls(path)
        except OSError as e:
            logger.error("Error reading GM storage file %s: %s", path, e)
            return cls(path)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Error loading GM storage from %s: %s", path, e)
            return cls(path)

        if not isinstance(data, dict):
            logger.error("GM storage file %s does not hold a JSON object. Starting fresh.", path)
            return cls(path)

        logger.info("Loaded GM storage from %s", path)
        return cls(path, data)

    # Magic methods ________________________________________________________________________________

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    # Public methods _______________________________________________________________________________

    def get(self, key: str, default: Any = None) -> Any:
        """Stored value for `key`, or `default` if absent."""
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> bool:
        """
        Store a value and write the store through to disk.

        Returns:
            True if the write succeeded.
        """
        self._data[key] = value
        return self.flush()

    def delete(self, key: str) -> bool:
        """
        Remove a key, writing through to disk if it existed.

        Returns:
            True if the key existed.
        """
        if key not in self._data:
            return False
        del self._data[key]
        self.flush()
        return True

    def keys(self) -> list[str]:
        """All stored keys, in insertion order."""
        return list(self._data)

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)

    def flush(self) -> bool:
        """
        Write the whole store to disk (atomically replacing the previous file).

        Returns:
            True on success. Failures are logged, never raised.
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self._data, indent=2, default=str), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error saving GM storage to %s: %s", self.path, e)
            return False
        logger.debug("Saved GM storage to %s", self.path)
        return True
