"""
Key/Value Preferences Store

Opaque string store used for the server ledger and the client session
bookmark. Values are whole-value overwrites; callers serialize their own
records.

Implementations:
- InMemoryStore: process-local dict (tests, ephemeral runs)
- JsonFileStore: single JSON file, atomic temp-file writes
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal persistent string store"""

    @abstractmethod
    def has_key(self, key: str) -> bool:
        pass

    @abstractmethod
    def get_string(self, key: str, default: str = "") -> str:
        pass

    @abstractmethod
    def set_string(self, key: str, value: str):
        pass

    @abstractmethod
    def delete_key(self, key: str):
        pass

    def save(self) -> bool:
        """Flush pending writes. Returns True on success."""
        return True


class InMemoryStore(KeyValueStore):
    """Dict-backed store; nothing survives the process"""

    def __init__(self, initial: dict[str, str] | None = None):
        self._lock = threading.RLock()
        self._data: dict[str, str] = dict(initial or {})

    def has_key(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def get_string(self, key: str, default: str = "") -> str:
        with self._lock:
            return self._data.get(key, default)

    def set_string(self, key: str, value: str):
        with self._lock:
            self._data[key] = value

    def delete_key(self, key: str):
        with self._lock:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._data)


class JsonFileStore(KeyValueStore):
    """
    Store persisted to a single JSON object on disk.

    Every set/delete writes through (atomically) unless autosave is False,
    in which case callers flush with save().
    """

    def __init__(self, path: str | Path, autosave: bool = True):
        self.path = Path(path)
        self.autosave = autosave
        self._lock = threading.RLock()
        self._data: dict[str, str] = {}
        self.load()

    def load(self) -> bool:
        """
        Load the store from disk.

        Returns:
            True if loaded, False if the file is missing or unreadable (starts empty)
        """
        with self._lock:
            if not self.path.exists():
                logger.info(f"No preferences file at {self.path}, starting empty")
                self._data = {}
                return False

            try:
                with open(self.path) as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("preferences file must hold a JSON object")
                self._data = {str(k): str(v) for k, v in data.items()}
                logger.debug(f"Loaded {len(self._data)} preference keys from {self.path}")
                return True
            except (json.JSONDecodeError, ValueError, OSError) as e:
                logger.error(f"Failed to load preferences from {self.path}: {e}. Starting empty.")
                self._data = {}
                return False

    def has_key(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def get_string(self, key: str, default: str = "") -> str:
        with self._lock:
            return self._data.get(key, default)

    def set_string(self, key: str, value: str):
        with self._lock:
            self._data[key] = value
            if self.autosave:
                self._save_locked()

    def delete_key(self, key: str):
        with self._lock:
            if self._data.pop(key, None) is not None and self.autosave:
                self._save_locked()

    def save(self) -> bool:
        with self._lock:
            return self._save_locked()

    def _save_locked(self) -> bool:
        """Write atomically (temp file, then rename). Must hold the lock."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.path.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            temp_file.replace(self.path)
            return True
        except OSError as e:
            logger.error(f"Failed to save preferences to {self.path}: {e}")
            return False
