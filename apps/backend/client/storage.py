import os
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class IKeyValueStore(ABC):
    """Device-local JSON storage the client components persist their state through."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryKeyValueStore(IKeyValueStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        # Values round-trip through JSON so callers never share mutable state
        self._data: Dict[str, str] = {k: json.dumps(v) for k, v in (initial or {}).items()}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore(IKeyValueStore):
    """One JSON file per key under `storage_path`."""

    def __init__(self, storage_path: str):
        self.storage_root = Path(storage_path)
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        safe_name = os.path.basename(key).replace(" ", "_")
        return self.storage_root / f"{safe_name}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            # Corrupt state reads as absent, like a cleared localStorage entry
            logger.warning(f"[ClientStore] Failed to load {key}: {e}")
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        with self._lock:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f)
            os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


def get_key_value_store() -> IKeyValueStore:
    store_type = os.getenv("CLIENT_STORE", "memory").lower()
    if store_type == "file":
        return JsonFileKeyValueStore(os.getenv("CLIENT_STORE_PATH", ".client_state"))
    return InMemoryKeyValueStore()
