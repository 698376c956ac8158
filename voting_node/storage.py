"""
Local persistence for the store: a tiny key/value JSON file, one entry per key.

The store keeps its persisted slice under a single key ("voting-storage").
Read failures are treated as "nothing stored yet"; write failures are logged
and ignored so that a mutation never fails because of the disk.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from pydantic import ValidationError

from .models import PersistedState

_logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[Any]: ...

    def set_item(self, key: str, value: Any) -> None: ...


class MemoryStorage:
    """Non-durable storage (tests, or nodes that should start fresh every time)."""

    def __init__(self) -> None:
        self._items: Dict[str, Any] = {}

    def get_item(self, key: str) -> Optional[Any]:
        value = self._items.get(key)
        return None if value is None else json.loads(value)

    def set_item(self, key: str, value: Any) -> None:
        # keep the JSON text, like the file does
        self._items[key] = json.dumps(value)


class JsonFileStorage:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            _logger.warning("Unreadable storage file %s, ignoring it", self.path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            _logger.warning("Storage file %s does not hold an object, ignoring it", self.path)
            return {}
        return data

    def get_item(self, key: str) -> Optional[Any]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp.replace(self.path)
        except OSError:
            _logger.warning("Could not write storage file %s", self.path, exc_info=True)


def load_state(storage: KeyValueStorage, key: str) -> Optional[PersistedState]:
    """
    Returns the persisted slice, or None when nothing usable is stored.
    """
    raw = storage.get_item(key)
    if raw is None:
        return None
    try:
        return PersistedState.model_validate(raw)
    except ValidationError:
        _logger.warning("Discarding invalid persisted state under %r", key, exc_info=True)
        return None


def save_state(storage: KeyValueStorage, key: str, state: PersistedState) -> None:
    storage.set_item(key, state.to_wire())
