"""Versioned JSON lists of pydantic records in a KeyValueStore."""

import json
import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import StorageError
from ..storage import KeyValueStore

logger = logging.getLogger("offline.persistence")

RECORD_SCHEMA_VERSION = 1

M = TypeVar("M", bound=BaseModel)


class RecordList(Generic[M]):
    """
    One namespaced store key holding `{"version": 1, "items": [...]}`.

    Loading fails closed: an undecodable record, another schema version or
    an item that does not validate discards the whole record.
    """

    def __init__(self, store: KeyValueStore, key: str, model: Type[M]):
        self._store = store
        self.key = key
        self._model = model

    def load(self) -> List[M]:
        try:
            raw = self._store.get(self.key)
        except StorageError as e:
            logger.warning(f"Failed to read '{self.key}': {e}")
            return []
        if raw is None:
            return []
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict) or payload.get("version") != RECORD_SCHEMA_VERSION:
                raise ValueError(f"unsupported layout or version in '{self.key}'")
            items = payload.get("items")
            if not isinstance(items, list):
                raise ValueError(f"no item list in '{self.key}'")
            return [self._model.model_validate(item) for item in items]
        except (ValueError, ValidationError) as e:
            logger.warning(f"Discarding stored records '{self.key}': {e}")
            self.discard()
            return []

    def save(self, items: List[M]) -> bool:
        payload = {
            "version": RECORD_SCHEMA_VERSION,
            "items": [item.model_dump(mode="json") for item in items],
        }
        try:
            self._store.set(self.key, json.dumps(payload, separators=(",", ":")))
            return True
        except (StorageError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist '{self.key}' ({len(items)} records): {e}")
            return False

    def discard(self) -> None:
        try:
            self._store.remove(self.key)
        except StorageError as e:
            logger.warning(f"Failed to remove '{self.key}': {e}")


def load_value(store: KeyValueStore, key: str) -> Optional[Any]:
    """Read a small JSON value; None when absent or unreadable."""
    try:
        raw = store.get(key)
        return json.loads(raw) if raw is not None else None
    except (StorageError, ValueError) as e:
        logger.warning(f"Failed to read '{key}': {e}")
        return None


def save_value(store: KeyValueStore, key: str, value: Any) -> bool:
    try:
        store.set(key, json.dumps(value))
        return True
    except (StorageError, TypeError, ValueError) as e:
        logger.error(f"Failed to persist '{key}': {e}")
        return False
