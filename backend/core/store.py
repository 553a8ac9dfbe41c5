"""
store.py — In-memory key/value store for uploaded datasets.

One instance is created when the app starts and cleared when it stops
(see main.py). Entries expire after a configurable TTL.
"""

from time import time
from typing import Any, Dict, List, Optional

from core.config import DATASET_TTL_SECONDS


class DatasetStore:
    """Keyed store with created-at timestamps and TTL purging."""

    def __init__(self, ttl_seconds: int = DATASET_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._items: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        self.purge_expired()
        item = self._items.get(key)
        return item["value"] if item else None

    def set(self, key: str, value: Any) -> None:
        self._items[key] = {"value": value, "created_at": time()}

    def delete(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def keys(self) -> List[str]:
        self.purge_expired()
        return list(self._items.keys())

    def clear(self) -> None:
        self._items.clear()

    def purge_expired(self) -> int:
        now = time()
        expired = [
            k for k, item in self._items.items()
            if (now - item["created_at"]) > self.ttl_seconds
        ]
        for k in expired:
            self._items.pop(k, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
