"""Thread-safe in-process store of open transactions."""

import threading
from typing import Any, Optional


class TransactionCache:
    """Maps transaction keys to open transactions."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._items[key] = value

    def get(self, key: str) -> Optional[Any]:
        """Return the transaction stored under key, or None."""
        with self._lock:
            return self._items.get(key)

    def remove(self, key: str) -> None:
        """Forget key; a missing key is not an error."""
        with self._lock:
            self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)