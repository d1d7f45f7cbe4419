"""A JSON-serialising in-memory cache with per-entry expiration."""

from __future__ import annotations

import dataclasses
import json
import threading
import time
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any


def _to_jsonable(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serialisable")


def _seconds(expiration: float | timedelta | None) -> float | None:
    if expiration is None:
        return None
    seconds = expiration.total_seconds() if isinstance(expiration, timedelta) else float(expiration)
    return None if seconds == 0 else seconds


class Cache:
    """Stores values as JSON; an expiration of zero or ``None`` never expires."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[bytes, float | None]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, expiration: float | timedelta | None = 0) -> None:
        data = json.dumps(value, default=_to_jsonable, ensure_ascii=False).encode()
        seconds = _seconds(expiration)
        deadline = None if seconds is None else time.monotonic() + seconds
        with self._lock:
            self._entries[key] = (data, deadline)

    def get(self, key: str) -> Any:
        """Return the decoded value, or ``None`` if it is missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, deadline = entry
            if deadline is not None and time.monotonic() >= deadline:
                del self._entries[key]
                return None
        try:
            return json.loads(data)
        except ValueError:
            return None

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


_default_cache = Cache()


def set_cache(key: str, value: Any, expiration: float | timedelta | None = 0) -> None:
    _default_cache.set(key, value, expiration)


def get_cache(key: str) -> Any:
    return _default_cache.get(key)


def delete_cache(key: str) -> None:
    _default_cache.delete(key)