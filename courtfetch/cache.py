"""In-memory cache of case information with expiry and a size limit."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from sqlalchemy import DateTime

from .database import CaseInfo, Order, Party


@dataclass
class CacheStats:
    """Hit and miss counters of a cache."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    last_access: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "last_access": self.last_access.isoformat() if self.last_access else None,
        }


class CaseCache:
    """Thread-safe cache; when full, the entry expiring first is evicted."""

    def __init__(
        self,
        max_size: int,
        ttl: Union[timedelta, float, None],
        clock: Callable[[], float] = time.monotonic,
    ):
        seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else ttl
        self._ttl: Optional[float] = seconds if seconds and seconds > 0 else None
        self._max_size = max_size
        self._clock = clock
        self._items: dict[str, tuple[CaseInfo, Optional[float]]] = {}
        self._stats = CacheStats()
        self._lock = threading.Lock()

    def _expired(self, expires: Optional[float], now: float) -> bool:
        return expires is not None and now >= expires

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (_, expires) in self._items.items() if self._expired(expires, now)]:
            del self._items[key]

    def get(self, key: str) -> Optional[CaseInfo]:
        """Return the cached case, or None when absent or expired."""
        with self._lock:
            self._stats.last_access = datetime.now().astimezone()
            entry = self._items.get(key)
            if entry is not None:
                value, expires = entry
                if not self._expired(expires, self._clock()):
                    self._stats.hits += 1
                    return value
                del self._items[key]
            self._stats.misses += 1
            return None

    def set(self, key: str, value: CaseInfo) -> None:
        with self._lock:
            self._purge_expired()
            if key not in self._items and self._items and len(self._items) >= self._max_size:
                self._remove_oldest()
            expires = self._clock() + self._ttl if self._ttl is not None else None
            self._items[key] = (value, expires)

    def _remove_oldest(self) -> None:
        def expiry(item: tuple[str, tuple[CaseInfo, Optional[float]]]) -> float:
            expires = item[1][1]
            return expires if expires is not None else float("inf")

        oldest_key, _ = min(self._items.items(), key=expiry)
        del self._items[oldest_key]

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        """Drop every entry and reset the counters."""
        with self._lock:
            self._items.clear()
            self._stats = CacheStats()

    def stats(self) -> CacheStats:
        with self._lock:
            self._purge_expired()
            self._stats.size = len(self._items)
            return replace(self._stats)


def generate_cache_key(case_type: str, case_number: str, filing_year: str) -> str:
    return f"case:{case_type}:{case_number}:{filing_year}"


def serialize_case_info(info: CaseInfo) -> bytes:
    return json.dumps(info.to_dict()).encode("utf-8")


_MODEL_KEYS = {"ID": "id", "CreatedAt": "created_at", "UpdatedAt": "updated_at", "DeletedAt": "deleted_at"}


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"invalid time value: {value!r}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _columns_from(data: dict[str, Any], model: type) -> dict[str, Any]:
    columns = {column.name: column for column in model.__table__.columns}
    values: dict[str, Any] = {}
    for key, value in data.items():
        name = _MODEL_KEYS.get(key, key)
        column = columns.get(name)
        if column is None:
            continue
        values[name] = _parse_time(value) if isinstance(column.type, DateTime) else value
    if not values.get("id"):
        values.pop("id", None)
    return values


def deserialize_case_info(data: Union[bytes, str]) -> CaseInfo:
    """Rebuild a CaseInfo, with its parties and orders, from JSON."""
    decoded = json.loads(data)
    if decoded is None:
        return CaseInfo()
    if not isinstance(decoded, dict):
        raise ValueError("case info must be a JSON object")
    values = _columns_from(decoded, CaseInfo)
    parties = [Party(**_columns_from(item, Party)) for item in decoded.get("parties") or []]
    orders = [Order(**_columns_from(item, Order)) for item in decoded.get("orders") or []]
    return CaseInfo(**values, parties=parties, orders=orders)