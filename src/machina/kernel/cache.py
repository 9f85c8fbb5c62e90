"""
Exit cache: remember what a machine produced for a given set of argins.

A fresh hit is delivered through the cached exit without running the
machine's fn. Entries are keyed by a sha256 of the machine identity plus
the canonical JSON of its argins.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TTL = timedelta(hours=3)


class CacheEntry(BaseModel):
    hash: str
    data: Any = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CacheStore(Protocol):
    def now(self) -> datetime: ...

    def find(self, key: str, newer_than: datetime) -> Optional[CacheEntry]: ...

    def create(self, key: str, data: Any) -> CacheEntry: ...

    def purge(self, key: str, older_than: datetime, keep: int = 0) -> int: ...


class CacheSettings(BaseModel):
    store: Any
    ttl: timedelta = DEFAULT_TTL
    exit: str = "success"
    max_old_entries: int = Field(default=0, ge=0)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class MemoryCache:
    """In-process CacheStore. Newest entries last."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: Dict[str, List[CacheEntry]] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    def find(self, key: str, newer_than: datetime) -> Optional[CacheEntry]:
        for entry in reversed(self._entries.get(key, [])):
            if entry.created_at > newer_than:
                return entry
        return None

    def create(self, key: str, data: Any) -> CacheEntry:
        entry = CacheEntry(hash=key, data=data, created_at=self._clock())
        self._entries.setdefault(key, []).append(entry)
        return entry

    def purge(self, key: str, older_than: datetime, keep: int = 0) -> int:
        entries = self._entries.get(key, [])
        stale = [entry for entry in entries if entry.created_at <= older_than]
        doomed = stale[: max(len(stale) - keep, 0)]
        if doomed:
            self._entries[key] = [entry for entry in entries if entry not in doomed]
        return len(doomed)

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())


def hash_argins(identity: str, argins: Dict[str, Any]) -> str:
    """Stable digest of argins. Raises TypeError/ValueError for non-JSON argins."""
    canonical = json.dumps(argins, sort_keys=True, separators=(",", ":"), allow_nan=False)
    return sha256(f"{identity}\n{canonical}".encode("utf-8")).hexdigest()
