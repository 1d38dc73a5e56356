"""
Cursor Store
============

TTL- and capacity-bounded map from opaque tokens to captured search
snapshots, so a search can be paged without re-running it.

CONCURRENCY:
- One lock guards the map; it is held only for map work, never across I/O.
- Entries are copied in and out under the lock. Callers never hold a
  reference to a stored entry.

EVICTION:
- Every operation first purges expired entries.
- ``create`` and ``update_offset`` slide the expiry to now + TTL.
- Overflow after ``create`` evicts earliest-expiry entries first. Expiry is
  refreshed on access, so this approximates least-recently-used without a
  second index.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace

MAX_CURSOR_UIDS_STORED = 20_000


@dataclass
class CursorEntry:
    """Snapshot of one search: the full UID list (newest first) and position."""

    account_id: str
    mailbox: str
    uidvalidity: int
    uids: list[int]
    offset: int
    include_snippet: bool
    snippet_max_chars: int
    expires_at: float = field(default=0.0)

    def copy(self) -> CursorEntry:
        return replace(self, uids=list(self.uids))


class CursorStore:
    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CursorEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)

    def create(self, entry: CursorEntry) -> str:
        """Store a copy of ``entry`` and return its new token."""
        token = str(uuid.uuid4())
        stored = entry.copy()
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            stored.expires_at = now + self._ttl
            self._entries[token] = stored
            self._evict_overflow()
        return token

    def get(self, token: str) -> CursorEntry | None:
        with self._lock:
            self._purge_expired(self._clock())
            entry = self._entries.get(token)
            return entry.copy() if entry is not None else None

    def update_offset(self, token: str, offset: int) -> None:
        """Advance a cursor and refresh its expiry. Unknown tokens are ignored."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            entry = self._entries.get(token)
            if entry is not None:
                entry.offset = offset
                entry.expires_at = now + self._ttl

    def delete(self, token: str) -> None:
        with self._lock:
            self._purge_expired(self._clock())
            self._entries.pop(token, None)

    def _purge_expired(self, now: float) -> None:
        expired = [token for token, entry in self._entries.items() if entry.expires_at <= now]
        for token in expired:
            del self._entries[token]

    def _evict_overflow(self) -> None:
        overflow = len(self._entries) - self._max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1].expires_at)[:overflow]
        for token, _entry in oldest:
            del self._entries[token]
