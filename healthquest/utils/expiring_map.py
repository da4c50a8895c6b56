"""
Bounded in-memory map with expiry

Entries expire a fixed time after they were stored (ttl) or after going
unused for idle_timeout, whichever comes first. Expired entries are purged
on every access; past max_entries the least recently used entry is evicted.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generic, Hashable, Optional, TypeVar

from healthquest.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    issued_at: datetime
    last_seen: datetime
    ttl: int

    def is_expired(self, now: datetime, idle_timeout: Optional[int]) -> bool:
        if now >= self.issued_at + timedelta(seconds=self.ttl):
            return True
        return idle_timeout is not None and now >= self.last_seen + timedelta(seconds=idle_timeout)


class ExpiringMap(Generic[V]):
    """
    Usage:
        sessions = ExpiringMap(ttl=86400, idle_timeout=3600, max_entries=10000)
        sessions.put(token, session)
        sessions.get(token)  # None once expired or evicted
    """

    def __init__(
        self,
        ttl: int,
        idle_timeout: Optional[int] = None,
        max_entries: int = 10000,
        clock: Callable[[], datetime] = now_utc,
        name: str = "map",
    ):
        self.ttl = ttl
        self.idle_timeout = idle_timeout
        self.max_entries = max_entries
        self.clock = clock
        self.name = name
        self._entries: "OrderedDict[Hashable, _Entry[V]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now, self.idle_timeout)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired entries from {self.name}")
        return len(expired)

    def put(self, key: Hashable, value: V, ttl: Optional[int] = None) -> None:
        """Store `value`, replacing any entry under `key`; ttl overrides the default"""
        self.purge_expired()
        now = self.clock()
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, issued_at=now, last_seen=now, ttl=ttl or self.ttl)

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            logger.warning(f"{self.name} full, evicted least recently used entry")

    def get(self, key: Hashable) -> Optional[V]:
        """Live value under `key` (marks it used), or None"""
        self.purge_expired()
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.last_seen = self.clock()
        self._entries.move_to_end(key)
        return entry.value

    def renew(self, key: Hashable, ttl: Optional[int] = None) -> bool:
        """Restart the lifetime of a live entry; False if there is none"""
        value = self.get(key)
        if value is None:
            return False
        self.put(key, value, ttl=ttl)
        return True

    def pop(self, key: Hashable) -> Optional[V]:
        entry = self._entries.pop(key, None)
        return entry.value if entry is not None else None
