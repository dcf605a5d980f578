"""Generic in-memory work-status cache.

One implementation serves every discovery source (biddings, lots, ...): it is
parameterised over the key type and the payload type, with a ``key_fn`` that
extracts the key from a payload.

Semantics:
- ``add_many`` is add-if-absent per item. Re-adding a known key never touches
  its status, so a duplicate discovery pass cannot reset COMPLETED to NEW.
- ``get_pending`` returns a snapshot of NEW items that are due. Items may be
  completed or pruned between the snapshot and their processing; callers
  must tolerate that.
- ``mark_completed`` is a compare-and-swap NEW -> COMPLETED; anything else is
  a silent no-op.
- ``record_failure`` implements the bounded retry: the attempt counter and the
  next due time live on the entry; after ``max_attempts`` the entry is parked
  as FAILED and no longer returned by ``get_pending``.
- ``prune_completed`` / ``prune_failed`` drop terminal entries to bound memory.

A single ``threading.Lock`` guards the dict; no I/O happens under it.
"""
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generic, Hashable, Iterable, TypeVar

from lots_ingest.config import SCRAPE_WORKER_SETTINGS
from lots_ingest.utils.backoff import scrape_retry_delay
from lots_ingest.utils.logger import get_logger
from lots_ingest.utils.time import utc_now

logger = get_logger(__name__)

TKey = TypeVar("TKey", bound=Hashable)
TItem = TypeVar("TItem")


class WorkStatus(str, enum.Enum):
    NEW = "NEW"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(slots=True)
class WorkEntry(Generic[TKey, TItem]):
    key: TKey
    item: TItem
    status: WorkStatus = WorkStatus.NEW
    attempts: int = 0
    next_attempt_at: datetime | None = None
    last_error: str | None = None


class WorkStatusCache(Generic[TKey, TItem]):
    def __init__(
        self,
        name: str,
        key_fn: Callable[[TItem], TKey],
        *,
        max_attempts: int | None = None,
        retry_delay: Callable[[int], float] = scrape_retry_delay,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.name = name
        self._key_fn = key_fn
        self._max_attempts = int(max_attempts if max_attempts is not None else SCRAPE_WORKER_SETTINGS["max_attempts"])
        self._retry_delay = retry_delay
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[TKey, WorkEntry[TKey, TItem]] = {}

    # ----------------------------- mutation ----------------------------- #
    def add_many(self, items: Iterable[TItem]) -> int:
        """Insert unseen items as NEW; return how many were actually added."""
        added = 0
        with self._lock:
            for item in items:
                key = self._key_fn(item)
                if key in self._entries:
                    continue
                self._entries[key] = WorkEntry(key=key, item=item)
                added += 1
        if added:
            logger.debug("Work items added", cache=self.name, added=added)
        return added

    def mark_completed(self, key: TKey) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.status is not WorkStatus.NEW:
                return False
            entry.status = WorkStatus.COMPLETED
            entry.next_attempt_at = None
            entry.last_error = None
            return True

    def record_failure(self, key: TKey, error: str | None = None) -> WorkStatus | None:
        """Count a failed attempt and schedule the next one.

        Returns the entry's status afterwards (FAILED once the ceiling is
        reached) or None when the key is unknown or no longer NEW.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.status is not WorkStatus.NEW:
                return None
            entry.attempts += 1
            entry.last_error = error
            if entry.attempts >= self._max_attempts:
                entry.status = WorkStatus.FAILED
                entry.next_attempt_at = None
            else:
                delay = self._retry_delay(entry.attempts)
                entry.next_attempt_at = self._clock() + timedelta(seconds=delay)
            status = entry.status
            attempts = entry.attempts
            next_at = entry.next_attempt_at
        if status is WorkStatus.FAILED:
            logger.warning("Work item exhausted retries", cache=self.name, key=str(key), attempts=attempts, error=error)
        else:
            logger.info(
                "Work item retry scheduled",
                cache=self.name,
                key=str(key),
                attempts=attempts,
                next_attempt_at=next_at.isoformat() if next_at else None,
            )
        return status

    def prune_completed(self) -> int:
        return self._prune(WorkStatus.COMPLETED)

    def prune_failed(self) -> int:
        return self._prune(WorkStatus.FAILED)

    def _prune(self, status: WorkStatus) -> int:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if e.status is status]
            for k in doomed:
                del self._entries[k]
        logger.info("Pruned work items", cache=self.name, status=status.value, removed=len(doomed))
        return len(doomed)

    # ----------------------------- inspection ----------------------------- #
    def get_pending(self) -> list[TItem]:
        now = self._clock()
        with self._lock:
            return [
                e.item
                for e in self._entries.values()
                if e.status is WorkStatus.NEW and (e.next_attempt_at is None or e.next_attempt_at <= now)
            ]

    def get_entry(self, key: TKey) -> WorkEntry[TKey, TItem] | None:
        with self._lock:
            return self._entries.get(key)

    def status_of(self, key: TKey) -> WorkStatus | None:
        with self._lock:
            entry = self._entries.get(key)
            return entry.status if entry else None

    def key_of(self, item: TItem) -> TKey:
        return self._key_fn(item)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def snapshot(self) -> dict:
        with self._lock:
            counts = {s.value: 0 for s in WorkStatus}
            retrying = 0
            for e in self._entries.values():
                counts[e.status.value] += 1
                if e.status is WorkStatus.NEW and e.attempts:
                    retrying += 1
            return {"name": self.name, "size": len(self._entries), "retrying": retrying, **counts}


__all__ = ["WorkStatus", "WorkEntry", "WorkStatusCache"]
