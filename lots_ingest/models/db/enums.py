"""Central Enum definitions for pipeline states.

These replace scattered string literals so audit rows, workers and the
recovery queries agree on spelling.
"""
from __future__ import annotations
import enum


class AuditStatus(str, enum.Enum):
    ENQUEUED = "Enqueued"
    START = "Start"
    SUCCESS = "Success"
    FAILURE = "Failure"
    SKIPPED = "Skipped"


class AuditEventType(str, enum.Enum):
    CLASSIFICATION = "Classification"
    COORDINATES = "Coordinates"

# ------------------------- Legacy registry statuses ------------------------ #
# Trade status strings are stored verbatim as scraped; only the values the
# pipeline itself reasons about are named here.

class TradeStatus:
    COMPLETED = "Завершенные"
    CANCELLED = "Торги отменены"
    NOT_HELD = "Торги не состоялись"
    FINISHED_NO_DATA = "Торги завершены (нет данных)"

    FINAL = frozenset({COMPLETED, CANCELLED, NOT_HELD, FINISHED_NO_DATA})

    @classmethod
    def is_final(cls, status: str | None) -> bool:
        if not status:
            return False
        return status.strip().casefold() in {s.casefold() for s in cls.FINAL}


__all__ = [
    "AuditStatus",
    "AuditEventType",
    "TradeStatus",
]
