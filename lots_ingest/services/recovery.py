"""Hourly backfill of lots that never got classified.

A lot is eligible when all of these hold:

- it has no categories and a non-blank description,
- it has no Success classification audit,
- it has no classification audit of any status within the cooldown window,
- it has fewer than ``max_failures`` Failure audits.

The audit trail is the only attempt record. A tick that finds fewer
eligible lots than ``batch_size`` enqueues nothing and waits for the next
tick, so the provider always gets full batches.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, ContextManager, Optional

from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import Session

from lots_ingest.config import RECOVERY_SETTINGS
from lots_ingest.models.db import AuditEventType, AuditStatus, Lot, LotAuditEvent
from lots_ingest.services.classification.manager import ClassificationManager
from lots_ingest.utils import get_logger
from lots_ingest.utils.aio import sleep_or_stop
from lots_ingest.utils.time import utc_now

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope
    from lots_ingest.services.coordinates import CoordinateService

logger = get_logger(__name__)

RECOVERY_SOURCE = "Recovery"


@dataclass(slots=True)
class RecoveryTick:
    found: int
    enqueued: int
    lot_ids: list[str]


def select_recovery_candidates(
    session: Session,
    *,
    limit: int,
    max_failures: int,
    cooldown: timedelta,
    now: datetime,
) -> list[Lot]:
    classification = LotAuditEvent.event_type == AuditEventType.CLASSIFICATION.value
    same_lot = LotAuditEvent.lot_id == Lot.id
    has_success = exists().where(and_(same_lot, classification, LotAuditEvent.status == AuditStatus.SUCCESS))
    recently_touched = exists().where(and_(same_lot, classification, LotAuditEvent.timestamp >= now - cooldown))
    failures = (
        select(func.count(LotAuditEvent.id))
        .where(and_(same_lot, classification, LotAuditEvent.status == AuditStatus.FAILURE))
        .scalar_subquery()
    )
    return (
        session.query(Lot)
        .filter(
            ~Lot.categories.any(),
            Lot.description.isnot(None),
            func.trim(Lot.description) != "",
            ~has_success,
            ~recently_touched,
            failures < max_failures,
        )
        .order_by(Lot.created_at.asc(), Lot.id.asc())
        .limit(limit)
        .all()
    )


class RecoveryScheduler:
    def __init__(
        self,
        manager: ClassificationManager,
        scope_factory: Callable[[], ContextManager["JobScope"]],
        *,
        coordinates: Optional["CoordinateService"] = None,
        batch_size: int | None = None,
        max_failures: int | None = None,
        cooldown_seconds: float | None = None,
        interval: float | None = None,
        startup_delay: float | None = None,
        error_retry: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.manager = manager
        self.scope_factory = scope_factory
        self.coordinates = coordinates
        self.batch_size = int(batch_size if batch_size is not None else RECOVERY_SETTINGS["batch_size"])
        self.max_failures = int(max_failures if max_failures is not None else RECOVERY_SETTINGS["max_failures"])
        self.cooldown = timedelta(seconds=float(
            cooldown_seconds if cooldown_seconds is not None else RECOVERY_SETTINGS["cooldown_seconds"]
        ))
        self.interval = float(interval if interval is not None else RECOVERY_SETTINGS["interval_seconds"])
        self.startup_delay = float(
            startup_delay if startup_delay is not None else RECOVERY_SETTINGS["startup_delay_seconds"]
        )
        self.error_retry = float(error_retry if error_retry is not None else RECOVERY_SETTINGS["error_retry_seconds"])
        self._clock = clock
        self.last_tick: RecoveryTick | None = None

    def run_once(self) -> RecoveryTick:
        with self.scope_factory() as scope:
            lots = select_recovery_candidates(
                scope.session,
                limit=self.batch_size,
                max_failures=self.max_failures,
                cooldown=self.cooldown,
                now=self._clock(),
            )
            ids = [lot.id for lot in lots]
            if len(lots) < self.batch_size:
                logger.info("Recovery batch not full; waiting", found=len(lots), batch_size=self.batch_size)
                tick = RecoveryTick(found=len(lots), enqueued=0, lot_ids=[])
            else:
                self.manager.enqueue_batch(scope.repository, lots, RECOVERY_SOURCE)
                logger.info("Recovery batch enqueued", lots=len(lots))
                tick = RecoveryTick(found=len(lots), enqueued=len(lots), lot_ids=ids)
        self.last_tick = tick
        return tick

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Recovery scheduler started", interval=self.interval, batch_size=self.batch_size)
        if await sleep_or_stop(stop_event, self.startup_delay):
            return
        while not stop_event.is_set():
            pause = self.interval
            try:
                self.run_once()
                if self.coordinates is not None:
                    self.coordinates.reprocess_retry_list()
            except Exception as e:
                logger.error("Recovery tick failed", error=str(e), exc_info=True)
                pause = self.error_retry
            if await sleep_or_stop(stop_event, pause):
                break
        logger.info("Recovery scheduler stopped")


__all__ = ["RecoveryScheduler", "RecoveryTick", "select_recovery_candidates", "RECOVERY_SOURCE"]
