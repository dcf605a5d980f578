"""Scheduled trade-outcome updates from the legacy registry.

Runs daily at ``run_at_hour`` UTC (and once at start-up when configured).
Works through biddings that are not finalized, have no trade period and
have at least one numbered lot, in batches, one crawl per bidding.

Per bidding:
- found lots get status, final price and winner from the crawl;
- lots missing from a crawl that ran to completion get the technical
  "no data" status; after an aborted crawl they are left untouched;
- when every numbered lot holds a final status the bidding is marked
  finalized and leaves the selection.

Biddings touched in a run are excluded for the rest of that run, so a
bidding whose lots stay non-final cannot loop.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, ContextManager

from sqlalchemy import func
from sqlalchemy.orm import Session

from lots_ingest.config import TRADE_STATUS_SETTINGS
from lots_ingest.models.db import Bidding, Lot, TradeStatus
from lots_ingest.scrapers.fetchers import PageFetcher
from lots_ingest.scrapers.trade_card import TradeCardCrawl, TradeCardStatusCrawler
from lots_ingest.services.persistence import LotRepository
from lots_ingest.utils import get_logger, log_business_event
from lots_ingest.utils.aio import sleep_or_stop
from lots_ingest.utils.text import normalize_lot_number
from lots_ingest.utils.time import seconds_until_hour

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)


@dataclass(slots=True)
class StatusApplyResult:
    updated: int = 0
    missing: list[str] = field(default_factory=list)
    finalized: bool = False


@dataclass(slots=True)
class StatusRunSummary:
    biddings: int = 0
    finalized: int = 0
    aborted: int = 0


def numbered_lots(bidding: Bidding) -> list[Lot]:
    return [lot for lot in bidding.lots if lot.lot_number and lot.lot_number.strip()]


def apply_crawl(session: Session, bidding: Bidding, crawl: TradeCardCrawl) -> StatusApplyResult:
    """Write a crawl's outcomes onto the bidding's lots and commit."""
    result = StatusApplyResult()
    found = {number.casefold(): record for number, record in crawl.statuses.items()}
    missing_status = None if crawl.aborted else TradeStatus.FINISHED_NO_DATA
    lots = numbered_lots(bidding)
    all_final = True
    for lot in lots:
        key = (normalize_lot_number(lot.lot_number or "") or "").casefold()
        record = found.get(key)
        if record is None:
            result.missing.append(lot.lot_number or "")
        else:
            result.updated += 1
        LotRepository.apply_status(lot, record, missing_status=missing_status)
        if not TradeStatus.is_final(lot.trade_status):
            all_final = False
    if lots and all_final:
        bidding.is_trade_statuses_finalized = True
        result.finalized = True
    session.commit()
    if result.missing:
        logger.warning(
            "Lots missing from trade card",
            bidding_id=bidding.id,
            missing=", ".join(result.missing),
            aborted=crawl.aborted,
        )
    if result.finalized:
        log_business_event("bidding_statuses_finalized", {"bidding_id": bidding.id, "lots": len(lots)})
    return result


def _lot_is_numbered():
    return Lot.lot_number.isnot(None) & (func.trim(Lot.lot_number) != "")


def select_pending_biddings(session: Session, *, limit: int, exclude: set[str]) -> list[str]:
    q = (
        session.query(Bidding.id)
        .filter(
            Bidding.is_trade_statuses_finalized.is_(False),
            Bidding.trade_period.is_(None),
            Bidding.lots.any(_lot_is_numbered()),
        )
    )
    if exclude:
        q = q.filter(Bidding.id.notin_(exclude))
    return [row[0] for row in q.order_by(Bidding.created_at.asc(), Bidding.id.asc()).limit(limit).all()]


class TradeStatusUpdater:
    def __init__(
        self,
        crawler: TradeCardStatusCrawler,
        scope_factory: Callable[[], ContextManager["JobScope"]],
        *,
        batch_size: int | None = None,
        delay_between_biddings: float | None = None,
        delay_between_batches: float | None = None,
        enabled: bool | None = None,
        run_on_startup: bool | None = None,
        run_at_hour: int | None = None,
    ) -> None:
        cfg = TRADE_STATUS_SETTINGS
        self.crawler = crawler
        self.scope_factory = scope_factory
        self.batch_size = int(batch_size if batch_size is not None else cfg["batch_size"])
        self.delay_between_biddings = float(
            delay_between_biddings if delay_between_biddings is not None else cfg["delay_between_biddings_seconds"]
        )
        self.delay_between_batches = float(
            delay_between_batches if delay_between_batches is not None else cfg["delay_between_batches_seconds"]
        )
        self.enabled = bool(enabled if enabled is not None else cfg["enabled"])
        self.run_on_startup = bool(run_on_startup if run_on_startup is not None else cfg["run_on_startup"])
        self.run_at_hour = int(run_at_hour if run_at_hour is not None else cfg["run_at_hour"])

    async def update_bidding(
        self,
        bidding_id: str,
        *,
        fetcher: PageFetcher | None = None,
    ) -> tuple[TradeCardCrawl, StatusApplyResult] | None:
        """Crawl one bidding and apply the outcome. No session is open during the crawl."""
        with self.scope_factory() as scope:
            bidding = scope.session.get(Bidding, bidding_id)
            if bidding is None:
                return None
            lot_numbers = list(dict.fromkeys(lot.lot_number for lot in numbered_lots(bidding)))
        if not lot_numbers:
            return None
        crawl = await self.crawler.crawl(bidding_id, lot_numbers, fetcher=fetcher)
        with self.scope_factory() as scope:
            bidding = scope.session.get(Bidding, bidding_id)
            if bidding is None:
                return None
            return crawl, apply_crawl(scope.session, bidding, crawl)

    async def run_once(self, stop_event: asyncio.Event | None = None) -> StatusRunSummary:
        summary = StatusRunSummary()
        seen: set[str] = set()
        logger.info("Trade status update started", batch_size=self.batch_size)
        while not (stop_event is not None and stop_event.is_set()):
            with self.scope_factory() as scope:
                batch = select_pending_biddings(scope.session, limit=self.batch_size, exclude=seen)
            if not batch:
                break
            seen.update(batch)
            async with self.crawler.fetcher_factory() as fetcher:
                for bidding_id in batch:
                    if stop_event is not None and stop_event.is_set():
                        break
                    try:
                        outcome = await self.update_bidding(bidding_id, fetcher=fetcher)
                    except Exception as e:
                        logger.error("Trade status update failed", bidding_id=bidding_id, error=str(e), exc_info=True)
                        outcome = None
                    if outcome is not None:
                        crawl, applied = outcome
                        summary.biddings += 1
                        summary.finalized += int(applied.finalized)
                        summary.aborted += int(crawl.aborted)
                    if await sleep_or_stop(stop_event, self.delay_between_biddings):
                        break
            if await sleep_or_stop(stop_event, self.delay_between_batches):
                break
        logger.info(
            "Trade status update finished",
            biddings=summary.biddings,
            finalized=summary.finalized,
            aborted=summary.aborted,
        )
        return summary

    async def run(self, stop_event: asyncio.Event) -> None:
        if not self.enabled:
            logger.info("Trade status updater disabled")
            return
        logger.info("Trade status updater started", run_at_hour=self.run_at_hour)
        if self.run_on_startup:
            await self._run_guarded(stop_event)
        while not stop_event.is_set():
            wait = seconds_until_hour(self.run_at_hour)
            logger.info("Next trade status update scheduled", in_seconds=round(wait))
            if await sleep_or_stop(stop_event, wait):
                break
            await self._run_guarded(stop_event)
        logger.info("Trade status updater stopped")

    async def _run_guarded(self, stop_event: asyncio.Event) -> None:
        try:
            await self.run_once(stop_event)
        except Exception as e:
            logger.error("Trade status update run failed", error=str(e), exc_info=True)


__all__ = [
    "TradeStatusUpdater",
    "StatusApplyResult",
    "StatusRunSummary",
    "apply_crawl",
    "numbered_lots",
    "select_pending_biddings",
]
