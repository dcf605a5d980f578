"""Background scrape workers draining a WorkStatusCache.

One loop per work category. Each tick::

    pending = cache.get_pending()
    if not pending: sleep(poll_interval); continue
    async with fetcher_factory() as fetcher:   # one external resource per batch
        for item in pending:
            with scope_factory() as scope:     # fresh DB session per item
                await process_item(fetcher, scope, item)
            success   -> cache.mark_completed(key)
            exception -> cache.record_failure(key)  # bounded retry with backoff

Follow-up work (classification, coordinate lookup) is queued, never run
inline, so a slow provider cannot stall discovery.
"""
from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable, ContextManager, Generic, TypeVar

from lots_ingest.cache import WorkStatus, WorkStatusCache
from lots_ingest.config import SCRAPE_WORKER_SETTINGS
from lots_ingest.models.db import Lot
from lots_ingest.scrapers.bidding_detail import BiddingPageScraper
from lots_ingest.scrapers.fetchers import FetcherFactory, PageFetcher
from lots_ingest.scrapers.lot_detail import LotPageScraper
from lots_ingest.scrapers.models import BiddingListEntry, LotWorkItem
from lots_ingest.utils import get_logger, log_performance
from lots_ingest.utils.aio import sleep_or_stop

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)

TKey = TypeVar("TKey")
TItem = TypeVar("TItem")


def schedule_followups(scope: "JobScope", lot: Lot, source: str) -> None:
    """Queue classification when the lot has a description and a lookup when it has cadastral numbers."""
    container = scope.container
    if lot.description and lot.description.strip():
        container.classification_manager.enqueue_lot(scope.repository, lot, source)
    numbers = [c.cadastral_number for c in lot.cadastral_numbers]
    if numbers:
        container.coordinates.enqueue_lot(lot.id, numbers, source)


class ScrapeWorker(Generic[TKey, TItem]):
    name = "scrape_worker"

    def __init__(
        self,
        cache: WorkStatusCache[TKey, TItem],
        fetcher_factory: FetcherFactory,
        scope_factory: Callable[[], ContextManager["JobScope"]],
        *,
        poll_interval: float | None = None,
        item_delay: float | None = None,
    ) -> None:
        self.cache = cache
        self.fetcher_factory = fetcher_factory
        self.scope_factory = scope_factory
        self.poll_interval = float(
            poll_interval if poll_interval is not None else SCRAPE_WORKER_SETTINGS["poll_interval_seconds"]
        )
        self.item_delay = float(item_delay if item_delay is not None else SCRAPE_WORKER_SETTINGS["item_delay_seconds"])

    async def process_item(self, fetcher: PageFetcher, scope: "JobScope", item: TItem) -> None:
        raise NotImplementedError

    async def run_once(self, stop_event: asyncio.Event | None = None) -> int:
        """Process one batch of pending items; return how many completed."""
        pending = self.cache.get_pending()
        if not pending:
            return 0
        logger.info("Scrape batch started", worker=self.name, items=len(pending))
        start = time.perf_counter()
        completed = 0
        async with self.fetcher_factory() as fetcher:
            for index, item in enumerate(pending):
                if stop_event is not None and stop_event.is_set():
                    break
                key = self.cache.key_of(item)
                if self.cache.status_of(key) is not WorkStatus.NEW:
                    continue
                try:
                    with self.scope_factory() as scope:
                        await self.process_item(fetcher, scope, item)
                except Exception as e:
                    logger.error("Scrape item failed", worker=self.name, key=str(key), error=str(e), exc_info=True)
                    self.cache.record_failure(key, str(e) or type(e).__name__)
                else:
                    if self.cache.mark_completed(key):
                        completed += 1
                if index < len(pending) - 1 and self.item_delay > 0:
                    if await sleep_or_stop(stop_event, self.item_delay):
                        break
        log_performance(
            f"{self.name}_batch",
            (time.perf_counter() - start) * 1000,
            {"items": len(pending), "completed": completed},
        )
        return completed

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Scrape worker started", worker=self.name, poll_interval=self.poll_interval)
        while not stop_event.is_set():
            try:
                done = await self.run_once(stop_event)
            except Exception as e:
                # fetcher could not be opened; pending items stay untouched
                logger.error("Scrape batch aborted", worker=self.name, error=str(e), exc_info=True)
                done = 0
            if done == 0 and await sleep_or_stop(stop_event, self.poll_interval):
                break
        logger.info("Scrape worker stopped", worker=self.name)


class BiddingProcessor(ScrapeWorker[str, BiddingListEntry]):
    """Scrapes bidding cards with their lots and persists them."""

    name = "bidding_processor"

    def __init__(self, *args, scraper: BiddingPageScraper | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.scraper = scraper or BiddingPageScraper()

    async def process_item(self, fetcher: PageFetcher, scope: "JobScope", item: BiddingListEntry) -> None:
        if scope.repository.bidding_exists(item.id):
            logger.warning("Bidding already stored; marking done", bidding_id=item.id)
            return
        info = await self.scraper.scrape(fetcher, item)
        lots = scope.repository.add_bidding(info)
        if lots is None:
            return
        for lot in lots:
            schedule_followups(scope, lot, "BiddingProcessor")
        logger.info("Bidding processed", bidding_id=item.id, lots=len(lots))


class LotProcessor(ScrapeWorker[str, LotWorkItem]):
    """Scrapes single lot cards and persists them."""

    name = "lot_processor"

    def __init__(self, *args, scraper: LotPageScraper | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.scraper = scraper or LotPageScraper()

    async def process_item(self, fetcher: PageFetcher, scope: "JobScope", item: LotWorkItem) -> None:
        if scope.repository.lot_exists(item.id):
            logger.warning("Lot already stored; marking done", lot_id=item.id)
            return
        scraped = await self.scraper.scrape(fetcher, item)
        lot = scope.repository.add_lot(scraped)
        if lot is None:
            return
        schedule_followups(scope, lot, "LotProcessor")
        logger.info("Lot processed", lot_id=lot.id)


__all__ = ["ScrapeWorker", "BiddingProcessor", "LotProcessor", "schedule_followups"]
