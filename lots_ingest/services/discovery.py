"""Hourly discovery loop feeding the bidding work cache."""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable, ContextManager

from lots_ingest.cache import WorkStatusCache
from lots_ingest.config import DISCOVERY_SETTINGS
from lots_ingest.scrapers.bidding_list import BiddingListScraper, DiscoveryResult
from lots_ingest.scrapers.fetchers import FetcherFactory
from lots_ingest.scrapers.models import BiddingListEntry
from lots_ingest.utils import get_logger
from lots_ingest.utils.aio import sleep_or_stop

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)


class BiddingDiscovery:
    def __init__(
        self,
        cache: WorkStatusCache[str, BiddingListEntry],
        fetcher_factory: FetcherFactory,
        scope_factory: Callable[[], ContextManager["JobScope"]],
        *,
        scraper: BiddingListScraper | None = None,
        interval: float | None = None,
    ) -> None:
        self.cache = cache
        self.fetcher_factory = fetcher_factory
        self.scope_factory = scope_factory
        self.scraper = scraper or BiddingListScraper()
        self.interval = float(interval if interval is not None else DISCOVERY_SETTINGS["interval_seconds"])

    async def run_once(self) -> DiscoveryResult:
        """One pass: read the list, cache unseen biddings, prune terminal entries."""
        with self.scope_factory() as scope:
            def is_known(bidding_id: str) -> bool:
                return bidding_id in self.cache or scope.repository.bidding_exists(bidding_id)

            async with self.fetcher_factory() as fetcher:
                result = await self.scraper.discover(fetcher, is_known)
        added = self.cache.add_many(result.entries)
        # completed entries are persisted, so the DB check above still knows them
        self.cache.prune_completed()
        self.cache.prune_failed()
        logger.info("Bidding discovery pass finished", discovered=len(result.entries), added=added, pages=result.pages)
        return result

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Bidding discovery started", interval=self.interval)
        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Bidding discovery pass failed", error=str(e), exc_info=True)
            if await sleep_or_stop(stop_event, self.interval):
                break
        logger.info("Bidding discovery stopped")


__all__ = ["BiddingDiscovery"]
