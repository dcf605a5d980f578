"""Service container: builds the pipeline once and owns the background loops.

The container replaces process-wide singletons. The breaker, the throttle,
the caches and the queues are created here, injected into whatever needs
them and live exactly as long as the container. The FastAPI lifespan starts
it and stops it; tests build their own with fakes.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from lots_ingest.cache import WorkStatusCache
from lots_ingest.config import CIRCUIT_BREAKER, CLASSIFIER_SETTINGS, QUEUE_SETTINGS
from lots_ingest.database import session_scope
from lots_ingest.jobs.consumer import QueueConsumer
from lots_ingest.jobs.queue import BackgroundTaskQueue
from lots_ingest.scrapers.fetchers import BrowserPageFetcher, FetcherFactory, HttpPageFetcher
from lots_ingest.scrapers.models import BiddingListEntry, LotWorkItem
from lots_ingest.scrapers.trade_card import TradeCardStatusCrawler
from lots_ingest.services.classification import ChatCompletionClient, ClassificationManager, LotClassifier
from lots_ingest.services.classification.client import ChatClient
from lots_ingest.services.coordinates import CoordinatesClient, CoordinatesLookup, CoordinateService
from lots_ingest.services.discovery import BiddingDiscovery
from lots_ingest.services.enrichment import PlatformEnrichment
from lots_ingest.services.persistence import LotRepository
from lots_ingest.services.recovery import RecoveryScheduler
from lots_ingest.services.scrape_worker import BiddingProcessor, LotProcessor
from lots_ingest.services.trade_statuses import TradeStatusUpdater
from lots_ingest.utils import get_logger
from lots_ingest.utils.circuit_breaker import CircuitBreaker
from lots_ingest.utils.throttle import RequestThrottle

logger = get_logger(__name__)


@dataclass(slots=True)
class JobScope:
    """Per-unit-of-work dependencies: one session, never shared between jobs."""
    session: Session
    repository: LotRepository
    container: "ServiceContainer"


class ServiceContainer:
    def __init__(
        self,
        *,
        session_factory: Optional[sessionmaker] = None,
        chat_client: Optional[ChatClient] = None,
        coordinates_client: Optional[CoordinatesLookup] = None,
        http_fetcher_factory: Optional[FetcherFactory] = None,
        browser_fetcher_factory: Optional[FetcherFactory] = None,
    ) -> None:
        self.session_factory = session_factory
        http = http_fetcher_factory or HttpPageFetcher
        browser = browser_fetcher_factory or BrowserPageFetcher

        # ----- provider guards ----- #
        self.breaker = CircuitBreaker()
        self.throttle = RequestThrottle(float(CLASSIFIER_SETTINGS["request_interval_seconds"]))

        # ----- queues ----- #
        self.classification_queue = BackgroundTaskQueue("classification")
        self.coordinates_queue = BackgroundTaskQueue("coordinates")
        self.classification_consumer = QueueConsumer(
            self.classification_queue,
            self.open_scope,
            skip_pause=float(CIRCUIT_BREAKER["skip_pause_seconds"]),
        )
        self.coordinates_consumer = QueueConsumer(
            self.coordinates_queue,
            self.open_scope,
            delay_between_jobs=float(QUEUE_SETTINGS["coordinates_delay_seconds"]),
        )

        # ----- enrichment ----- #
        self.classifier = LotClassifier(chat_client or ChatCompletionClient(), self.throttle, self.breaker)
        self.classification_manager = ClassificationManager(self.classifier, self.classification_queue)
        self.coordinates = CoordinateService(coordinates_client or CoordinatesClient(), self.coordinates_queue)

        # ----- discovery & scraping ----- #
        self.bidding_cache: WorkStatusCache[str, BiddingListEntry] = WorkStatusCache("biddings", key_fn=lambda e: e.id)
        self.lot_cache: WorkStatusCache[str, LotWorkItem] = WorkStatusCache("lots", key_fn=lambda i: i.id)
        self.discovery = BiddingDiscovery(self.bidding_cache, http, self.open_scope)
        self.bidding_processor = BiddingProcessor(self.bidding_cache, browser, self.open_scope)
        self.lot_processor = LotProcessor(self.lot_cache, browser, self.open_scope)

        # ----- scheduled jobs ----- #
        self.trade_card_crawler = TradeCardStatusCrawler(http)
        self.trade_status_updater = TradeStatusUpdater(self.trade_card_crawler, self.open_scope)
        self.recovery = RecoveryScheduler(self.classification_manager, self.open_scope, coordinates=self.coordinates)
        self.enrichment = PlatformEnrichment(http, self.open_scope)

        self._stop_event: Optional[asyncio.Event] = None
        self._tasks: list[asyncio.Task] = []

    @contextmanager
    def open_scope(self) -> Iterator[JobScope]:
        with session_scope(self.session_factory) as session:
            yield JobScope(session=session, repository=LotRepository(session), container=self)

    # ----------------------------- lifecycle ----------------------------- #
    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Start every background loop on the running event loop."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        loops = {
            "classification_consumer": self.classification_consumer.run,
            "coordinates_consumer": self.coordinates_consumer.run,
            "bidding_discovery": self.discovery.run,
            "bidding_processor": self.bidding_processor.run,
            "lot_processor": self.lot_processor.run,
            "recovery": self.recovery.run,
            "trade_statuses": self.trade_status_updater.run,
            "platform_enrichment": self.enrichment.run,
        }
        self._tasks = [asyncio.create_task(fn(self._stop_event), name=name) for name, fn in loops.items()]
        logger.info("Background loops started", loops=", ".join(loops))

    async def stop(self, timeout: float = 10.0) -> None:
        """Signal every loop to stop and wait; loops still running after ``timeout`` are cancelled."""
        if self._stop_event is None:
            return
        self._stop_event.set()
        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("Background loops cancelled after timeout", loops=", ".join(t.get_name() for t in pending))
        self._tasks = []
        logger.info("Background loops stopped")

    # ----------------------------- inspection ----------------------------- #
    def queue_snapshot(self) -> dict[str, Any]:
        return {
            "classification": self.classification_consumer.snapshot(),
            "coordinates": {
                **self.coordinates_consumer.snapshot(),
                "retry_list": self.coordinates.retry_list_size(),
            },
        }

    def cache_snapshot(self) -> dict[str, Any]:
        return {"biddings": self.bidding_cache.snapshot(), "lots": self.lot_cache.snapshot()}

    def breaker_snapshot(self) -> dict[str, Any]:
        return {**self.breaker.snapshot(), "throttle": self.throttle.snapshot()}


__all__ = ["JobScope", "ServiceContainer"]
