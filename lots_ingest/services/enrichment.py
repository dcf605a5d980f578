"""Third-party platform enrichment loop.

Each tick, per platform parser::

    with scope_factory():                      # short read-only scope
        batch = select_pending_biddings(...)   # not enriched, retries left
    async with fetcher_factory() as fetcher:   # one fetcher per batch
        for bidding in batch:
            page = await fetcher.get(...)      # no session open here
            with scope_factory():              # fresh scope per bidding
                store schedules, mark enriched
            on error: bump retry_count in a fresh scope

Biddings that are not public offers have no schedule and are marked
enriched without a fetch.
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, ContextManager, Optional, Sequence

from bs4 import BeautifulSoup
from sqlalchemy import or_
from sqlalchemy.orm import Session

from lots_ingest.config import ENRICHMENT_SETTINGS
from lots_ingest.models.db import Bidding, BiddingEnrichmentState
from lots_ingest.scrapers.fetchers import FetcherFactory, PageFetcher
from lots_ingest.scrapers.models import PriceStage
from lots_ingest.scrapers.platforms import PlatformParser, default_parsers, is_public_offer, parser_for
from lots_ingest.utils import get_logger, log_business_event
from lots_ingest.utils.aio import sleep_or_stop

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)


class UnsupportedPlatformError(Exception):
    """No parser knows the bidding's trading platform."""


@dataclass(slots=True, frozen=True)
class LotSnapshot:
    id: str
    lot_number: Optional[str]
    start_price: Optional[Decimal]


@dataclass(slots=True)
class BiddingSnapshot:
    id: str
    trade_number: Optional[str]
    platform: Optional[str]
    trade_type: Optional[str]
    lots: list[LotSnapshot] = field(default_factory=list)

    @classmethod
    def of(cls, bidding: Bidding) -> "BiddingSnapshot":
        return cls(
            id=bidding.id,
            trade_number=bidding.trade_number,
            platform=bidding.platform,
            trade_type=bidding.trade_type,
            lots=[LotSnapshot(lot.id, lot.lot_number, lot.start_price) for lot in bidding.lots],
        )


@dataclass(slots=True)
class EnrichmentResult:
    bidding_id: str
    platform: str
    fetched: bool
    # lot id -> number of stages stored
    stages: dict[str, int] = field(default_factory=dict)


def _parse_created_after(raw: object) -> Optional[datetime]:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if not raw:
        return None
    value = datetime.fromisoformat(str(raw))
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def select_pending_biddings(
    session: Session,
    parser: PlatformParser,
    *,
    limit: int,
    max_retries: int,
    created_after: Optional[datetime] = None,
) -> list[BiddingSnapshot]:
    """Newest non-enriched biddings of the parser's platform with retries left."""
    q = (
        session.query(Bidding)
        .outerjoin(BiddingEnrichmentState, BiddingEnrichmentState.bidding_id == Bidding.id)
        .filter(
            Bidding.is_enriched.is_(False),
            Bidding.platform.contains(parser.platform_marker),
            or_(BiddingEnrichmentState.bidding_id.is_(None), BiddingEnrichmentState.retry_count < max_retries),
        )
    )
    if created_after is not None:
        q = q.filter(Bidding.created_at > created_after)
    biddings = q.order_by(Bidding.created_at.desc(), Bidding.id.asc()).limit(limit).all()
    return [BiddingSnapshot.of(b) for b in biddings]


class PlatformEnrichment:
    def __init__(
        self,
        fetcher_factory: FetcherFactory,
        scope_factory: Callable[[], ContextManager["JobScope"]],
        *,
        parsers: Sequence[PlatformParser] | None = None,
        batch_size: int | None = None,
        max_retries: int | None = None,
        created_after: datetime | str | None = None,
        enabled: bool | None = None,
        idle_delay: float | None = None,
    ) -> None:
        cfg = ENRICHMENT_SETTINGS
        self.fetcher_factory = fetcher_factory
        self.scope_factory = scope_factory
        self.parsers = list(parsers) if parsers is not None else default_parsers()
        self.batch_size = int(batch_size if batch_size is not None else cfg["batch_size"])
        self.max_retries = int(max_retries if max_retries is not None else cfg["max_retries"])
        self.created_after = _parse_created_after(created_after if created_after is not None else cfg["created_after"])
        self.enabled = bool(enabled if enabled is not None else cfg["enabled"])
        self.idle_delay = float(idle_delay if idle_delay is not None else cfg["idle_delay_seconds"])

    async def enrich(self, fetcher: PageFetcher, parser: PlatformParser, bidding: BiddingSnapshot) -> EnrichmentResult:
        """Read schedules for one bidding and store them. Errors propagate."""
        result = EnrichmentResult(bidding_id=bidding.id, platform=parser.name, fetched=False)
        schedules: dict[str, list[PriceStage]] = {}
        if is_public_offer(bidding.trade_type):
            if not bidding.trade_number or not bidding.trade_number.strip():
                raise ValueError(f"Bidding {bidding.id} has no trade number")
            html = await fetcher.get(parser.card_url(bidding.trade_number))
            result.fetched = True
            soup = BeautifulSoup(html, "html.parser")
            for lot in bidding.lots:
                schedules[lot.id] = parser.parse_schedule(soup, lot.lot_number, lot.start_price)
        with self.scope_factory() as scope:
            if not scope.repository.mark_enriched(bidding.id, schedules):
                raise LookupError(f"Bidding {bidding.id} disappeared before enrichment was stored")
        result.stages = {lot_id: len(stages) for lot_id, stages in schedules.items()}
        log_business_event(
            "bidding_enriched",
            {"bidding_id": bidding.id, "platform": parser.name, "stages": sum(result.stages.values())},
        )
        return result

    def record_failure(self, bidding_id: str, error: str) -> int:
        with self.scope_factory() as scope:
            return scope.repository.record_enrichment_failure(bidding_id, error)

    async def run_once(self, stop_event: asyncio.Event | None = None) -> int:
        """One batch per platform; return how many biddings were attempted."""
        attempted = 0
        for parser in self.parsers:
            if stop_event is not None and stop_event.is_set():
                break
            with self.scope_factory() as scope:
                batch = select_pending_biddings(
                    scope.session,
                    parser,
                    limit=self.batch_size,
                    max_retries=self.max_retries,
                    created_after=self.created_after,
                )
            if not batch:
                continue
            logger.info("Enrichment batch started", platform=parser.name, biddings=len(batch))
            async with self.fetcher_factory() as fetcher:
                for bidding in batch:
                    if stop_event is not None and stop_event.is_set():
                        break
                    attempted += 1
                    try:
                        result = await self.enrich(fetcher, parser, bidding)
                    except Exception as e:
                        retries = self.record_failure(bidding.id, str(e) or type(e).__name__)
                        logger.error(
                            "Bidding enrichment failed",
                            platform=parser.name,
                            bidding_id=bidding.id,
                            trade_number=bidding.trade_number,
                            attempt=retries,
                            max_retries=self.max_retries,
                            error=str(e),
                        )
                    else:
                        logger.info(
                            "Bidding enriched",
                            platform=parser.name,
                            bidding_id=bidding.id,
                            fetched=result.fetched,
                            stages=sum(result.stages.values()),
                        )
        return attempted

    async def enrich_bidding(self, bidding_id: str) -> EnrichmentResult:
        """Enrich one bidding now, ignoring its enriched flag and retry count."""
        with self.scope_factory() as scope:
            bidding = scope.session.get(Bidding, bidding_id)
            if bidding is None:
                raise LookupError(f"Bidding {bidding_id} not found")
            snapshot = BiddingSnapshot.of(bidding)
        parser = parser_for(snapshot.platform, self.parsers)
        if parser is None:
            raise UnsupportedPlatformError(f"Platform {snapshot.platform!r} is not supported")
        async with self.fetcher_factory() as fetcher:
            return await self.enrich(fetcher, parser, snapshot)

    async def run(self, stop_event: asyncio.Event) -> None:
        if not self.enabled:
            logger.info("Platform enrichment disabled")
            return
        cfg = ENRICHMENT_SETTINGS
        logger.info("Platform enrichment started", platforms=", ".join(p.name for p in self.parsers))
        while not stop_event.is_set():
            try:
                attempted = await self.run_once(stop_event)
            except Exception as e:
                logger.error("Enrichment tick failed", error=str(e), exc_info=True)
                delay = float(cfg["error_delay_seconds"])
            else:
                if attempted:
                    delay = random.uniform(float(cfg["batch_delay_min_seconds"]), float(cfg["batch_delay_max_seconds"]))
                else:
                    delay = self.idle_delay
            if await sleep_or_stop(stop_event, delay):
                break
        logger.info("Platform enrichment stopped")


__all__ = [
    "BiddingSnapshot",
    "EnrichmentResult",
    "PlatformEnrichment",
    "UnsupportedPlatformError",
    "select_pending_biddings",
]
