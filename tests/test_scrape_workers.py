import asyncio

import pytest

from conftest import audit_statuses
from lots_ingest.cache import WorkStatus, WorkStatusCache
from lots_ingest.models.db import AuditStatus, Bidding, Lot
from lots_ingest.scrapers.bidding_detail import BiddingPageScraper
from lots_ingest.scrapers.bidding_list import BiddingListScraper
from lots_ingest.scrapers.lot_detail import LotPageScraper
from lots_ingest.scrapers.models import BiddingListEntry, LotWorkItem
from lots_ingest.services.discovery import BiddingDiscovery
from lots_ingest.services.scrape_worker import BiddingProcessor, LotProcessor
from test_registry_scrapers import (
    BIDDING_HTML,
    ID_A,
    ID_B,
    ID_C,
    LIST_URL,
    LOT_HTML,
    MESSAGE_HTML,
    trade_list_page,
    trade_row,
)

MESSAGE_URL = "https://reg.test/bankruptmessages/a1b2c3d4-e5f6-0718-293a-4b5c6d7e8f90"


def bidding_cache():
    return WorkStatusCache("biddings", key_fn=lambda e: e.id, max_attempts=2, retry_delay=lambda n: 0)


def lot_cache():
    return WorkStatusCache("lots", key_fn=lambda i: i.id, max_attempts=2, retry_delay=lambda n: 0)


@pytest.fixture()
def bidding_processor(container, fetcher):
    return BiddingProcessor(
        bidding_cache(), lambda: fetcher, container.open_scope,
        scraper=BiddingPageScraper(base_url="https://reg.test"), item_delay=0,
    )


@pytest.fixture()
def lot_processor(container, fetcher):
    return LotProcessor(
        lot_cache(), lambda: fetcher, container.open_scope,
        scraper=LotPageScraper(base_url="https://reg.test"), item_delay=0,
    )


def test_bidding_persisted_with_followups(bidding_processor, container, fetcher, db_session):
    fetcher.pages[f"https://reg.test/biddings/{ID_A}"] = BIDDING_HTML
    fetcher.pages[MESSAGE_URL] = MESSAGE_HTML
    bidding_processor.cache.add_many([BiddingListEntry(id=ID_A, trade_number="T-1")])

    completed = asyncio.run(bidding_processor.run_once())

    assert completed == 1
    assert bidding_processor.cache.status_of(ID_A) is WorkStatus.COMPLETED
    bidding = db_session.get(Bidding, ID_A)
    assert bidding.trade_number == "T-1"
    assert len(bidding.lots) == 1
    lot = bidding.lots[0]
    assert [c.cadastral_number for c in lot.cadastral_numbers] == ["50:10:0010203:45"]
    assert container.classification_queue.depth() == 1
    assert container.coordinates_queue.depth() == 1
    assert audit_statuses(db_session, lot.id) == [AuditStatus.ENQUEUED]
    assert fetcher.entered == fetcher.closed == 1


def test_failed_item_retries_then_parks(bidding_processor, fetcher, db_session):
    cache = bidding_processor.cache
    cache.add_many([BiddingListEntry(id=ID_B)])

    assert asyncio.run(bidding_processor.run_once()) == 0
    entry = cache.get_entry(ID_B)
    assert entry.status is WorkStatus.NEW and entry.attempts == 1
    assert "404" in entry.last_error

    assert asyncio.run(bidding_processor.run_once()) == 0
    assert cache.status_of(ID_B) is WorkStatus.FAILED
    assert cache.get_pending() == []
    assert db_session.get(Bidding, ID_B) is None


def test_already_stored_bidding_is_completed_without_fetch(bidding_processor, bidding_factory, fetcher):
    bidding_factory(ID_C)
    bidding_processor.cache.add_many([BiddingListEntry(id=ID_C)])

    assert asyncio.run(bidding_processor.run_once()) == 1
    assert fetcher.get_calls == []


def test_bidding_without_message_is_stored_without_lots(bidding_processor, container, fetcher, db_session):
    fetcher.pages[f"https://reg.test/biddings/{ID_A}"] = "<html><body></body></html>"
    bidding_processor.cache.add_many([BiddingListEntry(id=ID_A)])

    assert asyncio.run(bidding_processor.run_once()) == 1
    assert db_session.get(Bidding, ID_A).lots == []
    assert container.classification_queue.depth() == 0


def test_empty_cache_opens_no_fetcher(bidding_processor, fetcher):
    assert asyncio.run(bidding_processor.run_once()) == 0
    assert fetcher.entered == 0


def test_lot_processor_stores_lot_under_its_own_id(lot_processor, container, fetcher, db_session):
    fetcher.pages["https://reg.test/lots/lot-1"] = LOT_HTML
    lot_processor.cache.add_many([LotWorkItem(id="lot-1")])

    assert asyncio.run(lot_processor.run_once()) == 1
    lot = db_session.get(Lot, "lot-1")
    assert lot.lot_number == "3"
    assert lot.bidding_id is None
    assert len(lot.cadastral_numbers) == 2
    assert container.classification_queue.depth() == 1
    assert container.coordinates_queue.depth() == 1

    # a second pass for the same id is a no-op
    lot_processor.cache.prune_completed()
    lot_processor.cache.add_many([LotWorkItem(id="lot-1")])
    assert asyncio.run(lot_processor.run_once()) == 1
    assert db_session.query(Lot).count() == 1
    assert fetcher.get_calls == ["https://reg.test/lots/lot-1"]


def test_discovery_fills_cache_and_prunes_terminal_entries(container, fetcher, bidding_factory):
    bidding_factory(ID_C)
    fetcher.pages[LIST_URL] = trade_list_page(1, trade_row(ID_A, "T-1"), trade_row(ID_B, "T-2"), trade_row(ID_C, "T-3"))
    cache = bidding_cache()
    cache.add_many([BiddingListEntry(id="done")])
    cache.mark_completed("done")
    discovery = BiddingDiscovery(
        cache, lambda: fetcher, container.open_scope, scraper=BiddingListScraper(base_url="https://legacy.test")
    )

    result = asyncio.run(discovery.run_once())

    assert [e.id for e in result.entries] == [ID_A, ID_B]
    assert result.reached_known
    assert "done" not in cache
    assert [e.id for e in cache.get_pending()] == [ID_A, ID_B]

    # cached entries count as known on the next pass
    result = asyncio.run(discovery.run_once())
    assert result.entries == []
