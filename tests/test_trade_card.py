import asyncio
from decimal import Decimal

from conftest import FakeFetcher
from lots_ingest.models.db.enums import TradeStatus
from lots_ingest.scrapers.trade_card import (
    TradeCardStatusCrawler,
    apply_status_rule,
    parse_lot_statuses,
    record_from_rows,
)

BIDDING_ID = "6f1c2d3e-4a5b-4c6d-8e9f-0a1b2c3d4e5f"
CARD_URL = f"https://legacy.test/TradeCard.aspx?ID={BIDDING_ID}"


def lot_block(number, rows):
    cells = "".join(f"<tr><td>{k}</td><td>{v}</td></tr>" for k, v in rows)
    return f'<div class="lot"><h3>Лот № {number}</h3><table class="lot-info">{cells}</table></div>'


def card_page(current, pages, *blocks):
    pager = "".join(
        f"<td><span>{p}</span></td>" if p == current
        else f"<td><a href=\"javascript:__doPostBack('ctl00$cphBody$gvLots','Page${p}')\">{p}</a></td>"
        for p in pages
    )
    return f"""<html><body><form>
    <input type="hidden" name="__VIEWSTATE" value="vs{current}"/>
    <input type="hidden" name="__EVENTVALIDATION" value="ev{current}"/>
    {''.join(blocks)}
    <table><tr class="pager">{pager}</tr></table>
    </form></body></html>"""


def crawler(max_pages=20):
    return TradeCardStatusCrawler(lambda: FakeFetcher(), base_url="https://legacy.test", max_pages=max_pages)


# ----------------------------- value rules ----------------------------- #

def test_status_rule_completed_with_price_keeps_winner():
    assert apply_status_rule("Завершенные", Decimal("489960.00"), "ООО Вектор", "7701234567") == (
        "Завершенные", Decimal("489960.00"), "ООО Вектор", "7701234567"
    )


def test_status_rule_completed_without_price_is_not_held():
    assert apply_status_rule("Завершенные", None, "ООО Вектор", "7701234567") == (
        TradeStatus.NOT_HELD, None, None, None
    )


def test_status_rule_other_status_clears_outcome():
    assert apply_status_rule("Торги отменены", Decimal("100"), "X", "1") == ("Торги отменены", None, None, None)


def test_record_reads_inn_from_following_row():
    record = record_from_rows("1", [
        ("Статус торгов", "Завершенные"),
        ("Итоговая цена", "489 960,00 руб."),
        ("Победитель", 'ООО "Вектор"'),
        ("ИНН", "7701234567"),
    ])
    assert record.trade_status == "Завершенные"
    assert record.final_price == Decimal("489960.00")
    assert record.winner_name == 'ООО "Вектор"'
    assert record.winner_inn == "7701234567"
    assert record_from_rows("2", [("Итоговая цена", "1,00")]) is None


# ----------------------------- page scan ----------------------------- #

def test_each_lot_reads_only_its_own_table():
    html = card_page(
        1, [1],
        lot_block(1, [("Статус торгов", "Завершенные"), ("Итоговая цена", "489 960,00 руб."),
                      ("Победитель", "ИП Иванов ИНН 123456789012")]),
        # completed with a price but no winner rows: must not inherit lot 1's winner
        lot_block(2, [("Статус торгов", "Завершенные"), ("Итоговая цена", "1 000,00 руб.")]),
        lot_block(3, [("Статус торгов", "Завершенные"), ("Победитель", "ООО Ромашка")]),
    )
    statuses = parse_lot_statuses(html)
    assert set(statuses) == {"1", "2", "3"}
    assert statuses["1"].winner_inn == "123456789012"
    assert statuses["2"].final_price == Decimal("1000.00")
    assert statuses["2"].winner_name is None and statuses["2"].winner_inn is None
    assert statuses["3"].trade_status == TradeStatus.NOT_HELD
    assert statuses["3"].winner_name is None


def test_status_rows_without_header_are_ignored():
    html = "<table><tr><td>Статус торгов</td><td>Завершенные</td></tr></table>"
    assert parse_lot_statuses(html) == {}


# ----------------------------- crawler ----------------------------- #

def test_crawl_pages_forward_until_all_lots_found():
    page1 = card_page(1, [1, 2], lot_block(1, [("Статус торгов", "Торги отменены")]),
                      lot_block(2, [("Статус торгов", "Завершенные"), ("Итоговая цена", "5,00")]))
    page2 = card_page(2, [1, 2], lot_block(3, [("Статус торгов", "Идет прием заявок")]))
    fetcher = FakeFetcher(pages={CARD_URL: page1}, posts={"Page$2": page2})

    crawl = asyncio.run(crawler().crawl(BIDDING_ID, ["1", "Лот № 2", "3"], fetcher=fetcher))

    assert not crawl.aborted
    assert crawl.pages_visited == [1, 2]
    assert set(crawl.statuses) == {"1", "2", "3"}
    assert crawl.statuses["3"].trade_status == "Идет прием заявок"
    form = fetcher.post_calls[0]
    assert form["__VIEWSTATE"] == "vs1"
    assert form["__EVENTTARGET"] == "ctl00$cphBody$gvLots"
    assert form["__EVENTARGUMENT"] == "Page$2"


def test_crawl_stops_early_when_lots_found_on_first_page():
    page1 = card_page(1, [1, 2], lot_block(1, [("Статус торгов", "Торги отменены")]))
    fetcher = FakeFetcher(pages={CARD_URL: page1})
    crawl = asyncio.run(crawler().crawl(BIDDING_ID, ["1"], fetcher=fetcher))
    assert crawl.pages_visited == [1]
    assert fetcher.post_calls == []


def test_crawl_detects_pagination_cycle():
    page1 = card_page(1, [1, 2, 3])
    page2 = card_page(2, [1, 2, 3])
    page3 = card_page(3, [1, 2, 3, 4])
    # the server answers a request for page 4 with page 2 again
    fetcher = FakeFetcher(pages={CARD_URL: page1}, posts={"Page$2": page2, "Page$3": page3, "Page$4": page2})

    crawl = asyncio.run(crawler().crawl(BIDDING_ID, ["9"], fetcher=fetcher))

    assert crawl.aborted and crawl.abort_reason == "cycle"
    assert crawl.pages_visited == [1, 2, 3]
    assert len(fetcher.post_calls) == 3


def test_crawl_respects_page_limit():
    page1 = card_page(1, [1, 2])
    fetcher = FakeFetcher(pages={CARD_URL: page1}, posts={"Page$2": card_page(2, [1, 2])})
    crawl = asyncio.run(crawler(max_pages=1).crawl(BIDDING_ID, ["1"], fetcher=fetcher))
    assert crawl.aborted and crawl.abort_reason == "max_pages"
    assert fetcher.post_calls == []


def test_crawl_without_lot_numbers_collects_every_lot():
    page1 = card_page(1, [1, 2], lot_block(1, [("Статус торгов", "Торги отменены")]))
    page2 = card_page(2, [1, 2], lot_block(2, [("Статус торгов", "Торги отменены")]))
    fetcher = FakeFetcher(pages={CARD_URL: page1}, posts={"Page$2": page2})
    crawl = asyncio.run(crawler().crawl(BIDDING_ID, fetcher=fetcher))
    assert set(crawl.statuses) == {"1", "2"}
    assert not crawl.aborted


def test_failed_load_returns_aborted_result():
    crawl = asyncio.run(crawler().crawl(BIDDING_ID, ["1"], fetcher=FakeFetcher()))
    assert crawl.aborted and crawl.abort_reason == "fetch"
    assert crawl.statuses == {}


def test_crawl_opens_its_own_fetcher_when_none_given():
    page1 = card_page(1, [1], lot_block(1, [("Статус торгов", "Торги отменены")]))
    fetcher = FakeFetcher(pages={CARD_URL: page1})
    c = TradeCardStatusCrawler(lambda: fetcher, base_url="https://legacy.test")
    crawl = asyncio.run(c.crawl(BIDDING_ID, ["1"]))
    assert set(crawl.statuses) == {"1"}
    assert fetcher.entered == 1 and fetcher.closed == 1


def test_unexpected_error_keeps_lots_found_so_far():
    page1 = card_page(1, [1, 2], lot_block(1, [("Статус торгов", "Торги отменены")]))
    bad_body = UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
    fetcher = FakeFetcher(pages={CARD_URL: page1}, posts={"Page$2": bad_body})

    crawl = asyncio.run(crawler().crawl(BIDDING_ID, ["1", "2"], fetcher=fetcher))

    assert crawl.aborted and crawl.abort_reason == "error"
    assert set(crawl.statuses) == {"1"}
    assert crawl.pages_visited == [1]


def test_unexpected_error_with_own_fetcher_is_not_raised():
    fetcher = FakeFetcher(pages={CARD_URL: RuntimeError("boom")})
    c = TradeCardStatusCrawler(lambda: fetcher, base_url="https://legacy.test")
    crawl = asyncio.run(c.crawl(BIDDING_ID, ["1"]))
    assert crawl.aborted and crawl.abort_reason == "error"
    assert fetcher.closed == 1
