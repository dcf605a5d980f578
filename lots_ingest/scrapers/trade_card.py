"""Trade outcome crawler for the legacy registry's trade card.

The card at ``TradeCard.aspx?ID=<bidding>`` lists lots as repeated blocks:
a "Лот № N" header followed by a key/value table holding the trade status,
final price and winner. Long cards page through a Web-Forms postback grid.

Crawl loop::

    fetch page 1
    while True:
        scan page for requested lots        -> all found: done
        discover postback links, pick pager -> none: done
        pick next unvisited page            -> none: done
        post back for it, detect page shown -> already visited: cycle, stop

Any error ends the crawl for this bidding and the partial
result is returned; nothing is raised to the caller.

Lot association: for each row whose key cell reads "Статус торгов", the lot
is the nearest *preceding* "Лот № N" element in document order (ancestors
excluded), and only rows of that row's own table are read. Reading
key/values page-wide would leak one lot's winner into another.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Tag

from lots_ingest.config import HTTP_SETTINGS, TRADE_STATUS_SETTINGS
from lots_ingest.models.db.enums import TradeStatus
from lots_ingest.scrapers.fetchers import FetchError, FetcherFactory, HttpPageFetcher, PageFetcher
from lots_ingest.scrapers.models import LotStatusRecord
from lots_ingest.scrapers.webforms import (
    build_postback_form,
    choose_pager,
    collect_form_fields,
    detect_current_page,
    find_postback_links,
)
from lots_ingest.utils import get_logger
from lots_ingest.utils.flat_tree import FlatTree
from lots_ingest.utils.text import (
    extract_inn,
    is_empty_value,
    normalize_key,
    normalize_lot_number,
    normalize_spaces,
    normalize_value,
    parse_money,
)

logger = get_logger(__name__)

LOT_HEADER_RE = re.compile(r"^\s*Лот\s*№\s*(?P<n>.{1,40}?)\s*$", re.IGNORECASE)

STATUS_KEY = "статус торгов"


@dataclass(slots=True)
class TradeCardCrawl:
    bidding_id: str
    statuses: dict[str, LotStatusRecord] = field(default_factory=dict)
    pages_visited: list[int] = field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None

    def _abort(self, reason: str) -> None:
        self.aborted = True
        self.abort_reason = reason


# ----------------------------- value rules ----------------------------- #

def apply_status_rule(
    status: str,
    final_price: Optional[Decimal],
    winner_name: Optional[str],
    winner_inn: Optional[str],
) -> tuple[str, Optional[Decimal], Optional[str], Optional[str]]:
    """Derive the stored outcome from scraped values.

    - "Завершенные" with no final price becomes "Торги не состоялись".
    - No final price clears the winner.
    - Any status other than "Завершенные" clears price and winner.
    """
    computed = status
    completed = TradeStatus.COMPLETED.casefold()
    if status.casefold() == completed and final_price is None:
        computed = TradeStatus.NOT_HELD
    if final_price is None:
        winner_name = None
        winner_inn = None
    if computed.casefold() != completed:
        final_price = None
        winner_name = None
        winner_inn = None
    return computed, final_price, winner_name, winner_inn


def record_from_rows(lot_number: str, rows: list[tuple[str, str]]) -> Optional[LotStatusRecord]:
    """Build a status record from one lot table's (key, value) rows."""
    def find(pred) -> int:
        for i, (k, _) in enumerate(rows):
            if pred(k.casefold()):
                return i
        return -1

    status_idx = find(lambda k: STATUS_KEY in k)
    raw_status = rows[status_idx][1] if status_idx >= 0 else None
    if is_empty_value(raw_status):
        return None

    price_idx = find(lambda k: "итоговая" in k and "цена" in k)
    final_price = parse_money(rows[price_idx][1]) if price_idx >= 0 else None

    winner_idx = find(lambda k: "победитель" in k)
    winner_name = normalize_value(rows[winner_idx][1]) if winner_idx >= 0 else None
    winner_inn = None
    if winner_name is not None:
        winner_inn = extract_inn(winner_name)
        if winner_inn is None:
            # INN often sits in its own row right after the winner
            for key, value in rows[winner_idx + 1:]:
                if "инн" in key.casefold():
                    winner_inn = extract_inn(value) or normalize_value(value)
                    break

    base_status = normalize_value(raw_status) or raw_status.strip()  # type: ignore[union-attr]
    status, final_price, winner_name, winner_inn = apply_status_rule(base_status, final_price, winner_name, winner_inn)
    return LotStatusRecord(
        lot_number=lot_number,
        trade_status=status,
        final_price=final_price,
        winner_name=winner_name,
        winner_inn=winner_inn,
    )


# ----------------------------- page scan ----------------------------- #

def _tag_children(node: Tag) -> list[Tag]:
    return [c for c in node.children if isinstance(c, Tag)]


def _cells(tr: Tag) -> list[Tag]:
    return tr.find_all(["td", "th"], recursive=False)


def _lot_header_number(node: Tag) -> Optional[str]:
    text = normalize_spaces(node.get_text(" ")).strip()
    if not text:
        return None
    m = LOT_HEADER_RE.match(text)
    return m.group("n") if m else None


def table_rows(table: Tag) -> list[tuple[str, str]]:
    """(key, value) pairs from rows belonging to ``table`` itself, not nested tables."""
    rows: list[tuple[str, str]] = []
    for tr in table.find_all("tr"):
        if tr.find_parent("table") is not table:
            continue
        cells = _cells(tr)
        if len(cells) < 2:
            continue
        key = normalize_key(cells[0].get_text(" "))
        if key is None:
            continue
        rows.append((key, normalize_value(cells[1].get_text(" ")) or ""))
    return rows


def parse_lot_statuses(html_or_soup: str | BeautifulSoup) -> dict[str, LotStatusRecord]:
    """Every lot status block on one page, keyed by normalised lot number."""
    soup = html_or_soup if isinstance(html_or_soup, BeautifulSoup) else BeautifulSoup(html_or_soup, "html.parser")
    status_rows = []
    for tr in soup.find_all("tr"):
        cells = _cells(tr)
        if len(cells) < 2:
            continue
        key = normalize_key(cells[0].get_text(" "))
        if key and STATUS_KEY in key.casefold():
            status_rows.append(tr)
    if not status_rows:
        return {}

    tree: FlatTree[Tag] = FlatTree(soup, _tag_children)
    found: dict[str, LotStatusRecord] = {}
    for tr in status_rows:
        header = tree.nearest_preceding(tr, lambda n: _lot_header_number(n) is not None)
        if header is None:
            continue
        lot_number = normalize_lot_number(_lot_header_number(header) or "")
        if not lot_number or lot_number.casefold() in {k.casefold() for k in found}:
            continue
        table = tr.find_parent("table")
        if table is None:
            continue
        record = record_from_rows(lot_number, table_rows(table))
        if record is not None:
            found[lot_number] = record
    return found


# ----------------------------- crawler ----------------------------- #

class TradeCardStatusCrawler:
    def __init__(
        self,
        fetcher_factory: FetcherFactory = HttpPageFetcher,
        *,
        base_url: str | None = None,
        max_pages: int | None = None,
    ) -> None:
        self.fetcher_factory = fetcher_factory
        self.base_url = str(base_url or HTTP_SETTINGS["legacy_base_url"]).rstrip("/")
        self.max_pages = int(max_pages if max_pages is not None else TRADE_STATUS_SETTINGS["max_pages"])

    def card_url(self, bidding_id: str) -> str:
        return f"{self.base_url}/TradeCard.aspx?ID={bidding_id}"

    async def crawl(
        self,
        bidding_id: str,
        lot_numbers: Iterable[str] = (),
        *,
        fetcher: PageFetcher | None = None,
    ) -> TradeCardCrawl:
        """Locate the given lots (all lots when empty). Never raises."""
        if fetcher is not None:
            return await self._crawl(fetcher, bidding_id, lot_numbers)
        try:
            async with self.fetcher_factory() as own:
                return await self._crawl(own, bidding_id, lot_numbers)
        except Exception as e:
            # fetcher setup/teardown failure
            logger.error("Trade card crawl failed", bidding_id=bidding_id, error=str(e), exc_info=True)
            result = TradeCardCrawl(bidding_id=bidding_id)
            result._abort("fetcher")
            return result

    async def _crawl(self, fetcher: PageFetcher, bidding_id: str, lot_numbers: Iterable[str]) -> TradeCardCrawl:
        result = TradeCardCrawl(bidding_id=bidding_id)
        wanted: dict[str, str] = {}
        for raw in lot_numbers:
            if raw and raw.strip():
                n = normalize_lot_number(raw)
                if n:
                    wanted.setdefault(n.casefold(), n)

        try:
            await self._walk(fetcher, result, wanted)
        except Exception as e:
            logger.error(
                "Trade card crawl aborted",
                bidding_id=bidding_id,
                page=result.pages_visited[-1] if result.pages_visited else None,
                error=str(e),
                exc_info=True,
            )
            result._abort("error")

        logger.info(
            "Trade card crawled",
            bidding_id=bidding_id,
            found=len(result.statuses),
            wanted=len(wanted) or None,
            pages=len(result.pages_visited),
            aborted=result.aborted,
            reason=result.abort_reason,
        )
        return result

    async def _walk(self, fetcher: PageFetcher, result: TradeCardCrawl, wanted: dict[str, str]) -> None:
        """Fill ``result`` page by page. Unexpected errors propagate to ``_crawl``."""
        bidding_id = result.bidding_id
        url = self.card_url(bidding_id)
        try:
            html = await fetcher.get(url)
        except FetchError as e:
            logger.warning("Trade card load failed", bidding_id=bidding_id, error=str(e))
            result._abort("fetch")
            return

        current = 1
        visited: set[int] = set()
        while True:
            visited.add(current)
            result.pages_visited.append(current)
            try:
                soup = BeautifulSoup(html, "html.parser")
                page_statuses = parse_lot_statuses(soup)
            except Exception as e:
                logger.warning("Trade card parse failed", bidding_id=bidding_id, page=current, error=str(e))
                result._abort("parse")
                return

            for number, record in page_statuses.items():
                key = number.casefold()
                if wanted and key not in wanted:
                    continue
                out_key = wanted.get(key, number)
                result.statuses.setdefault(out_key, record)

            if wanted and all(k in {s.casefold() for s in result.statuses} for k in wanted):
                return

            pager = choose_pager(find_postback_links(soup))
            if pager is None:
                return
            next_page = pager.next_page_after(current, visited)
            if next_page is None:
                return
            if len(result.pages_visited) >= self.max_pages:
                logger.warning("Trade card page limit reached", bidding_id=bidding_id, max_pages=self.max_pages)
                result._abort("max_pages")
                return

            link = pager.pages[next_page]
            form = build_postback_form(collect_form_fields(soup), link.target, link.argument)
            try:
                html = await fetcher.post(url, form)
            except FetchError as e:
                logger.warning("Trade card postback failed", bidding_id=bidding_id, page=next_page, error=str(e))
                result._abort("fetch")
                return

            try:
                shown = detect_current_page(BeautifulSoup(html, "html.parser"), pager)
            except Exception:
                shown = None
            current = shown if shown is not None else next_page
            if current in visited:
                logger.warning(
                    "Trade card pagination cycle detected",
                    bidding_id=bidding_id,
                    requested=next_page,
                    shown=current,
                )
                result._abort("cycle")
                return


__all__ = [
    "TradeCardCrawl",
    "TradeCardStatusCrawler",
    "apply_status_rule",
    "record_from_rows",
    "parse_lot_statuses",
    "table_rows",
]
