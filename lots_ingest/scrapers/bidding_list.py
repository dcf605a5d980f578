"""Discovery of new biddings from the legacy registry's trade list.

``TradeList.aspx`` is a Web-Forms GridView (``#ctl00_cphBody_gvTradeList``),
newest first. Discovery walks pages forward and stops at the first bidding
that is already persisted, so a steady-state pass reads one page.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup

from lots_ingest.config import DISCOVERY_SETTINGS, HTTP_SETTINGS
from lots_ingest.scrapers.fetchers import FetchError, PageFetcher
from lots_ingest.scrapers.models import BiddingListEntry
from lots_ingest.scrapers.webforms import build_postback_form, collect_form_fields, detect_current_page
from lots_ingest.utils import get_logger

logger = get_logger(__name__)

GRID_SELECTOR = "#ctl00_cphBody_gvTradeList tr"
GRID_EVENT_TARGET = "ctl00$cphBody$gvTradeList"
MIN_CELLS = 8


@dataclass(slots=True)
class DiscoveryResult:
    entries: list[BiddingListEntry] = field(default_factory=list)
    pages: int = 0
    reached_known: bool = False
    error: Optional[str] = None


def _bidding_id_from_href(href: str) -> Optional[str]:
    if "TradeCard.aspx" not in href:
        return None
    query = parse_qs(urlparse(href).query)
    raw = (query.get("ID") or query.get("id") or [None])[0]
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return None


def parse_trade_list(html_or_soup: str | BeautifulSoup) -> list[BiddingListEntry]:
    soup = html_or_soup if isinstance(html_or_soup, BeautifulSoup) else BeautifulSoup(html_or_soup, "html.parser")
    entries: list[BiddingListEntry] = []
    rows = soup.select(GRID_SELECTOR)
    for row in rows[1:]:  # header
        if "pager" in (row.get("class") or []):
            continue
        cells = row.find_all("td", recursive=False)
        if len(cells) < MIN_CELLS:
            logger.warning("Trade list row has too few cells", cells=len(cells), expected=MIN_CELLS)
            continue
        link = cells[5].find("a")
        href = link.get("href", "") if link is not None else ""
        bidding_id = _bidding_id_from_href(href)
        if bidding_id is None:
            continue
        entries.append(BiddingListEntry(
            id=bidding_id,
            trade_number=cells[0].get_text(strip=True) or None,
            platform=cells[3].get_text(strip=True) or None,
        ))
    return entries


class BiddingListScraper:
    def __init__(self, *, base_url: str | None = None, max_pages: int | None = None):
        base = str(base_url or HTTP_SETTINGS["legacy_base_url"]).rstrip("/")
        self.url = f"{base}/TradeList.aspx"
        self.max_pages = int(max_pages if max_pages is not None else DISCOVERY_SETTINGS["max_pages"])

    async def discover(self, fetcher: PageFetcher, is_known: Callable[[str], bool]) -> DiscoveryResult:
        """Collect unseen biddings page by page until a known one shows up."""
        result = DiscoveryResult()
        try:
            html = await fetcher.get(self.url)
        except FetchError as e:
            logger.error("Trade list load failed", url=self.url, error=str(e))
            result.error = str(e)
            return result

        page = 1
        while True:
            soup = BeautifulSoup(html, "html.parser")
            result.pages += 1
            for entry in parse_trade_list(soup):
                if is_known(entry.id):
                    logger.info("Reached already persisted bidding", bidding_id=entry.id, page=page)
                    result.reached_known = True
                    break
                result.entries.append(entry)
            if result.reached_known or result.pages >= self.max_pages:
                break

            fields = collect_form_fields(soup)
            if not fields.get("__VIEWSTATE") or not fields.get("__EVENTVALIDATION"):
                logger.warning("Trade list page lacks view-state; cannot page further", page=page)
                break

            page += 1
            form = build_postback_form(fields, GRID_EVENT_TARGET, f"Page${page}")
            try:
                html = await fetcher.post(self.url, form)
            except FetchError as e:
                logger.error("Trade list postback failed", page=page, error=str(e))
                result.error = str(e)
                break
            shown = detect_current_page(BeautifulSoup(html, "html.parser"))
            if shown != page:
                logger.info("Reached end of trade list", requested=page, shown=shown)
                break

        logger.info(
            "Trade list discovery finished",
            discovered=len(result.entries),
            pages=result.pages,
            reached_known=result.reached_known,
        )
        return result


__all__ = ["BiddingListScraper", "DiscoveryResult", "parse_trade_list"]
