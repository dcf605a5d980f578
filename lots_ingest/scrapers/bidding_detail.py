"""Bidding card and bankrupt-message lot table parsers (client-rendered pages)."""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from bs4 import BeautifulSoup, Tag

from lots_ingest.config import HTTP_SETTINGS
from lots_ingest.scrapers.cadastral import extract_cadastral_numbers
from lots_ingest.scrapers.fetchers import PageFetcher
from lots_ingest.scrapers.models import BiddingInfo, BiddingListEntry, ScrapedLot
from lots_ingest.utils import get_logger
from lots_ingest.utils.text import is_empty_value, normalize_spaces, normalize_value, parse_money, parse_percent

logger = get_logger(__name__)

# Registry timestamps are Moscow time (UTC+3, no DST)
MOSCOW_TZ = timezone(timedelta(hours=3))
_DATETIME_RE = re.compile(r"(\d{2}\.\d{2}\.\d{4})\s+(\d{2}:\d{2})")
_GUID_RE = re.compile(r"[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}")
VIEWING_MARKER = "Порядок ознакомления с имуществом должника:"


def parse_moscow_datetime(raw: Optional[str]) -> Optional[datetime]:
    if is_empty_value(raw):
        return None
    m = _DATETIME_RE.search(raw)  # type: ignore[arg-type]
    if not m:
        return None
    try:
        local = datetime.strptime(f"{m.group(1)} {m.group(2)}", "%d.%m.%Y %H:%M")
    except ValueError:
        return None
    return local.replace(tzinfo=MOSCOW_TZ).astimezone(timezone.utc)


def guid_from_href(href: Optional[str]) -> Optional[str]:
    if not href:
        return None
    matches = _GUID_RE.findall(href)
    if not matches:
        return None
    raw = matches[-1].replace("-", "").lower()
    return f"{raw[:8]}-{raw[8:12]}-{raw[12:16]}-{raw[16:20]}-{raw[20:]}"


def _info_item(soup: BeautifulSoup, label: str) -> Optional[Tag]:
    for name_el in soup.select(".info-item-name"):
        if label in normalize_spaces(name_el.get_text(" ")):
            value = name_el.find_next_sibling(class_="info-item-value")
            if value is not None:
                return value
    return None


def _info_text(soup: BeautifulSoup, label: str) -> Optional[str]:
    el = _info_item(soup, label)
    return normalize_value(el.get_text(" ")) if el is not None else None


def _viewing_procedure(soup: BeautifulSoup) -> Optional[str]:
    direct = _info_text(soup, "Порядок ознакомления с имуществом")
    if direct:
        return direct
    block = soup.select_one(".lot-item-tradeobject")
    if block is None:
        return None
    text = normalize_spaces(block.get_text(" "))
    idx = text.lower().find(VIEWING_MARKER.lower())
    if idx < 0:
        return None
    return text[idx + len(VIEWING_MARKER):].strip() or None


def parse_bidding_page(html: str, entry: BiddingListEntry) -> BiddingInfo:
    soup = BeautifulSoup(html, "html.parser")
    announcement = _info_item(soup, "Объявление о торгах")
    message_id = None
    announced_at = None
    if announcement is not None:
        link = announcement.find("a")
        message_id = guid_from_href(link.get("href")) if link is not None else None
        announced_at = parse_moscow_datetime(announcement.get_text(" "))
    return BiddingInfo(
        id=entry.id,
        trade_number=entry.trade_number,
        platform=entry.platform,
        trade_type=_info_text(soup, "Вид торгов"),
        announced_at=announced_at,
        bid_acceptance_period=_info_text(soup, "Прием заявок"),
        trade_period=_info_text(soup, "Период торгов"),
        bankrupt_message_id=message_id,
        viewing_procedure=_viewing_procedure(soup),
    )


def _inner_item(cell: Tag, label: str, *, exact: bool = False) -> Optional[tuple[Tag, Tag]]:
    for item in cell.select(".td-inner-item"):
        label_el = item.select_one(".fw-light")
        if label_el is None:
            continue
        text = label_el.get_text(strip=True)
        if (text == label) if exact else (label in text):
            return item, label_el
    return None


def _labelled_value(cell: Tag, label: str) -> Optional[str]:
    found = _inner_item(cell, label)
    if found is None:
        return None
    item, _ = found
    divs = item.find_all("div")
    if len(divs) > 1:
        return normalize_value(divs[1].get_text(" "))
    return None


def _lot_description(cell: Tag) -> Optional[str]:
    found = _inner_item(cell, "Описание", exact=True)
    if found is None:
        return None
    item, label_el = found
    text = normalize_spaces(item.get_text(" ")).strip()
    label = normalize_spaces(label_el.get_text(" ")).strip()
    if text.startswith(label):
        text = text[len(label):]
    return normalize_value(text)


def parse_financial_value(raw: Optional[str], start_price: Optional[Decimal]) -> Optional[Decimal]:
    """Absolute amount, or a percentage of ``start_price`` rounded to kopecks."""
    if is_empty_value(raw):
        return None
    if "%" in raw:  # type: ignore[operator]
        pct = parse_percent(raw)
        if pct is None:
            return None
        if start_price is None:
            logger.warning("Percentage value without start price", raw=raw)
            return None
        return (start_price * pct / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return parse_money(raw)


def parse_message_lots(html: str) -> list[ScrapedLot]:
    soup = BeautifulSoup(html, "html.parser")
    lots: list[ScrapedLot] = []
    for row in soup.select(".message-table tbody tr"):
        cells = row.find_all("td", recursive=False)
        if len(cells) < 3:
            logger.warning("Lot table row has unexpected cell count", cells=len(cells), expected=3)
            continue
        number_cell, details_cell, price_cell = cells[0], cells[1], cells[2]
        start_price = parse_money(_labelled_value(price_cell, "Начальная цена"))
        description = _lot_description(details_cell)
        lots.append(ScrapedLot(
            lot_number=normalize_value(number_cell.get_text(" ")),
            description=description,
            start_price=start_price,
            step=parse_financial_value(_labelled_value(price_cell, "Шаг аукциона"), start_price),
            deposit=parse_financial_value(_labelled_value(price_cell, "Задаток"), start_price),
            cadastral_numbers=extract_cadastral_numbers(description),
        ))
    return lots


class BiddingPageScraper:
    def __init__(self, *, base_url: str | None = None):
        self.base_url = str(base_url or HTTP_SETTINGS["registry_base_url"]).rstrip("/")

    async def scrape(self, fetcher: PageFetcher, entry: BiddingListEntry) -> BiddingInfo:
        """Bidding card plus its lots. Fetch errors propagate to the worker."""
        info = parse_bidding_page(await fetcher.get(f"{self.base_url}/biddings/{entry.id}"), entry)
        if info.bankrupt_message_id is None:
            logger.warning("Bidding has no bankrupt message link", bidding_id=entry.id)
            return info
        info.lots = parse_message_lots(await fetcher.get(f"{self.base_url}/bankruptmessages/{info.bankrupt_message_id}"))
        if not info.lots:
            logger.warning("No lots found on bankrupt message", bidding_id=entry.id, message_id=info.bankrupt_message_id)
        return info


__all__ = [
    "BiddingPageScraper",
    "parse_bidding_page",
    "parse_message_lots",
    "parse_financial_value",
    "parse_moscow_datetime",
    "guid_from_href",
]
