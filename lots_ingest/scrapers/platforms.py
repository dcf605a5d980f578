"""Price-reduction schedules from third-party trading platforms.

Public-offer biddings lower their price in stages; the stage table lives on
the trading platform's own page, not on the registry. Each parser knows how
to recognise its platform by name, where the bidding's page is, and how to
pick the stage table out of it:

- МЭТС prints one table per lot. The right one is the visible table whose
  first stage price equals the lot's start price.
- ЦДТ prints a single table for the whole trade, found by its
  "Начало периода действия цены" header.

Stage times are Moscow local time and are stored in UTC.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from lots_ingest.config import ENRICHMENT_SETTINGS
from lots_ingest.scrapers.bidding_detail import MOSCOW_TZ
from lots_ingest.scrapers.models import PriceStage
from lots_ingest.utils import get_logger
from lots_ingest.utils.text import normalize_spaces, parse_money

logger = get_logger(__name__)

PUBLIC_OFFER_MARKER = "публичное"
# The first match wins; МЭТС sometimes glues a second, shorter date onto the cell
_STAGE_DATETIME_RE = re.compile(r"(\d{2}\.\d{2}\.\d{4})\s+(\d{2}:\d{2})(?::(\d{2}))?")
_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)


def is_public_offer(trade_type: Optional[str]) -> bool:
    return bool(trade_type) and PUBLIC_OFFER_MARKER in trade_type.casefold()  # type: ignore[union-attr]


def parse_stage_datetime(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    m = _STAGE_DATETIME_RE.search(normalize_spaces(raw))
    if not m:
        return None
    try:
        local = datetime.strptime(f"{m.group(1)} {m.group(2)}:{m.group(3) or '00'}", "%d.%m.%Y %H:%M:%S")
    except ValueError:
        return None
    return local.replace(tzinfo=MOSCOW_TZ).astimezone(timezone.utc)


def _cells(row: Tag) -> list[Tag]:
    return row.find_all("td", recursive=False)


def _stage_from_cells(position: int, cells: Sequence[Tag], *, with_deposit: bool) -> Optional[PriceStage]:
    start = parse_stage_datetime(cells[1].get_text(" "))
    end = parse_stage_datetime(cells[2].get_text(" "))
    price = parse_money(cells[3].get_text(" "))
    if start is None or end is None or price is None:
        return None
    deposit = parse_money(cells[4].get_text(" ")) if with_deposit and len(cells) > 4 else None
    return PriceStage(position=position, start_date=start, end_date=end, price=price, deposit=deposit)


def stages_from_rows(rows: Iterable[Tag], *, with_deposit: bool) -> list[PriceStage]:
    """Rows with at least four cells: number, start, end, price and an optional deposit."""
    stages: list[PriceStage] = []
    for row in rows:
        cells = _cells(row)
        if len(cells) < 4:
            continue
        stage = _stage_from_cells(len(stages) + 1, cells, with_deposit=with_deposit)
        if stage is not None:
            stages.append(stage)
    return stages


def is_hidden(node: Tag, levels: int = 5) -> bool:
    """``display: none`` on the node or one of its nearest ancestors."""
    current: Optional[Tag] = node
    for _ in range(levels):
        if current is None or not isinstance(current, Tag):
            break
        if _HIDDEN_STYLE_RE.search(current.get("style") or ""):
            return True
        current = current.parent
    return False


class PlatformParser:
    name = "platform"
    platform_marker = ""

    def matches(self, platform: Optional[str]) -> bool:
        return bool(platform) and self.platform_marker.casefold() in platform.casefold()  # type: ignore[union-attr]

    def card_url(self, trade_number: str) -> str:
        raise NotImplementedError

    def parse_schedule(self, soup: BeautifulSoup, lot_number: Optional[str], start_price: Optional[Decimal]) -> list[PriceStage]:
        raise NotImplementedError


class MetsParser(PlatformParser):
    name = "mets"
    platform_marker = "Межрегиональная Электронная Торговая Система"

    def __init__(self, *, base_url: str | None = None):
        self.base_url = str(base_url or ENRICHMENT_SETTINGS["mets_base_url"]).rstrip("/")

    def card_url(self, trade_number: str) -> str:
        # "190006-МЭТС-1" -> /190006-1
        return f"{self.base_url}/{trade_number.strip().replace('-МЭТС', '')}"

    @staticmethod
    def _is_candidate(table: Tag) -> bool:
        headers = [normalize_spaces(th.get_text(" ")) for th in table.find_all("th")]
        return any("Дата начала" in h for h in headers) and any("Цена" in h for h in headers)

    def parse_schedule(self, soup: BeautifulSoup, lot_number: Optional[str], start_price: Optional[Decimal]) -> list[PriceStage]:
        if start_price is None or start_price <= 0:
            logger.warning("Lot has no start price; cannot match a schedule table", platform=self.name, lot_number=lot_number)
            return []
        for table in soup.find_all("table"):
            if not self._is_candidate(table) or is_hidden(table):
                continue
            rows = table.find_all("tr")
            if len(rows) < 2:
                continue
            first = _cells(rows[1])
            if len(first) < 4:
                continue
            if parse_money(first[3].get_text(" ")) != start_price:
                continue
            return stages_from_rows(rows[1:], with_deposit=True)
        logger.warning(
            "No schedule table matches the lot's start price",
            platform=self.name,
            lot_number=lot_number,
            start_price=str(start_price),
        )
        return []


class CdtParser(PlatformParser):
    name = "cdt"
    platform_marker = "Центр дистанционных торгов"
    HEADER_TEXT = "Начало периода действия цены"

    def __init__(self, *, base_url: str | None = None):
        self.base_url = str(base_url or ENRICHMENT_SETTINGS["cdt_base_url"]).rstrip("/")

    def card_url(self, trade_number: str) -> str:
        return f"{self.base_url}/public/undef/card/trade.aspx?id={trade_number.strip()}"

    def parse_schedule(self, soup: BeautifulSoup, lot_number: Optional[str], start_price: Optional[Decimal]) -> list[PriceStage]:
        header = soup.find(string=lambda s: bool(s) and self.HEADER_TEXT in normalize_spaces(s))
        if header is None:
            logger.warning("Schedule header not found", platform=self.name, lot_number=lot_number)
            return []
        table = header.find_parent("table")
        if table is None:
            logger.warning("Schedule header is not inside a table", platform=self.name, lot_number=lot_number)
            return []
        data_rows = [
            row for row in table.find_all("tr")
            if len(_cells(row)) >= 4 and "Начало" not in _cells(row)[1].get_text(" ")
        ]
        return stages_from_rows(data_rows, with_deposit=False)


def default_parsers() -> list[PlatformParser]:
    return [MetsParser(), CdtParser()]


def parser_for(platform: Optional[str], parsers: Iterable[PlatformParser]) -> Optional[PlatformParser]:
    for parser in parsers:
        if parser.matches(platform):
            return parser
    return None


__all__ = [
    "CdtParser",
    "MetsParser",
    "PlatformParser",
    "default_parsers",
    "is_hidden",
    "is_public_offer",
    "parse_stage_datetime",
    "parser_for",
    "stages_from_rows",
]
