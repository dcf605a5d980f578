"""Single lot card parser (``.data-row`` label/value layout)."""
from __future__ import annotations

from typing import Optional

from bs4 import BeautifulSoup

from lots_ingest.config import HTTP_SETTINGS
from lots_ingest.scrapers.cadastral import extract_cadastral_numbers
from lots_ingest.scrapers.fetchers import PageFetcher
from lots_ingest.scrapers.models import LotWorkItem, ScrapedLot
from lots_ingest.utils.text import normalize_spaces, normalize_value, parse_money


def _field(soup: BeautifulSoup, label: str) -> Optional[str]:
    for row in soup.select(".data-row"):
        label_el = row.select_one(".data-label")
        if label_el is None or normalize_spaces(label_el.get_text(" ")).strip() != label:
            continue
        value_el = row.select_one(".data-value")
        return normalize_value(value_el.get_text(" ")) if value_el is not None else None
    return None


def parse_lot_page(html: str, lot_id: str) -> ScrapedLot:
    soup = BeautifulSoup(html, "html.parser")
    description = _field(soup, "Описание")
    cadastral = extract_cadastral_numbers(_field(soup, "Кадастровый номер"))
    if not cadastral:
        cadastral = extract_cadastral_numbers(description)
    return ScrapedLot(
        id=lot_id,
        lot_number=_field(soup, "Номер лота"),
        description=description,
        trade_type=_field(soup, "Вид торгов"),
        bid_acceptance_period=_field(soup, "Прием заявок"),
        start_price=parse_money(_field(soup, "Начальная цена")),
        step=parse_money(_field(soup, "Шаг")),
        deposit=parse_money(_field(soup, "Задаток")),
        cadastral_numbers=cadastral,
    )


class LotPageScraper:
    def __init__(self, *, base_url: str | None = None):
        self.base_url = str(base_url or HTTP_SETTINGS["registry_base_url"]).rstrip("/")

    async def scrape(self, fetcher: PageFetcher, item: LotWorkItem) -> ScrapedLot:
        html = await fetcher.get(item.url or f"{self.base_url}/lots/{item.id}")
        return parse_lot_page(html, item.id)


__all__ = ["LotPageScraper", "parse_lot_page"]
