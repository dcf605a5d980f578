"""Lot category taxonomy and whitelist cleanup.

The tree is the closed set of categories a lot may carry. Provider output is
never trusted: every returned name goes through ``clean_categories``.
"""
from __future__ import annotations

from typing import Iterable, Optional

from lots_ingest.utils import get_logger

logger = get_logger(__name__)

CATEGORY_TREE: dict[str, list[str]] = {
    "Недвижимость": [
        "Квартира", "Жилой дом", "Прочие постройки", "Нежилое помещение", "Нежилое здание",
        "Имущественный комплекс", "Иные сооружения", "Земельный участок", "Объекты с/х недвижимости",
    ],
    "Готовый бизнес": ["Готовый бизнес"],
    "Транспортные средства": [
        "Легковой автомобиль", "Коммерческий транспорт и спецтехника", "Мототехника",
        "Водный транспорт", "Авиатранспорт", "С/х техника", "Иной транспорт и техника",
    ],
    "Оборудование": [
        "Промышленное оборудование", "Строительное оборудование", "Складское оборудование",
        "Торговое оборудование", "Металлообрабатывающее оборудование", "Медицинское оборудование",
        "Пищевое оборудование", "Деревообрабатывающее оборудование", "Производственные линии",
        "Сварочное оборудование", "Другое оборудование",
    ],
    "Компьютерное оборудование": ["Компьютеры и комплектующие", "Оргтехника", "Сетевое оборудование"],
    "Финансовые активы": ["Дебиторская задолженность", "Ценные бумаги", "Доли в уставном капитале"],
    "Товарно-материальные ценности": [
        "Одежда", "Мебель", "Строительные материалы", "Оружие",
        "Предметы искусства", "Драгоценности", "Другие ТМЦ",
    ],
    "Нематериальные активы": [
        "Программное обеспечение", "Торговые знаки", "Авторские права", "Патенты на изобретение",
        "Другие нематериальные активы",
    ],
    "Прочее": ["Прочее"],
}

# Disambiguation hints rendered next to the category in the prompt
CATEGORY_HINTS: dict[str, str] = {
    "Прочие постройки": "бани, сараи, гаражи, хозяйственные блоки, беседки",
    "Коммерческий транспорт и спецтехника": "грузовики, прицепы, автобусы, экскаваторы, бульдозеры, краны, погрузчики",
    "Нежилое помещение": "склады, зерносклады, офисы, магазины",
    "Имущественный комплекс": "готовый бизнес, базы отдыха, заводы целиком",
    "С/х техника": "тракторы, комбайны, сеялки (если это самоходная техника, а не оборудование)",
    "Готовый бизнес": (
        "бизнес под ключ, арендный бизнес, сервис, продажи (торговля), "
        "лот приносит прибыль (действующее предприятие)"
    ),
    "Прочее": "присваивается, когда ни одна из вышеперечисленных категорий не подходит",
}

# casefolded name -> canonical spelling
_ALLOWED: dict[str, str] = {name.casefold(): name for names in CATEGORY_TREE.values() for name in names}

ALLOWED_CATEGORIES: frozenset[str] = frozenset(_ALLOWED.values())


def canonical_category(raw: Optional[str]) -> Optional[str]:
    """Whitelist spelling of ``raw``, or None when it is not a known category."""
    if raw is None:
        return None
    return _ALLOWED.get(raw.strip().casefold())


def clean_categories(raw_categories: Optional[Iterable[str]]) -> list[str]:
    """Keep only whitelisted names, in order, without duplicates.

    A name that misses the whitelist is retried with any trailing
    ``(...)`` hint stripped; if that misses too it is dropped.
    """
    cleaned: list[str] = []
    if not raw_categories:
        return cleaned
    for raw in raw_categories:
        if not isinstance(raw, str) or not raw.strip():
            continue
        name = canonical_category(raw)
        if name is None:
            stripped = raw.split("(")[0].strip()
            name = canonical_category(stripped)
            if name is None:
                logger.warning("Provider returned unknown category", raw=raw, stripped=stripped)
                continue
        if name not in cleaned:
            cleaned.append(name)
    return cleaned


__all__ = [
    "CATEGORY_TREE",
    "CATEGORY_HINTS",
    "ALLOWED_CATEGORIES",
    "canonical_category",
    "clean_categories",
]
