"""Text normalisation helpers for registry pages (spaces, money, INN, lot numbers)."""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

_WS_RE = re.compile(r"\s+")
_INN_RE = re.compile(r"\b\d{10}(?:\d{2})?\b")
_LOT_PREFIX_RE = re.compile(r"\s*лот\s*№?\s*", re.IGNORECASE)
_CURRENCY_RE = re.compile(r"руб\.?|₽", re.IGNORECASE)
_PERCENT_RE = re.compile(r"^\s*(\d+(?:[.,]\d+)?)\s*%")

# Placeholders the registry prints instead of leaving a cell blank.
EMPTY_MARKERS = frozenset({"не найдено", "не установлено", "не указано", "-"})


def normalize_spaces(text: str) -> str:
    """Replace NBSP and collapse whitespace runs to a single space."""
    return _WS_RE.sub(" ", text.replace("\u00a0", " "))


def is_empty_value(value: Optional[str]) -> bool:
    if value is None or not value.strip():
        return True
    return value.strip().lower() in EMPTY_MARKERS


def normalize_value(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    v = normalize_spaces(value).strip()
    return None if is_empty_value(v) else v


def normalize_key(key: Optional[str]) -> Optional[str]:
    if key is None or not key.strip():
        return None
    return normalize_spaces(key).strip().strip(":").strip() or None


def normalize_lot_number(raw: str) -> str:
    """'Лот № 3' -> '3'."""
    return _LOT_PREFIX_RE.sub("", raw.strip()).strip()


def extract_inn(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = _INN_RE.search(text)
    return m.group(0) if m else None


def parse_money(raw: Optional[str]) -> Optional[Decimal]:
    """Parse '489 960,00 руб.' style amounts.

    With several dots (thousand separators like 1.000.000.00) only the last
    one is kept as the decimal point.
    """
    if is_empty_value(raw):
        return None
    clean = _CURRENCY_RE.sub("", raw)  # type: ignore[arg-type]
    clean = clean.replace("\u00a0", "").replace(" ", "").strip()
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        head, _, tail = clean.rpartition(".")
        clean = head.replace(".", "") + "." + tail
    if not clean:
        return None
    try:
        value = Decimal(clean)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def parse_percent(raw: Optional[str]) -> Optional[Decimal]:
    """Return the percentage in '10 %' / '5,5%' forms, else None."""
    if not raw:
        return None
    m = _PERCENT_RE.match(normalize_spaces(raw))
    if not m:
        return None
    return Decimal(m.group(1).replace(",", "."))


__all__ = [
    "EMPTY_MARKERS",
    "normalize_spaces",
    "is_empty_value",
    "normalize_value",
    "normalize_key",
    "normalize_lot_number",
    "extract_inn",
    "parse_money",
    "parse_percent",
]
