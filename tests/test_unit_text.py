from decimal import Decimal

from lots_ingest.utils.text import (
    extract_inn,
    is_empty_value,
    normalize_key,
    normalize_lot_number,
    normalize_value,
    parse_money,
    parse_percent,
)
from lots_ingest.utils.time import seconds_until_hour


def test_parse_money_formats():
    assert parse_money("489 960,00 руб.") == Decimal("489960.00")
    assert parse_money("489 960,00 ₽") == Decimal("489960.00")
    assert parse_money("1.000.000.50") == Decimal("1000000.50")
    assert parse_money("не указано") is None
    assert parse_money("цена") is None
    assert parse_money(None) is None


def test_value_and_key_normalisation():
    assert normalize_value("  a   b ") == "a b"
    assert normalize_value(" - ") is None
    assert normalize_value("Не установлено") is None
    assert is_empty_value("") is True
    assert normalize_key("Статус торгов:") == "Статус торгов"


def test_lot_numbers_and_inn():
    assert normalize_lot_number("Лот № 3") == "3"
    assert normalize_lot_number("лот 12") == "12"
    assert normalize_lot_number(" 5 ") == "5"
    assert extract_inn("ООО Ромашка ИНН 7701234567") == "7701234567"
    assert extract_inn("ИП Петров, 123456789012") == "123456789012"
    assert extract_inn("без ИНН") is None


def test_percent():
    assert parse_percent("5,5 %") == Decimal("5.5")
    assert parse_percent("10%") == Decimal("10")
    assert parse_percent("10 000 руб.") is None


def test_seconds_until_hour_rolls_to_next_day():
    from datetime import datetime, timezone
    now = datetime(2025, 1, 1, 3, 30, tzinfo=timezone.utc)
    assert seconds_until_hour(4, now) == 1800
    assert seconds_until_hour(2, now) == (22 * 60 + 30) * 60
    assert seconds_until_hour(3, now.replace(minute=0)) == 24 * 3600
