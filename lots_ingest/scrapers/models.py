"""Transient records produced by the scrapers (not persisted as-is)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass(slots=True, frozen=True)
class BiddingListEntry:
    id: str
    trade_number: str | None = None
    platform: str | None = None


@dataclass(slots=True, frozen=True)
class LotWorkItem:
    id: str
    url: str | None = None


@dataclass(slots=True)
class ScrapedLot:
    lot_number: str | None
    description: str | None
    start_price: Decimal | None = None
    step: Decimal | None = None
    deposit: Decimal | None = None
    cadastral_numbers: list[str] = field(default_factory=list)
    trade_type: str | None = None
    bid_acceptance_period: str | None = None
    id: str | None = None


@dataclass(slots=True)
class BiddingInfo:
    id: str
    trade_number: str | None = None
    platform: str | None = None
    trade_type: str | None = None
    announced_at: datetime | None = None
    bid_acceptance_period: str | None = None
    trade_period: str | None = None
    bankrupt_message_id: str | None = None
    viewing_procedure: str | None = None
    lots: list[ScrapedLot] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class LotStatusRecord:
    lot_number: str
    trade_status: str
    final_price: Decimal | None = None
    winner_name: str | None = None
    winner_inn: str | None = None


@dataclass(slots=True, frozen=True)
class PriceStage:
    """One stage of a public offer's price-reduction schedule."""
    position: int
    start_date: datetime
    end_date: datetime
    price: Decimal
    deposit: Decimal | None = None


__all__ = ["BiddingListEntry", "LotWorkItem", "ScrapedLot", "BiddingInfo", "LotStatusRecord", "PriceStage"]
