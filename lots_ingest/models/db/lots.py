"""SQLAlchemy model for auction lots and their derived enrichment fields."""
from __future__ import annotations
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import String, DateTime, Boolean, Text, Numeric, Float, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .biddings import Bidding
    from .lot_categories import LotCategory
    from .lot_cadastral_numbers import LotCadastralNumber
    from .lot_price_schedules import LotPriceSchedule
from lots_ingest.database import Base
from lots_ingest.utils.time import utc_now

class Lot(Base):
    __tablename__ = "lots"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    bidding_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("biddings.id"), nullable=True, index=True)
    lot_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trade_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bid_acceptance_period: Mapped[str | None] = mapped_column(String(255), nullable=True)

    start_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    step: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    deposit: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    # Classification output
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_shared_ownership: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    market_value_min: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    market_value_max: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    price_confidence: Mapped[str | None] = mapped_column(String(20), nullable=True)
    investment_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    property_region_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    property_region_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    property_full_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Coordinate lookup output
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Trade outcome from the legacy registry
    trade_status: Mapped[str | None] = mapped_column(String(255), nullable=True)
    final_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    winner_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    winner_inn: Mapped[str | None] = mapped_column(String(12), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    bidding: Mapped[Bidding | None] = relationship("Bidding", back_populates="lots")
    categories: Mapped[list["LotCategory"]] = relationship(
        "LotCategory", back_populates="lot", cascade="all, delete-orphan"
    )
    cadastral_numbers: Mapped[list["LotCadastralNumber"]] = relationship(
        "LotCadastralNumber", back_populates="lot", cascade="all, delete-orphan"
    )
    price_schedules: Mapped[list["LotPriceSchedule"]] = relationship(
        "LotPriceSchedule",
        back_populates="lot",
        cascade="all, delete-orphan",
        order_by="LotPriceSchedule.position",
    )
