"""SQLAlchemy model for price-reduction stages of public-offer lots."""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .lots import Lot
from lots_ingest.database import Base

class LotPriceSchedule(Base):
    __tablename__ = "lot_price_schedules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lots.id"), nullable=False, index=True)
    # Stage order as printed on the platform page, starting at 1
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    deposit: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    lot: Mapped["Lot"] = relationship("Lot", back_populates="price_schedules")
