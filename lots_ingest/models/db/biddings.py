"""SQLAlchemy model for biddings (one trade announcement grouping several lots)."""
from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import String, DateTime, Boolean, Text
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .lots import Lot
    from .bidding_enrichment_states import BiddingEnrichmentState
from lots_ingest.database import Base
from lots_ingest.utils.time import utc_now

class Bidding(Base):
    __tablename__ = "biddings"
    # Registry GUID, kept as text
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trade_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    platform: Mapped[str | None] = mapped_column(String(255), nullable=True)
    trade_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    announced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    bid_acceptance_period: Mapped[str | None] = mapped_column(String(255), nullable=True)
    trade_period: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bankrupt_message_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    viewing_procedure: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_trade_statuses_finalized: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    # Third-party platform enrichment done (price schedules read)
    is_enriched: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    enriched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    lots: Mapped[list["Lot"]] = relationship("Lot", back_populates="bidding", cascade="all, delete-orphan")
    enrichment_state: Mapped[BiddingEnrichmentState | None] = relationship(
        "BiddingEnrichmentState", back_populates="bidding", uselist=False, cascade="all, delete-orphan"
    )
