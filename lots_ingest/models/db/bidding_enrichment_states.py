"""Failure bookkeeping for third-party platform enrichment, one row per bidding.

A bidding whose ``retry_count`` reaches the configured ceiling is no longer
selected by the enrichment loop.
"""
from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .biddings import Bidding
from lots_ingest.database import Base

class BiddingEnrichmentState(Base):
    __tablename__ = "bidding_enrichment_states"
    bidding_id: Mapped[str] = mapped_column(String(36), ForeignKey("biddings.id"), primary_key=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    bidding: Mapped["Bidding"] = relationship("Bidding", back_populates="enrichment_state")
