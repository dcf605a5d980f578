"""Append-only audit trail of enrichment attempts per lot.

Recovery relies on these rows (not a counter column) to decide whether a lot
was already classified, recently attempted, or failed too often.
"""
from __future__ import annotations

from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Text, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column

from lots_ingest.database import Base
from lots_ingest.utils.time import utc_now
from .enums import AuditStatus

class LotAuditEvent(Base):
    __tablename__ = "lot_audit_events"
    __table_args__ = (
        Index("ix_lot_audit_events_lot_type", "lot_id", "event_type"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # No FK: audit rows outlive lot deletion
    lot_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[AuditStatus] = mapped_column(Enum(AuditStatus, native_enum=False, length=20), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
