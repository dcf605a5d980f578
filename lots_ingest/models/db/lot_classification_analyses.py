"""Raw classification output retained per successful provider call."""
from __future__ import annotations
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from lots_ingest.database import Base
from lots_ingest.utils.time import utc_now

class LotClassificationAnalysis(Base):
    __tablename__ = "lot_classification_analyses"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lots.id"), nullable=False, index=True)
    suggested_category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Comma-separated cleaned categories
    selected_categories: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_response_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
