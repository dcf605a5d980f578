"""SQLAlchemy model for whitelisted categories assigned to a lot."""
from __future__ import annotations
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .lots import Lot
from lots_ingest.database import Base

class LotCategory(Base):
    __tablename__ = "lot_categories"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lots.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    lot: Mapped["Lot"] = relationship("Lot", back_populates="categories")
