"""SQLAlchemy model for cadastral numbers extracted from a lot's description."""
from __future__ import annotations
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .lots import Lot
from lots_ingest.database import Base

class LotCadastralNumber(Base):
    __tablename__ = "lot_cadastral_numbers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lots.id"), nullable=False, index=True)
    cadastral_number: Mapped[str] = mapped_column(String(64), nullable=False)

    lot: Mapped["Lot"] = relationship("Lot", back_populates="cadastral_numbers")
