"""
Pydantic schemas for the operational pipeline endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from lots_ingest.models.db.enums import AuditStatus


class TradeStatusCrawlRequest(BaseModel):
    lot_numbers: List[str] = Field(default_factory=list, description="Lot numbers to locate; empty means every lot of the bidding")
    persist: bool = Field(True, description="Write the crawled statuses back to the lots")


class LotStatusRead(BaseModel):
    lot_number: str
    trade_status: str
    final_price: Optional[Decimal] = None
    winner_name: Optional[str] = None
    winner_inn: Optional[str] = None


class AuditEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lot_id: str
    event_type: str
    status: AuditStatus
    source: str
    timestamp: datetime
    details: Optional[str] = None


class LotWorkItemCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=36, description="Registry lot id")
    url: Optional[str] = Field(None, description="Lot card URL; derived from the id when omitted")


class LotWorkItemsRequest(BaseModel):
    items: List[LotWorkItemCreate] = Field(..., min_length=1)
