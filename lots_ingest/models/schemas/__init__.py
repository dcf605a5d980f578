from .base import ResponseBase
from .classification import LotClassificationResult
from .pipeline import (
    TradeStatusCrawlRequest,
    LotStatusRead,
    AuditEventRead,
    LotWorkItemCreate,
    LotWorkItemsRequest,
)

__all__ = [
    "ResponseBase",
    "LotClassificationResult",
    "TradeStatusCrawlRequest",
    "LotStatusRead",
    "AuditEventRead",
    "LotWorkItemCreate",
    "LotWorkItemsRequest",
]
