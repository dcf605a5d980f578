from .biddings import Bidding
from .lots import Lot
from .lot_categories import LotCategory
from .lot_cadastral_numbers import LotCadastralNumber
from .lot_audit_events import LotAuditEvent
from .lot_classification_analyses import LotClassificationAnalysis
from .lot_price_schedules import LotPriceSchedule
from .bidding_enrichment_states import BiddingEnrichmentState
from .enums import AuditStatus, AuditEventType, TradeStatus

__all__ = [
    "Bidding",
    "Lot",
    "LotCategory",
    "LotCadastralNumber",
    "LotAuditEvent",
    "LotClassificationAnalysis",
    "LotPriceSchedule",
    "BiddingEnrichmentState",
    "AuditStatus",
    "AuditEventType",
    "TradeStatus",
]
