"""Storage operations shared by the workers, the job queue and the API.

Inserts are insert-if-absent: a bidding or lot whose primary key is already
stored is logged and skipped, never raised, so one duplicate cannot fail a
whole batch. Every method that writes commits its own unit of work unless
noted otherwise.
"""
from __future__ import annotations

import json
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lots_ingest.models.db import (
    AuditEventType,
    AuditStatus,
    Bidding,
    BiddingEnrichmentState,
    Lot,
    LotAuditEvent,
    LotCadastralNumber,
    LotCategory,
    LotClassificationAnalysis,
    LotPriceSchedule,
)
from lots_ingest.models.schemas.classification import LotClassificationResult
from lots_ingest.scrapers.models import BiddingInfo, LotStatusRecord, PriceStage, ScrapedLot
from lots_ingest.utils import get_logger, log_business_event
from lots_ingest.utils.time import utc_now

logger = get_logger(__name__)


def _lot_from_scraped(scraped: ScrapedLot, bidding_id: Optional[str]) -> Lot:
    lot = Lot(
        bidding_id=bidding_id,
        lot_number=scraped.lot_number,
        description=scraped.description,
        trade_type=scraped.trade_type,
        bid_acceptance_period=scraped.bid_acceptance_period,
        start_price=scraped.start_price,
        step=scraped.step,
        deposit=scraped.deposit,
    )
    if scraped.id:
        lot.id = scraped.id
    for number in dict.fromkeys(scraped.cadastral_numbers):
        lot.cadastral_numbers.append(LotCadastralNumber(cadastral_number=number))
    return lot


class LotRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    # ----------------------------- lookups ----------------------------- #
    def bidding_exists(self, bidding_id: str) -> bool:
        return self.session.get(Bidding, bidding_id) is not None

    def lot_exists(self, lot_id: str) -> bool:
        return self.session.get(Lot, lot_id) is not None

    def get_lot(self, lot_id: str) -> Lot | None:
        return self.session.get(Lot, lot_id)

    def get_bidding(self, bidding_id: str) -> Bidding | None:
        return self.session.get(Bidding, bidding_id)

    def audit_events(self, lot_id: str, event_type: AuditEventType | None = None) -> list[LotAuditEvent]:
        q = self.session.query(LotAuditEvent).filter(LotAuditEvent.lot_id == lot_id)
        if event_type is not None:
            q = q.filter(LotAuditEvent.event_type == event_type.value)
        return q.order_by(LotAuditEvent.timestamp.asc(), LotAuditEvent.id.asc()).all()

    # ----------------------------- inserts ----------------------------- #
    def add_bidding(self, info: BiddingInfo) -> list[Lot] | None:
        """Store a bidding with its lots. Returns the new lots, or None when the bidding already exists."""
        if self.bidding_exists(info.id):
            logger.warning("Bidding already stored; skipping insert", bidding_id=info.id)
            return None
        bidding = Bidding(
            id=info.id,
            trade_number=info.trade_number,
            platform=info.platform,
            trade_type=info.trade_type,
            announced_at=info.announced_at,
            bid_acceptance_period=info.bid_acceptance_period,
            trade_period=info.trade_period,
            bankrupt_message_id=info.bankrupt_message_id,
            viewing_procedure=info.viewing_procedure,
        )
        lots = [_lot_from_scraped(s, info.id) for s in info.lots]
        bidding.lots.extend(lots)
        self.session.add(bidding)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning("Bidding insert conflicted; skipping", bidding_id=info.id, error=str(e.orig))
            return None
        log_business_event("bidding_persisted", {"bidding_id": info.id, "lots": len(lots)})
        return lots

    def add_lot(self, scraped: ScrapedLot, bidding_id: Optional[str] = None) -> Lot | None:
        """Store one lot. Returns None when a lot with the same id already exists."""
        if scraped.id and self.lot_exists(scraped.id):
            logger.warning("Lot already stored; skipping insert", lot_id=scraped.id)
            return None
        lot = _lot_from_scraped(scraped, bidding_id)
        self.session.add(lot)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning("Lot insert conflicted; skipping", lot_id=scraped.id, error=str(e.orig))
            return None
        log_business_event("lot_persisted", {"bidding_id": bidding_id}, lot_id=lot.id)
        return lot

    # ----------------------------- audit ----------------------------- #
    def add_audit(
        self,
        lot_id: str,
        status: AuditStatus,
        source: str,
        *,
        event_type: AuditEventType = AuditEventType.CLASSIFICATION,
        details: Optional[str] = None,
        commit: bool = True,
    ) -> LotAuditEvent:
        event = LotAuditEvent(
            lot_id=lot_id,
            event_type=event_type.value,
            status=status,
            source=source,
            details=details[:2000] if details else None,
        )
        self.session.add(event)
        if commit:
            self.session.commit()
        return event

    def add_audits(
        self,
        lot_ids: Sequence[str],
        status: AuditStatus,
        source: str,
        *,
        event_type: AuditEventType = AuditEventType.CLASSIFICATION,
        details: Optional[str] = None,
    ) -> None:
        for lot_id in lot_ids:
            self.add_audit(lot_id, status, source, event_type=event_type, details=details, commit=False)
        self.session.commit()

    # ----------------------------- enrichment ----------------------------- #
    def apply_classification(
        self,
        lot_id: str,
        result: LotClassificationResult,
        *,
        source: str,
        model_version: Optional[str] = None,
    ) -> Lot | None:
        """Store the analysis row, update the lot and write the Success audit in one commit.

        Returns None (nothing written) when the lot no longer exists.
        """
        lot = self.session.get(Lot, lot_id)
        if lot is None:
            logger.warning("Classified lot not found", lot_id=lot_id)
            return None

        self.session.add(LotClassificationAnalysis(
            lot_id=lot_id,
            suggested_category=result.suggested_category,
            selected_categories=", ".join(result.categories),
            raw_response_json=json.dumps(result.model_dump(mode="json", by_alias=True), ensure_ascii=False),
            model_version=model_version,
        ))

        lot.title = result.title
        lot.is_shared_ownership = result.is_shared_ownership
        lot.market_value_min = result.market_value_min
        lot.market_value_max = result.market_value_max
        lot.price_confidence = result.price_confidence
        lot.investment_summary = result.investment_summary
        if result.property_region_code or result.property_full_address:
            lot.property_region_code = result.property_region_code
            lot.property_region_name = result.property_region_name
            lot.property_full_address = result.property_full_address

        existing = {c.name.casefold() for c in lot.categories}
        for name in result.categories:
            if name.casefold() not in existing:
                lot.categories.append(LotCategory(name=name))
                existing.add(name.casefold())

        self.add_audit(lot_id, AuditStatus.SUCCESS, source, commit=False)
        self.session.commit()
        log_business_event("lot_classified", {"categories": result.categories, "source": source}, lot_id=lot_id)
        return lot

    def set_coordinates(self, lot_id: str, latitude: float, longitude: float, *, force: bool = False) -> bool:
        """Write coordinates; existing ones are kept unless ``force``."""
        lot = self.session.get(Lot, lot_id)
        if lot is None:
            logger.warning("Lot not found for coordinates", lot_id=lot_id)
            return False
        if not force and lot.latitude is not None and lot.longitude is not None:
            return False
        lot.latitude = latitude
        lot.longitude = longitude
        self.session.commit()
        return True

    @staticmethod
    def apply_status(lot: Lot, record: Optional[LotStatusRecord], *, missing_status: Optional[str] = None) -> None:
        """Copy a crawled outcome onto ``lot``; with no record, set ``missing_status`` and clear outcome fields.

        Does not commit.
        """
        if record is not None:
            lot.trade_status = record.trade_status
            lot.final_price = record.final_price
            lot.winner_name = record.winner_name
            lot.winner_inn = record.winner_inn
            return
        if missing_status is None:
            return
        lot.trade_status = missing_status
        lot.final_price = None
        lot.winner_name = None
        lot.winner_inn = None

    # ----------------------------- platform enrichment ----------------------------- #
    def replace_price_schedules(self, lot_id: str, stages: Sequence[PriceStage]) -> bool:
        """Swap the lot's stored stages for ``stages``. Does not commit."""
        lot = self.session.get(Lot, lot_id)
        if lot is None:
            logger.warning("Lot not found for price schedule", lot_id=lot_id)
            return False
        lot.price_schedules.clear()
        for stage in stages:
            lot.price_schedules.append(LotPriceSchedule(
                position=stage.position,
                start_date=stage.start_date,
                end_date=stage.end_date,
                price=stage.price,
                deposit=stage.deposit,
            ))
        return True

    def mark_enriched(self, bidding_id: str, schedules: dict[str, Sequence[PriceStage]]) -> bool:
        """Store the schedules read for a bidding and flag it enriched, in one commit."""
        bidding = self.session.get(Bidding, bidding_id)
        if bidding is None:
            logger.warning("Bidding not found for enrichment", bidding_id=bidding_id)
            return False
        for lot_id, stages in schedules.items():
            self.replace_price_schedules(lot_id, stages)
        bidding.is_enriched = True
        bidding.enriched_at = utc_now()
        if bidding.enrichment_state is not None:
            bidding.enrichment_state.last_error = None
        self.session.commit()
        return True

    def record_enrichment_failure(self, bidding_id: str, error: str) -> int:
        """Bump the bidding's retry counter and return it."""
        state = self.session.get(BiddingEnrichmentState, bidding_id)
        if state is None:
            state = BiddingEnrichmentState(bidding_id=bidding_id, retry_count=0)
            self.session.add(state)
        state.retry_count += 1
        state.last_attempt_at = utc_now()
        state.last_error = error[:2000]
        self.session.commit()
        return state.retry_count


__all__ = ["LotRepository"]
