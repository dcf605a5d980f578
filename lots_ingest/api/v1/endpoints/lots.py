"""
Per-lot enrichment endpoints.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from lots_ingest.api.deps import get_container, get_db
from lots_ingest.models.db import AuditEventType
from lots_ingest.models.schemas.base import ResponseBase
from lots_ingest.models.schemas.pipeline import AuditEventRead
from lots_ingest.runtime import ServiceContainer
from lots_ingest.services.persistence import LotRepository
from lots_ingest.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

MANUAL_SOURCE = "Api"

def _lot_or_404(repository: LotRepository, lot_id: str):
    lot = repository.get_lot(lot_id)
    if lot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Lot {lot_id} not found")
    return lot

@router.post(
    "/{lot_id}/classify",
    response_model=ResponseBase,
    summary="Enqueue a classification job for one lot"
)
async def classify_lot(
    lot_id: str,
    request: Request,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    repository = LotRepository(db)
    lot = _lot_or_404(repository, lot_id)
    if not (lot.description or "").strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lot has no description to classify")
    job = container.classification_manager.enqueue_lot(repository, lot, MANUAL_SOURCE)
    logger.info("Manual classification enqueued", lot_id=lot_id, job_id=job.job_id, request_id=request_id)
    return ResponseBase(
        success=True,
        message="Classification job enqueued",
        data={"lot_id": lot_id, "job_id": job.job_id, "queue_depth": container.classification_queue.depth()}
    )

@router.post(
    "/{lot_id}/coordinates",
    response_model=ResponseBase,
    summary="Enqueue a coordinate lookup for one lot"
)
async def lookup_coordinates(
    lot_id: str,
    request: Request,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    lot = _lot_or_404(LotRepository(db), lot_id)
    numbers = [c.cadastral_number for c in lot.cadastral_numbers]
    job = container.coordinates.enqueue_lot(lot_id, numbers, MANUAL_SOURCE, force=True)
    if job is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lot has no cadastral numbers")
    logger.info("Manual coordinate lookup enqueued", lot_id=lot_id, numbers=len(numbers), request_id=request_id)
    return ResponseBase(
        success=True,
        message="Coordinate lookup enqueued",
        data={"lot_id": lot_id, "job_id": job.job_id, "queue_depth": container.coordinates_queue.depth()}
    )

@router.get(
    "/{lot_id}/audit",
    response_model=ResponseBase,
    summary="List a lot's enrichment audit trail"
)
async def lot_audit(
    lot_id: str,
    event_type: Optional[AuditEventType] = Query(None),
    db: Session = Depends(get_db)
) -> ResponseBase:
    events = LotRepository(db).audit_events(lot_id, event_type)
    return ResponseBase(
        success=True,
        message=f"{len(events)} audit event(s)",
        data={
            "lot_id": lot_id,
            "events": [AuditEventRead.model_validate(e).model_dump(mode="json") for e in events],
        }
    )
