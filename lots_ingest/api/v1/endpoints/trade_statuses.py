"""
On-demand trade outcome crawl for one bidding.
"""
import time
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from lots_ingest.api.deps import get_container, get_db
from lots_ingest.models.db import Bidding
from lots_ingest.models.schemas.base import ResponseBase
from lots_ingest.models.schemas.pipeline import LotStatusRead, TradeStatusCrawlRequest
from lots_ingest.runtime import ServiceContainer
from lots_ingest.services.trade_statuses import apply_crawl, numbered_lots
from lots_ingest.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/{bidding_id}",
    response_model=ResponseBase,
    summary="Crawl the trade card of one bidding"
)
async def crawl_trade_statuses(
    bidding_id: str,
    payload: TradeStatusCrawlRequest,
    request: Request,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> ResponseBase:
    """Locate lot outcomes on the legacy trade card.

    With no ``lot_numbers`` the bidding's own numbered lots are requested
    (every lot on the card when the bidding is unknown). ``persist`` writes
    the outcomes back and requires the bidding to exist.
    """
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    bidding = db.get(Bidding, bidding_id)
    if payload.persist and bidding is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Bidding {bidding_id} not found")

    lot_numbers = [n for n in payload.lot_numbers if n and n.strip()]
    if not lot_numbers and bidding is not None:
        lot_numbers = list(dict.fromkeys(lot.lot_number for lot in numbered_lots(bidding)))

    crawl = await container.trade_card_crawler.crawl(bidding_id, lot_numbers)
    applied = None
    if payload.persist and bidding is not None:
        result = apply_crawl(db, bidding, crawl)
        applied = {"updated": result.updated, "missing": result.missing, "finalized": result.finalized}

    log_performance(
        operation="crawl_trade_statuses",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"found": len(crawl.statuses), "pages": len(crawl.pages_visited)}
    )
    logger.info(
        "Manual trade status crawl finished",
        bidding_id=bidding_id,
        found=len(crawl.statuses),
        aborted=crawl.aborted,
        request_id=request_id
    )
    return ResponseBase(
        success=not crawl.aborted,
        message=f"Found {len(crawl.statuses)} lot status(es)" + (f"; crawl aborted ({crawl.abort_reason})" if crawl.aborted else ""),
        data={
            "bidding_id": bidding_id,
            "statuses": [
                LotStatusRead(
                    lot_number=r.lot_number,
                    trade_status=r.trade_status,
                    final_price=r.final_price,
                    winner_name=r.winner_name,
                    winner_inn=r.winner_inn,
                ).model_dump(mode="json")
                for r in crawl.statuses.values()
            ],
            "pages_visited": crawl.pages_visited,
            "aborted": crawl.aborted,
            "abort_reason": crawl.abort_reason,
            "applied": applied,
        }
    )
