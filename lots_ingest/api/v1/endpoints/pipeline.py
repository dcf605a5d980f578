"""
Pipeline inspection and manual trigger endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from lots_ingest.api.deps import get_container
from lots_ingest.models.schemas.base import ResponseBase
from lots_ingest.models.schemas.pipeline import LotWorkItemsRequest
from lots_ingest.runtime import ServiceContainer
from lots_ingest.scrapers.fetchers import FetchError
from lots_ingest.scrapers.models import LotWorkItem
from lots_ingest.services.enrichment import UnsupportedPlatformError
from lots_ingest.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)

@router.get(
    "/queue",
    response_model=ResponseBase,
    summary="Get background queue snapshots"
)
async def queue_snapshot(request: Request, container: ServiceContainer = Depends(get_container)) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    return ResponseBase(
        success=True,
        message="Queue snapshot",
        data={"snapshot": container.queue_snapshot(), "request_id": request_id}
    )

@router.get(
    "/caches",
    response_model=ResponseBase,
    summary="Get work-status cache snapshots"
)
async def cache_snapshot(request: Request, container: ServiceContainer = Depends(get_container)) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    return ResponseBase(
        success=True,
        message="Cache snapshot",
        data={"snapshot": container.cache_snapshot(), "request_id": request_id}
    )

@router.get(
    "/circuit-breaker",
    response_model=ResponseBase,
    summary="Get classification circuit breaker state"
)
async def breaker_snapshot(request: Request, container: ServiceContainer = Depends(get_container)) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    return ResponseBase(
        success=True,
        message="Circuit breaker snapshot",
        data={"snapshot": container.breaker_snapshot(), "request_id": request_id}
    )

@router.post(
    "/recovery/run",
    response_model=ResponseBase,
    summary="Run one recovery tick now"
)
async def run_recovery(request: Request, container: ServiceContainer = Depends(get_container)) -> ResponseBase:
    """Select unclassified lots and enqueue them as one batch (only when a full batch is available)."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    tick = container.recovery.run_once()
    logger.info("Manual recovery tick", found=tick.found, enqueued=tick.enqueued, request_id=request_id)
    return ResponseBase(
        success=True,
        message=f"Enqueued {tick.enqueued} lot(s) for classification",
        data={
            "found": tick.found,
            "enqueued": tick.enqueued,
            "lot_ids": tick.lot_ids,
            "batch_size": container.recovery.batch_size,
            "queue_depth": container.classification_queue.depth(),
        }
    )

@router.post(
    "/coordinates/retry",
    response_model=ResponseBase,
    summary="Re-enqueue lots whose coordinate lookup hit an unavailable service"
)
async def retry_coordinates(request: Request, container: ServiceContainer = Depends(get_container)) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    count = container.coordinates.reprocess_retry_list()
    logger.info("Coordinate retry list reprocessed", lots=count, request_id=request_id)
    return ResponseBase(
        success=True,
        message=f"Re-enqueued {count} coordinate lookup(s)",
        data={"enqueued": count, "queue_depth": container.coordinates_queue.depth()}
    )

@router.post(
    "/lot-work-items",
    response_model=ResponseBase,
    summary="Feed lot ids into the lot processor"
)
async def add_lot_work_items(
    payload: LotWorkItemsRequest,
    request: Request,
    container: ServiceContainer = Depends(get_container)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    items = [LotWorkItem(id=i.id.strip(), url=i.url) for i in payload.items if i.id.strip()]
    added = container.lot_cache.add_many(items)
    log_business_event(
        event_type="lot_work_items_added",
        details={"received": len(payload.items), "added": added},
        request_id=request_id
    )
    return ResponseBase(
        success=True,
        message=f"Added {added} new lot work item(s)",
        data={"received": len(payload.items), "added": added, "cache": container.lot_cache.snapshot()}
    )

@router.post(
    "/enrichment/{bidding_id}",
    response_model=ResponseBase,
    summary="Read one bidding's price schedule from its trading platform now"
)
async def enrich_bidding(
    bidding_id: str,
    request: Request,
    container: ServiceContainer = Depends(get_container)
) -> ResponseBase:
    """Runs regardless of the bidding's enriched flag and retry count."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        result = await container.enrichment.enrich_bidding(bidding_id)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except FetchError as e:
        logger.warning("Manual enrichment fetch failed", bidding_id=bidding_id, error=str(e), request_id=request_id)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    logger.info(
        "Manual enrichment finished",
        bidding_id=bidding_id,
        platform=result.platform,
        stages=sum(result.stages.values()),
        request_id=request_id
    )
    return ResponseBase(
        success=True,
        message=f"Stored {sum(result.stages.values())} price stage(s)",
        data={
            "bidding_id": result.bidding_id,
            "platform": result.platform,
            "fetched": result.fetched,
            "stages": result.stages,
        }
    )
