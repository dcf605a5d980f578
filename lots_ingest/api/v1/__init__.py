"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import pipeline, lots, trade_statuses

api_router = APIRouter()

api_router.include_router(
    pipeline.router,
    prefix="/pipeline",
    tags=["pipeline"]
)

api_router.include_router(
    lots.router,
    prefix="/lots",
    tags=["lots"]
)

api_router.include_router(
    trade_statuses.router,
    prefix="/trade-statuses",
    tags=["trade-statuses"]
)
